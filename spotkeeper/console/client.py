"""Remote console client for the game server.

One TCP connection per logical command (or a short command sequence), never
pooled.  A session walks ``DISCONNECTED → CONNECTING → AUTHENTICATING → READY
→ CLOSED``; any failure moves it to ``ERRORED`` and releases the socket.

Usage::

    async with ConsoleClient("10.0.1.5", 25575, password) as console:
        reply = await console.command("list")

or, for a single command::

    reply = await send_command("10.0.1.5", 25575, password, "list")
"""

from __future__ import annotations

import asyncio
import enum
import itertools
import logging

from spotkeeper.config import DEFAULT_CONSOLE_IDLE_TIMEOUT, DEFAULT_CONSOLE_TIMEOUT
from spotkeeper.console import protocol
from spotkeeper.console.protocol import Packet, PacketError

logger = logging.getLogger(__name__)


class ConsoleError(Exception):
    """Base error for console protocol failures."""


class ConsoleConnectionError(ConsoleError):
    """Raised when the console port cannot be reached or the peer hangs up."""


class ConsoleAuthError(ConsoleError):
    """Raised when the peer rejects the credential."""


class ConsoleProtocolError(ConsoleError):
    """Raised on malformed or unexpected packets."""


class ConsoleTimeoutError(ConsoleError):
    """Raised when the peer does not answer in time."""


class ConsoleState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    CLOSED = "closed"
    ERRORED = "errored"


class ConsoleClient:
    """A single console session.

    Args:
        timeout:      Seconds allowed for connecting, authenticating and for
                      the first reply fragment of a command.
        idle_timeout: Seconds to wait for further reply fragments before the
                      reply is considered complete.
    """

    def __init__(
        self,
        host: str,
        port: int,
        credential: str,
        timeout: float = DEFAULT_CONSOLE_TIMEOUT,
        idle_timeout: float = DEFAULT_CONSOLE_IDLE_TIMEOUT,
    ) -> None:
        self.host = host
        self.port = port
        self._credential = credential
        self.timeout = timeout
        self.idle_timeout = idle_timeout
        self.state = ConsoleState.DISCONNECTED
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._ids = itertools.count(1)

    def __repr__(self) -> str:
        return f"ConsoleClient({self.host}:{self.port}, state={self.state.value})"

    async def __aenter__(self) -> "ConsoleClient":
        try:
            await self.connect()
            await self.authenticate()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def connect(self) -> None:
        """Open the TCP stream to the console port."""
        self._expect(ConsoleState.DISCONNECTED)
        self.state = ConsoleState.CONNECTING
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=self.timeout,
            )
        except (OSError, asyncio.TimeoutError) as exc:
            self.state = ConsoleState.ERRORED
            raise ConsoleConnectionError(
                f"Cannot connect to console at {self.host}:{self.port}: {exc}"
            ) from exc
        logger.debug("Connected to console at %s:%d", self.host, self.port)

    async def authenticate(self) -> None:
        """Send the credential and wait for the peer's acknowledgement."""
        self._expect(ConsoleState.CONNECTING)
        self.state = ConsoleState.AUTHENTICATING
        request_id = next(self._ids)
        try:
            await self._send(Packet(request_id, protocol.AUTH, self._credential))
            while True:
                packet = await self._receive(self.timeout)
                # Some servers send an empty RESPONSE_VALUE ahead of the ack.
                if packet.packet_type == protocol.RESPONSE_VALUE:
                    continue
                if packet.packet_type != protocol.AUTH_RESPONSE:
                    raise ConsoleProtocolError(
                        f"Expected auth response, got packet type {packet.packet_type}"
                    )
                if packet.request_id != request_id:
                    raise ConsoleAuthError(
                        f"Console at {self.host}:{self.port} rejected the credential"
                    )
                break
        except ConsoleError:
            self.state = ConsoleState.ERRORED
            raise
        self.state = ConsoleState.READY
        logger.debug("Authenticated with console at %s:%d", self.host, self.port)

    async def command(self, text: str) -> str:
        """Run *text* on the server and return its (reassembled) reply."""
        self._expect(ConsoleState.READY)
        if len(text.encode("utf-8")) > protocol.MAX_COMMAND_BYTES:
            raise ConsoleProtocolError(
                f"Command exceeds {protocol.MAX_COMMAND_BYTES} bytes"
            )

        request_id = next(self._ids)
        try:
            await self._send(Packet(request_id, protocol.EXEC_COMMAND, text))
            fragments = await self._collect_reply(request_id)
        except ConsoleError:
            self.state = ConsoleState.ERRORED
            raise
        return "".join(fragments)

    async def close(self) -> None:
        """Release the socket.  Safe to call more than once."""
        writer, self._writer, self._reader = self._writer, None, None
        if self.state != ConsoleState.ERRORED:
            self.state = ConsoleState.CLOSED
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as exc:
            logger.debug("Error while closing console socket: %s", exc)
        logger.debug("Disconnected from console at %s:%d", self.host, self.port)

    # ------------------------------------------------------------------ #
    # Protocol helpers
    # ------------------------------------------------------------------ #

    async def _collect_reply(self, request_id: int) -> list[str]:
        """Gather fragments for *request_id* until an empty fragment or idle gap."""
        loop = asyncio.get_event_loop()
        deadline = loop.time() + self.timeout
        fragments: list[str] = []
        # Only fragments of this reply push the idle deadline forward.
        idle_deadline: float | None = None

        while True:
            if idle_deadline is not None:
                wait = idle_deadline - loop.time()
                if wait <= 0:
                    return fragments
            else:
                wait = deadline - loop.time()
                if wait <= 0:
                    raise ConsoleTimeoutError(
                        f"No reply from console at {self.host}:{self.port}"
                    )
            try:
                packet = await self._receive(wait)
            except ConsoleTimeoutError:
                if fragments:
                    return fragments
                raise

            if packet.request_id == protocol.AUTH_FAILED_ID:
                raise ConsoleAuthError("Console session is no longer authenticated")
            if packet.request_id != request_id:
                logger.debug("Ignoring packet for request %d", packet.request_id)
                continue
            if packet.packet_type != protocol.RESPONSE_VALUE:
                raise ConsoleProtocolError(
                    f"Expected response value, got packet type {packet.packet_type}"
                )
            if not packet.payload:
                return fragments
            fragments.append(packet.payload)
            idle_deadline = loop.time() + self.idle_timeout

    async def _send(self, packet: Packet) -> None:
        if self._writer is None:
            raise ConsoleProtocolError(f"Console session is {self.state.value}, not connected")
        try:
            self._writer.write(protocol.encode_packet(packet))
            await asyncio.wait_for(self._writer.drain(), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise ConsoleTimeoutError("Timed out sending to console") from exc
        except OSError as exc:
            raise ConsoleConnectionError(f"Console connection lost: {exc}") from exc

    async def _receive(self, timeout: float) -> Packet:
        if self._reader is None:
            raise ConsoleProtocolError(f"Console session is {self.state.value}, not connected")
        try:
            return await asyncio.wait_for(protocol.read_packet(self._reader), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise ConsoleTimeoutError(
                f"Timed out waiting for console at {self.host}:{self.port}"
            ) from exc
        except asyncio.IncompleteReadError as exc:
            raise ConsoleConnectionError("Connection closed by console peer") from exc
        except PacketError as exc:
            raise ConsoleProtocolError(str(exc)) from exc
        except OSError as exc:
            raise ConsoleConnectionError(f"Console connection lost: {exc}") from exc

    def _expect(self, state: ConsoleState) -> None:
        if self.state != state:
            raise ConsoleProtocolError(
                f"Console session is {self.state.value}, expected {state.value}"
            )


# ──────────────────────────────────────────────────────────────────
# One-shot helpers
# ──────────────────────────────────────────────────────────────────

async def send_command(
    host: str,
    port: int,
    credential: str,
    text: str,
    timeout: float = DEFAULT_CONSOLE_TIMEOUT,
    idle_timeout: float = DEFAULT_CONSOLE_IDLE_TIMEOUT,
) -> str:
    """Open a session, run one command, close the session, return the reply."""
    async with ConsoleClient(host, port, credential, timeout, idle_timeout) as console:
        reply = await console.command(text)
    logger.debug("Console reply from %s: %r", host, reply)
    return reply


async def send_message(
    host: str,
    port: int,
    credential: str,
    message: str,
    timeout: float = DEFAULT_CONSOLE_TIMEOUT,
    idle_timeout: float = DEFAULT_CONSOLE_IDLE_TIMEOUT,
) -> str:
    """Broadcast *message* to every connected player."""
    return await send_command(
        host, port, credential, format_message(message), timeout, idle_timeout
    )


def format_message(message: str) -> str:
    """Build the broadcast command for *message*."""
    escaped = message.replace("\\", "\\\\").replace('"', '\\"')
    return f'tellraw @a "{escaped}"'
