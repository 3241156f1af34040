"""Fleet inventory resolver — scaling group / instance id → live addresses.

The server's address changes every time the fleet relaunches an instance, so
nothing here is cached: every call goes back to the control plane.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from spotkeeper.context import InvocationContext

logger = logging.getLogger(__name__)


class FleetError(Exception):
    """Base error for fleet inventory lookups."""


class NoInstancesError(FleetError):
    """Raised when a scaling group (or instance id) has no members."""


class NoAddressError(FleetError):
    """Raised when no member has the required address class."""


@dataclass(frozen=True)
class Instance:
    id: str
    private_address: str | None = None
    public_address: str | None = None


class FleetResolver:
    """Read-only lookups against the fleet and compute control planes.

    Callers that need a single target (the console) take the first entry of
    :meth:`resolve_private_addresses`; the fleet is expected to hold exactly
    one live instance.
    """

    def __init__(self, ctx: InvocationContext) -> None:
        self.ctx = ctx

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def resolve_private_addresses(self, group_name: str) -> list[Instance]:
        """Return the members of *group_name* that have a private address.

        Raises:
            NoInstancesError: the group has no members (no compute lookup is made).
            NoAddressError:   no member has a private address.
        """
        response = await self._call(
            self.ctx.autoscaling.describe_auto_scaling_groups,
            AutoScalingGroupNames=[group_name],
        )
        groups = response.get("AutoScalingGroups") or []
        instance_ids = [
            member["InstanceId"]
            for member in (groups[0].get("Instances") or [] if groups else [])
            if member.get("InstanceId")
        ]
        if not instance_ids:
            raise NoInstancesError(f"No instances found in scaling group: {group_name}")

        instances = [
            inst
            for inst in await self._describe(instance_ids)
            if inst.private_address
        ]
        if not instances:
            raise NoAddressError(
                f"No private addresses found for instances in {group_name}: {instance_ids}"
            )

        logger.debug("Resolved %s → %s", group_name, [i.private_address for i in instances])
        return instances

    async def resolve_public_address(self, instance_id: str) -> Instance:
        """Return *instance_id* with its public address.

        Raises:
            NoInstancesError: the instance is unknown to the compute control plane.
            NoAddressError:   the instance has no public address.
        """
        instances = await self._describe([instance_id])
        if not instances:
            raise NoInstancesError(f"Instance not found: {instance_id}")

        instance = instances[0]
        if not instance.public_address:
            raise NoAddressError(f"Public IP address not found for instance {instance_id}")
        return instance

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    async def _describe(self, instance_ids: list[str]) -> list[Instance]:
        response = await self._call(
            self.ctx.ec2.describe_instances, InstanceIds=instance_ids
        )
        return [
            Instance(
                id=raw.get("InstanceId", ""),
                private_address=raw.get("PrivateIpAddress") or None,
                public_address=raw.get("PublicIpAddress") or None,
            )
            for reservation in response.get("Reservations") or []
            for raw in reservation.get("Instances") or []
        ]

    async def _call(self, method: Any, **kwargs: Any) -> dict:
        """Run a blocking control-plane call on the invocation's thread pool."""
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(
                self.ctx.executor, functools.partial(method, **kwargs)
            )
        except (ClientError, BotoCoreError) as exc:
            raise FleetError(f"Control plane request failed: {exc}") from exc


async def resolve_console_host(resolver: FleetResolver, group_name: str) -> str:
    """Return the private address of the group's console target.

    The fleet is expected to run exactly one live instance; if more are
    returned the first one is used and a warning is logged.
    """
    instances = await resolver.resolve_private_addresses(group_name)
    if len(instances) > 1:
        logger.warning(
            "Scaling group %s has %d instances; using %s",
            group_name, len(instances), instances[0].id,
        )
    return instances[0].private_address or ""
