"""DNS updater — point the server's record at a freshly launched instance.

Triggered once per fleet launch event.  The instance's public address is
looked up and an ``A`` record upsert is submitted to the configured zone; the
previous value is replaced.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from spotkeeper.config import DEFAULT_DNS_TTL, DnsSettings, load_dns_settings
from spotkeeper.context import InvocationContext
from spotkeeper.fleet import FleetResolver

logger = logging.getLogger(__name__)


class DnsUpdateError(Exception):
    """Raised when the DNS provider rejects a change."""


@dataclass(frozen=True)
class DnsChangeRequest:
    zone_id: str
    record_name: str
    value: str
    ttl_seconds: int = DEFAULT_DNS_TTL
    record_type: str = "A"

    def to_change_batch(self) -> dict[str, Any]:
        return {
            "Comment": f"spotkeeper: {self.record_name} -> {self.value}",
            "Changes": [
                {
                    "Action": "UPSERT",
                    "ResourceRecordSet": {
                        "Name": self.record_name,
                        "Type": self.record_type,
                        "TTL": self.ttl_seconds,
                        "ResourceRecords": [{"Value": self.value}],
                    },
                }
            ],
        }


@dataclass(frozen=True)
class DnsAcknowledgement:
    zone_id: str
    record_name: str
    value: str
    change_id: str = ""
    status: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "zone_id": self.zone_id,
            "record_name": self.record_name,
            "value": self.value,
            "change_id": self.change_id,
            "status": self.status,
        }


class DnsUpdater:
    """Publishes a launched instance's public address."""

    def __init__(
        self,
        settings: DnsSettings,
        ctx: InvocationContext | None = None,
        resolver: FleetResolver | None = None,
    ) -> None:
        self.settings = settings
        self.ctx = ctx or InvocationContext()
        self.resolver = resolver or FleetResolver(self.ctx)

    async def update(self, instance_id: str) -> DnsAcknowledgement:
        """Upsert the configured record with *instance_id*'s public address.

        Raises:
            NoAddressError:   the instance has no public address.
            DnsUpdateError:   the provider rejected the change.
        """
        instance = await self.resolver.resolve_public_address(instance_id)
        request = DnsChangeRequest(
            zone_id=self.settings.zone_id,
            record_name=self.settings.record_name,
            value=instance.public_address or "",
            ttl_seconds=self.settings.ttl,
        )
        response = await self.submit(request)
        info = response.get("ChangeInfo") or {}

        logger.info(
            "Updated DNS record %s in zone %s to %s",
            request.record_name, request.zone_id, request.value,
        )
        return DnsAcknowledgement(
            zone_id=request.zone_id,
            record_name=request.record_name,
            value=request.value,
            change_id=info.get("Id", ""),
            status=info.get("Status", ""),
        )

    async def submit(self, request: DnsChangeRequest) -> dict:
        """Send *request* to the DNS provider."""
        loop = asyncio.get_event_loop()
        call = functools.partial(
            self.ctx.route53.change_resource_record_sets,
            HostedZoneId=request.zone_id,
            ChangeBatch=request.to_change_batch(),
        )
        try:
            return await loop.run_in_executor(self.ctx.executor, call)
        except (ClientError, BotoCoreError) as exc:
            raise DnsUpdateError(str(exc)) from exc


def instance_id_from_event(event: dict) -> str:
    """Extract the launched instance id from a launch event.

    Accepts ``{"instanceId": ...}`` or the scaling service's notification
    envelope ``{"detail": {"EC2InstanceId": ...}}``.
    """
    instance_id = event.get("instanceId") or (event.get("detail") or {}).get("EC2InstanceId")
    if not instance_id:
        raise ValueError("Launch event does not carry an instance id")
    return instance_id


async def handle_launch_event(
    event: dict,
    settings: DnsSettings | None = None,
    ctx: InvocationContext | None = None,
) -> DnsAcknowledgement:
    """Resolve and publish the instance named in *event*."""
    if settings is None:
        settings = load_dns_settings()
    return await DnsUpdater(settings, ctx).update(instance_id_from_event(event))
