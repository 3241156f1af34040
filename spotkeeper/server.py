"""spotkeeper — HTTP trigger surface.

Exposes:
  GET  /health          — liveness check
  POST /backup          — run one backup now, returns the run summary
  POST /events/launch   — publish a launched instance's address, body ``{instanceId}``

Every request is an independent invocation with its own settings and
:class:`~spotkeeper.context.InvocationContext`.

Start with::

    python -m spotkeeper.server
    # or
    uvicorn spotkeeper.server:app --host 0.0.0.0 --port 5200
"""

from __future__ import annotations

import logging
import os

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field

from spotkeeper import __version__
from spotkeeper.backup.pipeline import run_backup
from spotkeeper.config import ConfigurationError, load_backup_settings, load_dns_settings, log_level
from spotkeeper.context import InvocationContext
from spotkeeper.dns import DnsUpdateError, DnsUpdater
from spotkeeper.fleet import FleetError

logger = logging.getLogger(__name__)

app = FastAPI(title="spotkeeper", version=__version__)


def get_context():
    ctx = InvocationContext()
    try:
        yield ctx
    finally:
        ctx.shutdown(wait=False)


# ──────────────────────────────────────────────────────────────────
# Request / Response models
# ──────────────────────────────────────────────────────────────────

class LaunchEvent(BaseModel):
    instance_id: str = Field(alias="instanceId", min_length=1)


class FailureModel(BaseModel):
    path: str
    error: str


class BackupResponse(BaseModel):
    run_key: str
    file_count: int
    uploaded: int
    failures: list[FailureModel]
    duration_ms: int


class DnsResponse(BaseModel):
    zone_id: str
    record_name: str
    value: str
    change_id: str = ""
    status: str = ""


# ──────────────────────────────────────────────────────────────────
# Endpoints
# ──────────────────────────────────────────────────────────────────

@app.get("/health")
async def health():
    return {"status": "ok", "version": __version__}


@app.post("/backup", response_model=BackupResponse)
async def backup(ctx: InvocationContext = Depends(get_context)):
    try:
        settings = load_backup_settings()
    except ConfigurationError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    summary = await run_backup(settings, ctx)
    return summary.to_dict()


@app.post("/events/launch", response_model=DnsResponse)
async def launch(event: LaunchEvent, ctx: InvocationContext = Depends(get_context)):
    try:
        settings = load_dns_settings()
    except ConfigurationError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    try:
        ack = await DnsUpdater(settings, ctx).update(event.instance_id)
    except FleetError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except DnsUpdateError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    return ack.to_dict()


# ──────────────────────────────────────────────────────────────────
# Entry point
# ──────────────────────────────────────────────────────────────────

def main():
    import uvicorn
    host = os.environ.get("SPOTKEEPER_HOST", "0.0.0.0")
    port = int(os.environ.get("SPOTKEEPER_PORT", "5200"))
    logging.basicConfig(level=log_level())
    logger.info("Starting spotkeeper on %s:%d", host, port)
    uvicorn.run("spotkeeper.server:app", host=host, port=port, reload=False)


if __name__ == "__main__":
    main()
