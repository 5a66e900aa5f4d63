"""
Rotation API — FastAPI trigger surface over the RotationEngine.

Routes:
  POST /rotate                       manual / emergency rotation
  POST /sweep                        rotate everything due (scheduled)
  POST /reconcile                    close abandoned in-progress attempts
  GET  /due                          due-set preview
  GET|POST /credentials              list / register credentials
  POST /credentials/{id}/deactivate
  DELETE /credentials/{id}
  GET  /credentials/{id}/history     rotation ledger for one credential
  GET|POST /secret-managers          list / register secret stores
  GET  /audit                         recent audit events (filterable)

Start:
  credrotor serve
  # or
  uvicorn credrotor.api.server:app --host 0.0.0.0 --port 9120
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from credrotor import __version__
from credrotor.errors import InvalidState, NotFound, RotationError
from credrotor.models import CredentialType, RotationTrigger, SecretManagerType
from credrotor.rotation.engine import RotationEngine

logger = logging.getLogger(__name__)

# ─── Engine wiring ───────────────────────────────────────────────────

_engine: RotationEngine | None = None


def get_engine() -> RotationEngine:
    """Lazily build the process-wide engine from config."""
    global _engine
    if _engine is None:
        from credrotor.rotation.engine import build_engine

        _engine = build_engine()
    return _engine


def set_engine(engine: RotationEngine | None) -> None:
    """Override the engine (tests, embedding)."""
    global _engine
    _engine = engine


# ─── FastAPI App ──────────────────────────────────────────────────────

app = FastAPI(
    title="credrotor",
    description="Credential rotation: secret-store fan-out, control-plane sync, audit ledger.",
    version=__version__,
)


@app.exception_handler(RotationError)
async def rotation_error_handler(request: Request, exc: RotationError) -> JSONResponse:
    if isinstance(exc, NotFound):
        status = 404
    elif isinstance(exc, InvalidState):
        status = 409
    else:
        status = 500
    return JSONResponse(status_code=status, content={"error": str(exc)})


def _server_error(e: Exception) -> JSONResponse:
    logger.error("Request failed: %s", e)
    return JSONResponse(status_code=500, content={"error": str(e)})


# ─── Pydantic Models ─────────────────────────────────────────────────


class RotateRequest(BaseModel):
    credentialId: str = Field(..., description="Credential id or name")
    trigger: RotationTrigger = RotationTrigger.MANUAL


class CredentialCreate(BaseModel):
    name: str
    type: CredentialType
    externalSecretPath: str
    rotationIntervalDays: int = Field(30, gt=0)
    description: str = ""
    expiresAt: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class SecretManagerCreate(BaseModel):
    name: str
    type: SecretManagerType
    endpointUrl: str | None = None
    region: str | None = None
    configuration: dict[str, Any] = Field(default_factory=dict)


# ─── Rotation ────────────────────────────────────────────────────────


@app.get("/health")
def health():
    return {"status": "ok", "version": __version__}


@app.post("/rotate")
def rotate(body: RotateRequest):
    engine = get_engine()
    try:
        result = engine.rotate(body.credentialId, body.trigger)
    except RotationError:
        raise
    except Exception as e:
        return _server_error(e)
    return {
        "success": True,
        "message": "Credential rotated successfully",
        "logId": result.log_id,
        "newSecretHash": result.new_secret_hash,
        "publishResults": [r.to_dict() for r in result.publish_results],
        "sync": result.sync_result.to_dict() if result.sync_result else None,
    }


@app.post("/sweep")
def sweep():
    try:
        outcomes = get_engine().sweep_due()
    except Exception as e:
        return _server_error(e)
    return {
        "success": True,
        "credentialsProcessed": len(outcomes),
        "results": [o.to_dict() for o in outcomes],
    }


@app.post("/reconcile")
def reconcile():
    try:
        closed = get_engine().reconcile_stale()
    except Exception as e:
        return _server_error(e)
    return {"success": True, "reconciled": closed, "count": len(closed)}


@app.get("/due")
def due():
    credentials = get_engine().find_due()
    return {"count": len(credentials), "credentials": [c.to_dict() for c in credentials]}


# ─── Credentials ─────────────────────────────────────────────────────


@app.get("/credentials")
def list_credentials(active_only: bool = False):
    creds = get_engine().store.list_credentials(active_only=active_only)
    return {"credentials": [c.to_dict() for c in creds]}


@app.post("/credentials", status_code=201)
def create_credential(body: CredentialCreate):
    cred = get_engine().store.create_credential(
        body.name,
        body.type,
        body.externalSecretPath,
        rotation_interval_days=body.rotationIntervalDays,
        description=body.description,
        expires_at=body.expiresAt,
        metadata=body.metadata,
    )
    logger.info("Registered credential %s (%s)", cred.name, cred.type.value)
    _audit_admin("credential.create", f"Registered {cred.name}", cred.id)
    return cred.to_dict()


@app.post("/credentials/{credential_id}/deactivate")
def deactivate_credential(credential_id: str):
    engine = get_engine()
    cred = engine.resolve_credential(credential_id)
    changed = engine.store.deactivate_credential(cred.id)
    if changed:
        _audit_admin("credential.deactivate", f"Deactivated {cred.name}", cred.id)
    return {"success": True, "changed": changed}


@app.delete("/credentials/{credential_id}")
def delete_credential(credential_id: str):
    engine = get_engine()
    cred = engine.resolve_credential(credential_id)
    engine.store.delete_credential(cred.id)
    _audit_admin("credential.delete", f"Deleted {cred.name}", cred.id)
    return {"success": True}


@app.get("/credentials/{credential_id}/history")
def credential_history(credential_id: str, limit: int = 50):
    engine = get_engine()
    cred = engine.resolve_credential(credential_id)
    attempts = engine.store.list_attempts(cred.id, limit=limit)
    return {"credentialId": cred.id, "history": [a.to_dict() for a in attempts]}


# ─── Secret managers ─────────────────────────────────────────────────


@app.get("/secret-managers")
def list_secret_managers(active_only: bool = False):
    managers = get_engine().store.list_secret_managers(active_only=active_only)
    return {"secretManagers": [m.to_dict() for m in managers]}


@app.post("/secret-managers", status_code=201)
def create_secret_manager(body: SecretManagerCreate):
    registration = get_engine().store.create_secret_manager(
        body.name,
        body.type,
        endpoint_url=body.endpointUrl,
        region=body.region,
        configuration=body.configuration,
    )
    logger.info("Registered secret manager %s (%s)", registration.name, registration.type.value)
    return registration.to_dict()


# ─── Audit ───────────────────────────────────────────────────────────


@app.get("/audit")
def audit_events(
    limit: int = 50,
    event_type: str | None = None,
    target: str | None = None,
    status: str | None = None,
):
    from credrotor.audit.logger import query_log

    events = query_log(limit=limit, event_type=event_type, target=target, status=status)
    return {"count": len(events), "events": events}


def _audit_admin(event_type: str, action: str, credential_id: str) -> None:
    try:
        from credrotor.audit.logger import log_event

        log_event(event_type, action, actor="api", target=f"credential:{credential_id}")
    except Exception as e:
        logger.warning("Audit call failed (non-fatal): %s", e)
