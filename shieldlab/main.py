from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Literal, Optional

import os
import hmac
import hashlib
import json
import logging
import time

from fastapi import FastAPI, Depends, Request, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator
from sqlalchemy import select, desc
from sqlalchemy.orm import Session

from . import config, geo
from .alerts import AlertComposer
from .config import ConfigurationError, ensure_configuration, upsert_configuration
from .db import SessionLocal, get_db, init_db
from .models import Alert, Anomaly, Event, UserConfiguration
from .pipeline import ingest_event
from .workers import BackgroundServices


config.setup_logging()
logger = logging.getLogger(__name__)


# =========================
# HMAC CONFIG
# =========================

HMAC_SECRET = os.getenv("INGEST_HMAC_SECRET", "")
MAX_SKEW = int(os.getenv("INGEST_MAX_SKEW_SECONDS", "120"))
NONCE_TTL = int(os.getenv("INGEST_NONCE_TTL_SECONDS", "300"))

NONCE_CACHE: dict[str, int] = {}


def _prune_nonces(now: int) -> None:
    expired = [n for n, t in NONCE_CACHE.items() if now - t > NONCE_TTL]
    for n in expired:
        NONCE_CACHE.pop(n, None)


def verify_ingest_signature(request: Request, body_bytes: bytes, secret: str) -> None:
    ts_str = request.headers.get("X-Timestamp")
    nonce = request.headers.get("X-Nonce")
    sig = request.headers.get("X-Signature")

    if not ts_str or not nonce or not sig:
        raise HTTPException(status_code=401, detail="Missing auth headers")

    try:
        ts = int(ts_str)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid timestamp")

    now = int(time.time())

    if abs(now - ts) > MAX_SKEW:
        raise HTTPException(status_code=401, detail="Timestamp out of range")

    _prune_nonces(now)

    if nonce in NONCE_CACHE:
        raise HTTPException(status_code=401, detail="Replay detected")

    NONCE_CACHE[nonce] = now

    msg = str(ts).encode() + b"\n" + nonce.encode() + b"\n" + body_bytes
    expected = hmac.new(secret.encode(), msg, hashlib.sha256).hexdigest()

    if not hmac.compare_digest(expected, sig):
        NONCE_CACHE.pop(nonce, None)
        raise HTTPException(status_code=401, detail="Invalid signature")


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()

    if not HMAC_SECRET:
        logger.warning("INGEST_HMAC_SECRET not configured: ingest signatures are NOT verified")

    services = None
    if config.BACKGROUND_TASKS_ENABLED:
        services = BackgroundServices(SessionLocal)
        services.start()
    try:
        yield
    finally:
        if services is not None:
            services.stop()


app = FastAPI(title="ShieldLab SOC", lifespan=lifespan)


# =========================
# DEPENDENCIES
# =========================

def get_hmac_secret() -> str:
    return HMAC_SECRET


def get_composer(db: Session = Depends(get_db)) -> AlertComposer:
    return AlertComposer(db)


def get_geo_lookup():
    return geo.lookup


# =========================
# MODELS
# =========================

class IngestEvent(BaseModel):
    source: Literal["agent", "logparser"]
    kind: str = Field(..., min_length=1, max_length=64, validation_alias=AliasChoices("kind", "type"))
    path_or_message: str = Field(default="", max_length=4000)
    hostname: str = Field(..., min_length=1, max_length=128)
    operating_system: Optional[str] = Field(default=None, max_length=64)
    username: Optional[str] = Field(default=None, max_length=128)
    ip_address: Optional[str] = Field(default=None, max_length=64)
    windows_event_id: Optional[int] = None
    log_name: Optional[str] = Field(default=None, max_length=64)
    # accepted for compatibility, replaced by the server clock
    timestamp: Optional[datetime] = None

    @field_validator("source", mode="before")
    @classmethod
    def _lower_source(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class ConfigurationIn(BaseModel):
    max_failed_logins: Optional[int] = None
    max_file_deletes: Optional[int] = None
    max_file_creates: Optional[int] = None
    max_file_modifies: Optional[int] = None
    phone_number: Optional[str] = None
    email: Optional[str] = None
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None


class ContactsIn(BaseModel):
    phone_number: str = ""
    email: str = ""
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None


def configuration_dict(cfg: UserConfiguration) -> dict:
    return {
        "id": cfg.id,
        "max_failed_logins": cfg.max_failed_logins,
        "max_file_deletes": cfg.max_file_deletes,
        "max_file_creates": cfg.max_file_creates,
        "max_file_modifies": cfg.max_file_modifies,
        "phone_number": cfg.phone_number,
        "email": cfg.email,
        "telegram_bot_token": cfg.telegram_bot_token,
        "telegram_chat_id": cfg.telegram_chat_id,
        "created_at": cfg.created_at.isoformat() if cfg.created_at else None,
        "updated_at": cfg.updated_at.isoformat() if cfg.updated_at else None,
    }


# =========================
# ROUTES
# =========================

@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/ingest", status_code=202)
@app.post("/api/events", status_code=202)
async def ingest(
    request: Request,
    db: Session = Depends(get_db),
    composer: AlertComposer = Depends(get_composer),
    lookup=Depends(get_geo_lookup),
    secret: str = Depends(get_hmac_secret),
):
    body_bytes = await request.body()

    if secret:
        verify_ingest_signature(request, body_bytes, secret)

    try:
        payload = json.loads(body_bytes.decode("utf-8"))
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid JSON")

    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON")

    try:
        event = IngestEvent(**payload)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))

    # enrichment and alert delivery block on the network
    row = await run_in_threadpool(ingest_event, db, event.model_dump(), composer, lookup=lookup)

    return {"ok": True, "event_id": row.id, "severity": row.severity}


@app.get("/events")
def list_events(limit: int = 100, db: Session = Depends(get_db)):
    limit = max(1, min(limit, 500))

    stmt = select(Event).order_by(desc(Event.timestamp), desc(Event.id)).limit(limit)
    rows = db.execute(stmt).scalars().all()

    items = [
        {
            "id": r.id,
            "source": r.source,
            "kind": r.kind,
            "path_or_message": r.path_or_message,
            "timestamp": r.timestamp.isoformat(),
            "hostname": r.hostname,
            "operating_system": r.operating_system,
            "severity": r.severity,
            "username": r.username,
            "ip_address": r.ip_address,
            "country": r.country,
            "city": r.city,
        }
        for r in rows
    ]

    return {"count": len(items), "items": items}


@app.get("/anomalies")
def list_anomalies(limit: int = 50, db: Session = Depends(get_db)):
    limit = max(1, min(limit, 200))

    stmt = select(Anomaly).order_by(desc(Anomaly.timestamp), desc(Anomaly.id)).limit(limit)
    rows = db.execute(stmt).scalars().all()

    items = [
        {
            "id": a.id,
            "timestamp": a.timestamp.isoformat(),
            "type": a.type,
            "description": a.description,
            "hostname": a.hostname,
        }
        for a in rows
    ]

    return {"count": len(items), "items": items}


@app.get("/alerts")
def list_alerts(limit: int = 50, db: Session = Depends(get_db)):
    limit = max(1, min(limit, 200))

    stmt = select(Alert).order_by(desc(Alert.timestamp), desc(Alert.id)).limit(limit)
    rows = db.execute(stmt).scalars().all()

    items = [
        {
            "id": a.id,
            "timestamp": a.timestamp.isoformat(),
            "type": a.type,
            "phase": a.phase,
            "message": a.message,
            "channel": a.channel,
            "hostname": a.hostname,
        }
        for a in rows
    ]

    return {"count": len(items), "items": items}


@app.post("/alerts/test")
def send_test_alert(composer: AlertComposer = Depends(get_composer)):
    now = datetime.now(timezone.utc)
    alert = composer.raise_alert(
        "TestAlert",
        f"[ShieldLab TEST] alert generated at {now.isoformat()}",
        "shieldlab",
        "TEST",
    )
    return {"ok": True, "alert_id": alert.id, "channel": alert.channel}


@app.get("/configuration")
def get_configuration(db: Session = Depends(get_db)):
    return configuration_dict(ensure_configuration(db))


@app.put("/configuration")
def put_configuration(req: ConfigurationIn, db: Session = Depends(get_db)):
    try:
        cfg = upsert_configuration(db, req.model_dump())
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return configuration_dict(cfg)


@app.post("/configuration/contacts")
def post_contacts(req: ContactsIn, db: Session = Depends(get_db)):
    if not req.email.strip() and not req.phone_number.strip() and not (req.telegram_bot_token or "").strip():
        raise HTTPException(status_code=400, detail="At least one alert channel must be provided.")

    values = req.model_dump()
    values["telegram_bot_token"] = values["telegram_bot_token"] or ""
    values["telegram_chat_id"] = values["telegram_chat_id"] or ""
    try:
        upsert_configuration(db, values)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"message": "Configuration saved successfully."}
