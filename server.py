import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from pingo import config
from pingo.family import (
    get_status,
    issue_reset_code,
    normalize_email,
    normalize_name,
    record_checkin,
    save_config,
)
from pingo.mailer import Mailer
from pingo.store import KVStore, StoreUnavailable

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("pingo_api")

app = FastAPI(title="Pingo API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "api-key"],
)

_store: Optional[KVStore] = None
_mailer: Optional[Mailer] = None


# Dependencies
def get_store() -> KVStore:
    global _store
    if _store is None:
        _store = KVStore(config.DB_PATH)
    return _store


def get_mailer() -> Mailer:
    global _mailer
    if _mailer is None:
        _mailer = Mailer()
    return _mailer


@app.exception_handler(StoreUnavailable)
def store_unavailable_handler(request: Request, exc: StoreUnavailable):
    logger.error(f"Store unavailable while serving {request.url.path}: {exc}")
    return JSONResponse({"error": str(exc)}, status_code=500)


# Endpoints
@app.api_route("/{path:path}", methods=["GET", "POST"])
def dispatch(
    path: str,
    email: Optional[str] = None,
    name: Optional[str] = None,
    interval: Optional[str] = None,
    reminder_time: Optional[str] = Query(None, alias="reminderTime"),
    pwd: Optional[str] = None,
    store: KVStore = Depends(get_store),
    mailer: Mailer = Depends(get_mailer),
):
    """Route on a substring of the path, the way the mobile app calls us.

    Requests without an email are treated as no-ops and get the banner.
    """
    path = path.lower()
    email = normalize_email(email)
    name = normalize_name(name)

    try:
        if "reset" in path and email:
            result = issue_reset_code(store, email, mailer)
            return result.model_dump()

        if "checkin" in path and email:
            record_checkin(store, email, name)
            return PlainTextResponse("OK")

        if "saveconfig" in path and email:
            save_config(store, email, name, interval=interval, reminder_time=reminder_time, pwd=pwd)
            return PlainTextResponse("OK")

        if "status" in path and email:
            return get_status(store, email, mailer).model_dump()

        return PlainTextResponse(config.BANNER)
    except Exception as e:
        logger.exception(f"Request to {path} failed: {e}")
        return JSONResponse({"error": str(e)}, status_code=500)


# Background job
def purge_expired_keys():
    try:
        get_store().purge_expired()
    except Exception as e:
        logger.exception("Error in purge_expired_keys job: %s", e)


@app.on_event("startup")
def startup_event():
    logger.info("Starting scheduler...")
    scheduler = BackgroundScheduler()
    scheduler.add_job(purge_expired_keys, 'interval', seconds=config.PURGE_INTERVAL_SECONDS)
    scheduler.start()
    app.state.scheduler = scheduler


@app.on_event("shutdown")
def shutdown_event():
    logger.info("Shutting down scheduler...")
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.shutdown()
