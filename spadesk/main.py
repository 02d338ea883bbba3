from pathlib import Path

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .api import clients_router, services_router, visits_router
from .auth_api import router as auth_router
from .authn import ensure_bootstrap_admin
from .config import settings
from .db import SessionLocal, init_db
from .errors import install_error_handlers
from .observability import RequestLoggingMiddleware, SecurityHeadersMiddleware, configure_logging
from .reports_api import router as reports_router

logger = structlog.get_logger("spadesk.main")


def _read_app_version() -> str:
    version_file = Path(__file__).resolve().parents[1] / "VERSION"
    try:
        value = version_file.read_text(encoding="utf-8").strip()
    except OSError:
        return "0.1.0"
    return value or "0.1.0"


configure_logging()
init_db()

with SessionLocal() as _db:
    _admin = ensure_bootstrap_admin(_db)
    if _admin is not None:
        logger.info("bootstrap_admin_ready", user_id=_admin.id, email=_admin.email)

app = FastAPI(
    title="Spadesk",
    description="Salon and spa management API",
    version=_read_app_version(),
)
app.state.session_local = SessionLocal

install_error_handlers(app)

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/health/ready")
def ready(request: Request):
    session_factory = request.app.state.session_local
    try:
        with session_factory() as db:
            db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("readiness_check_failed")
        return JSONResponse(status_code=503, content={"status": "not_ready", "checks": {"db": "error"}})
    return {"status": "ready", "checks": {"db": "ok"}}


app.include_router(auth_router)
app.include_router(clients_router)
app.include_router(services_router)
app.include_router(visits_router)
app.include_router(reports_router)
