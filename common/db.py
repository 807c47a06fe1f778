from __future__ import annotations

from typing import Optional
from urllib.parse import quote_plus
import logging

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url

from .config import Settings


logger = logging.getLogger(__name__)


def build_database_url(settings: Settings) -> str:
    if settings.database_url:
        return settings.database_url

    # quote_plus handles passwords with special characters.
    url = (
        f"postgresql+psycopg2://{quote_plus(settings.db_user)}:{quote_plus(settings.db_password)}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )
    if settings.db_schema:
        url += f"?options={quote_plus(f'-csearch_path={settings.db_schema}')}"
    return url


def _connect_args(url: str, statement_timeout_ms: int) -> dict:
    # Only PostgreSQL understands the libpq "options" startup parameter.
    if make_url(url).get_backend_name() != "postgresql" or statement_timeout_ms <= 0:
        return {}
    return {"options": f"-c statement_timeout={int(statement_timeout_ms)}"}


def create_db_engine(settings: Settings, url: Optional[str] = None) -> Engine:
    """Create the process-wide engine.

    The engine is owned by the composition root (``telemetry_api.main``) and
    handed to the storage layer explicitly; there is no module-level singleton.
    """
    url = url or build_database_url(settings)
    parsed = make_url(url)

    # Log básico de parámetros de conexión (sin contraseña)
    logger.info(
        "[DB] Create engine backend=%s host=%s port=%s db=%s user=%s",
        parsed.get_backend_name(),
        parsed.host,
        parsed.port,
        parsed.database,
        parsed.username,
    )

    engine = create_engine(
        url,
        pool_pre_ping=True,
        pool_recycle=300,
        connect_args=_connect_args(url, settings.db_statement_timeout_ms),
        future=True,
    )

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("[DB] Connection test OK")
    except Exception:
        logger.exception("[DB] Connection test FAILED")

    return engine
