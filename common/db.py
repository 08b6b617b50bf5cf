from __future__ import annotations

import logging
import ssl
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine, make_url


logger = logging.getLogger(__name__)

TIDB_TLS_PROFILE = "tidb"


def build_sqlite_url(sqlite_path: str) -> str:
    # El recorder de Home Assistant solo se lee; nunca escribimos en él.
    return f"sqlite:///{sqlite_path}"


def prepare_sink_url(sink_url: str) -> tuple[URL, dict[str, Any]]:
    """Normalize the sink URL and build the DBAPI connect args.

    ``tls=tidb`` in the query string selects the TiDB Cloud TLS profile:
    the option is removed from the URL and replaced by an SSL context that
    enforces TLS 1.2+ and verifies the server host name.
    """
    url = make_url(sink_url)
    connect_args: dict[str, Any] = {}

    tls_profile = url.query.get("tls")
    if tls_profile == TIDB_TLS_PROFILE:
        url = url.difference_update_query(["tls"])
        ctx = ssl.create_default_context()
        ctx.minimum_version = ssl.TLSVersion.TLSv1_2
        ctx.check_hostname = True
        connect_args["ssl"] = ctx

    return url, connect_args


def _ping(engine: Engine, label: str) -> None:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("[DB] Test de conexión OK (%s)", label)
    except Exception:
        logger.exception("[DB] Test de conexión FALLÓ (%s)", label)
        raise


def get_source_engine(sqlite_path: str, ping: bool = True) -> Engine:
    logger.info("[DB] Crear engine SQLite path=%s", sqlite_path)
    engine = create_engine(build_sqlite_url(sqlite_path), future=True)
    if ping:
        _ping(engine, "sqlite")
    return engine


def get_sink_engine(sink_url: str, ping: bool = True) -> Engine:
    url, connect_args = prepare_sink_url(sink_url)

    # Log básico de parámetros de conexión (sin contraseña)
    logger.info(
        "[DB] Crear engine sink driver=%s host=%s port=%s db=%s user=%s tls=%s",
        url.drivername,
        url.host,
        url.port,
        url.database,
        url.username,
        "ssl" in connect_args,
    )

    engine = create_engine(
        url,
        connect_args=connect_args,
        pool_pre_ping=True,
        future=True,
    )
    if ping:
        _ping(engine, "sink")
    return engine
