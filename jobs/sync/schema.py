"""Provisioning idempotente de las tablas del sink (MySQL / TiDB).

Se ejecuta en cada arranque. "Ya existe" / "no existe" se toleran, cualquier
otro error es fatal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError

from .errors import SyncError

logger = logging.getLogger(__name__)

MYSQL_ERR_DUPLICATE_KEY_NAME = 1061
MYSQL_ERR_CANT_DROP = 1091

ENERGY_POINTS_DDL = """
CREATE TABLE IF NOT EXISTS energy_points (
    state_id BIGINT NOT NULL AUTO_INCREMENT PRIMARY KEY,
    entity_id VARCHAR(255) NOT NULL,
    state VARCHAR(255) NOT NULL,
    numeric_state DOUBLE NULL,
    unit VARCHAR(64) NULL,
    device_class VARCHAR(64) NULL,
    state_class VARCHAR(64) NULL,
    friendly_name VARCHAR(255) NULL,
    last_updated DATETIME(6) NULL
)
"""

GPS_POINTS_DDL = """
CREATE TABLE IF NOT EXISTS gps_points (
    state_id BIGINT PRIMARY KEY,
    entity_id VARCHAR(255) NOT NULL,
    state VARCHAR(255) NOT NULL,
    latitude DOUBLE NOT NULL,
    longitude DOUBLE NOT NULL,
    gps_accuracy DOUBLE NULL,
    last_updated DATETIME(6) NULL
)
"""


def mysql_error_code(exc: BaseException) -> Optional[int]:
    """Código de error MySQL de una excepción SQLAlchemy, si lo hay."""
    orig = getattr(exc, "orig", None)
    args = getattr(orig, "args", None)
    if args and isinstance(args[0], int):
        return args[0]
    return None


def _execute_tolerating(conn, stmt: str, tolerated_code: int, what: str) -> bool:
    """Ejecuta ``stmt``; devuelve False si falló con el código tolerado."""
    try:
        conn.execute(text(stmt))
        return True
    except DBAPIError as e:
        if mysql_error_code(e) != tolerated_code:
            raise SyncError(f"{what}: {e}") from e
        logger.debug("%s: ya aplicado (mysql %d)", what, tolerated_code)
        return False


def quote_identifier(name: str) -> str:
    return "`" + name.replace("`", "``") + "`"


def ensure_energy_points_table(engine) -> None:
    with engine.begin() as conn:
        conn.execute(text(ENERGY_POINTS_DDL))
        conn.execute(text(
            "ALTER TABLE energy_points MODIFY COLUMN state_id BIGINT NOT NULL AUTO_INCREMENT"
        ))
        # Tablas antiguas guardaban last_updated sin fracción de segundo.
        conn.execute(text(
            "ALTER TABLE energy_points MODIFY COLUMN last_updated DATETIME(6) NULL"
        ))
        _execute_tolerating(
            conn,
            "ALTER TABLE energy_points DROP COLUMN attributes",
            MYSQL_ERR_CANT_DROP,
            "drop legacy attributes column",
        )
        _execute_tolerating(
            conn,
            "ALTER TABLE energy_points ADD INDEX idx_energy_points_entity_last_updated (entity_id, last_updated)",
            MYSQL_ERR_DUPLICATE_KEY_NAME,
            "add supporting index",
        )
    logger.info("[DB] energy_points OK")


@dataclass
class IndexInfo:
    non_unique: bool
    columns: List[str] = field(default_factory=list)


def load_index_info(conn, table: str) -> Dict[str, IndexInfo]:
    schema = conn.execute(text("SELECT DATABASE()")).scalar()
    if not schema:
        raise SyncError("sink url must select a database; none detected")

    rows = conn.execute(
        text(
            """
            SELECT INDEX_NAME, COLUMN_NAME, NON_UNIQUE, SEQ_IN_INDEX
            FROM INFORMATION_SCHEMA.STATISTICS
            WHERE TABLE_SCHEMA = :schema AND TABLE_NAME = :table
            ORDER BY INDEX_NAME, SEQ_IN_INDEX
            """
        ),
        {"schema": schema, "table": table},
    ).fetchall()

    indexes: Dict[str, IndexInfo] = {}
    for index_name, column, non_unique, seq in rows:
        if column is None:
            continue
        info = indexes.setdefault(index_name, IndexInfo(non_unique=int(non_unique) == 1))
        seq = int(seq)
        if len(info.columns) < seq:
            info.columns.extend([""] * (seq - len(info.columns)))
        info.columns[seq - 1] = column
    return indexes


def _ensure_primary_key_on_state_id(conn, indexes: Dict[str, IndexInfo]) -> None:
    primary = indexes.get("PRIMARY")
    if primary is not None and primary.columns == ["state_id"]:
        return
    _execute_tolerating(
        conn, "ALTER TABLE gps_points DROP PRIMARY KEY", MYSQL_ERR_CANT_DROP, "drop existing primary key",
    )
    conn.execute(text("ALTER TABLE gps_points ADD PRIMARY KEY (state_id)"))
    logger.info("[DB] gps_points: primary key movida a state_id")


def _drop_conflicting_entity_indexes(conn, indexes: Dict[str, IndexInfo]) -> None:
    # Un UNIQUE sobre entity_id sin state_id colapsaría el histórico a una fila.
    for name, info in indexes.items():
        if name == "PRIMARY" or info.non_unique:
            continue
        if "state_id" in info.columns:
            continue
        if "entity_id" in info.columns:
            conn.execute(text(f"ALTER TABLE gps_points DROP INDEX {quote_identifier(name)}"))
            logger.info("[DB] gps_points: índice único %s eliminado", name)


def ensure_gps_points_table(engine) -> None:
    with engine.begin() as conn:
        conn.execute(text(GPS_POINTS_DDL))
        indexes = load_index_info(conn, "gps_points")
        _ensure_primary_key_on_state_id(conn, indexes)
        _drop_conflicting_entity_indexes(conn, indexes)
        _execute_tolerating(
            conn,
            "ALTER TABLE gps_points ADD INDEX idx_gps_points_entity_last_updated (entity_id, last_updated)",
            MYSQL_ERR_DUPLICATE_KEY_NAME,
            "add supporting index",
        )
    logger.info("[DB] gps_points OK")
