"""Health probes for the source database and the running engine."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

from binlog_cdc.config.models import EngineConfig, SourceConfig
from binlog_cdc.engine.state import ACTIVE_STATES

if TYPE_CHECKING:
    from binlog_cdc.engine.core import Engine

logger = structlog.get_logger()


class Status(StrEnum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class ComponentHealth:
    name: str
    status: Status = Status.UNKNOWN
    detail: str = ""


@dataclass
class EngineHealth:
    components: list[ComponentHealth] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return all(c.status == Status.HEALTHY for c in self.components)

    @property
    def summary(self) -> dict[str, str]:
        return {c.name: c.status.value for c in self.components}


def _variables(cursor: Any, names: tuple[str, ...]) -> dict[str, str]:
    placeholders = ", ".join(["%s"] * len(names))
    cursor.execute(
        f"SHOW GLOBAL VARIABLES WHERE Variable_name IN ({placeholders})", names
    )
    return {str(row[0]).lower(): str(row[1]) for row in cursor.fetchall()}


def check_source(config: SourceConfig) -> ComponentHealth:
    """Probe MySQL connectivity and the server's replication settings."""
    try:
        import pymysql

        conn = pymysql.connect(
            host=config.host,
            port=config.port,
            user=config.username,
            password=config.password.get_secret_value(),
            connect_timeout=config.connect_timeout_seconds,
        )
        try:
            with conn.cursor() as cursor:
                variables = _variables(cursor, ("log_bin", "binlog_format", "version"))
        finally:
            conn.close()
    except Exception as exc:
        return ComponentHealth(name="mysql", status=Status.UNHEALTHY, detail=str(exc))

    version = variables.get("version", "?")
    if variables.get("log_bin", "").upper() not in ("ON", "1"):
        return ComponentHealth(
            name="mysql", status=Status.UNHEALTHY, detail="binary logging is disabled"
        )
    binlog_format = variables.get("binlog_format", "").upper()
    if binlog_format != "ROW":
        return ComponentHealth(
            name="mysql",
            status=Status.UNHEALTHY,
            detail=f"binlog_format is {binlog_format or 'unknown'}, ROW is required",
        )
    return ComponentHealth(
        name="mysql", status=Status.HEALTHY, detail=f"{config.address} ({version})"
    )


def check_mysqldump(config: EngineConfig) -> ComponentHealth:
    """Check that the snapshot tool is installed (when the snapshot is enabled)."""
    import shutil

    path = config.dump.execution_path
    if not path:
        return ComponentHealth(
            name="mysqldump", status=Status.HEALTHY, detail="snapshot disabled"
        )
    resolved = shutil.which(path)
    if resolved is None:
        return ComponentHealth(
            name="mysqldump", status=Status.UNHEALTHY, detail=f"{path} not found"
        )
    return ComponentHealth(name="mysqldump", status=Status.HEALTHY, detail=resolved)


def check_engine_health(config: EngineConfig | None = None) -> EngineHealth:
    """Run all pre-flight checks and return the aggregated result."""
    cfg = config or EngineConfig()
    return EngineHealth(components=[check_source(cfg.source), check_mysqldump(cfg)])


def engine_health(engine: Engine) -> dict[str, Any]:
    """Health document for a running engine, as served on ``/readyz``."""
    state = engine.state
    position = engine.position
    return {
        "engine": {
            "status": "ok" if state in ACTIVE_STATES else "error",
            "state": state.value,
            "position": str(position) if position is not None else None,
            "gtid_set": str(engine.gtid_set),
            "snapshot_done": engine.snapshot_done,
            "seconds_since_activity": round(time.monotonic() - engine.last_activity, 3),
        }
    }
