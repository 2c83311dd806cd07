"""Pydantic configuration models for the replication engine."""

from __future__ import annotations

import re
from enum import StrEnum
from typing import Self

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator


class Flavor(StrEnum):
    """Source server family."""

    MYSQL = "mysql"
    MARIADB = "mariadb"


class ChecksumMode(StrEnum):
    """How binlog event checksums are detected.

    ``auto`` asks the server (and honours FORMAT_DESCRIPTION events);
    ``crc32``/``none`` force the behaviour.
    """

    AUTO = "auto"
    CRC32 = "crc32"
    NONE = "none"


class RetryConfig(BaseModel):
    """Retry / backoff for establishing source connections."""

    max_attempts: int = Field(default=5, ge=1)
    initial_wait_seconds: float = Field(default=1.0, gt=0)
    max_wait_seconds: float = Field(default=30.0, gt=0)
    multiplier: float = Field(default=2.0, ge=1.0)


class SourceConfig(BaseModel):
    """Connection settings for the MySQL source."""

    host: str = "127.0.0.1"
    port: int = Field(default=3306, ge=1, le=65535)
    username: str = "root"
    password: SecretStr = SecretStr("")
    charset: str = "utf8mb4"
    # Must be unique across every replica attached to the source.
    server_id: int = Field(default=1001, ge=1)
    flavor: Flavor = Flavor.MYSQL
    connect_timeout_seconds: float = Field(default=10.0, gt=0)
    retry: RetryConfig = RetryConfig()

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


class DumpConfig(BaseModel):
    """Initial snapshot through mysqldump.

    An empty ``execution_path`` disables the snapshot: streaming then starts
    from the source's current head position.
    """

    execution_path: str = "mysqldump"
    # Dump only these tables of one database ...
    table_db: str = ""
    tables: list[str] = Field(default_factory=list)
    # ... or these whole databases.  Neither → --all-databases.
    databases: list[str] = Field(default_factory=list)
    where: str = ""
    # MySQL >= 8.0.26 renamed --master-data to --source-data.
    use_source_data: bool = False
    skip_master_data: bool = False
    hex_blob: bool = False
    extra_options: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_table_selection(self) -> Self:
        if self.tables and not self.table_db:
            msg = "dump.table_db is required when dump.tables is set"
            raise ValueError(msg)
        if self.tables and self.databases:
            msg = "dump.tables and dump.databases are mutually exclusive"
            raise ValueError(msg)
        return self

    @property
    def enabled(self) -> bool:
        return bool(self.execution_path)


class EngineConfig(BaseModel, extra="forbid"):
    """Top-level engine configuration."""

    source: SourceConfig = SourceConfig()
    dump: DumpConfig = DumpConfig()
    include_table_regex: list[str] = Field(default_factory=list)
    exclude_table_regex: list[str] = Field(default_factory=list)
    heartbeat_period_seconds: float = Field(default=60.0, ge=0)
    read_timeout_seconds: float = Field(default=90.0, ge=0)
    sync_poll_interval_seconds: float = Field(default=0.1, gt=0)
    binlog_checksum: ChecksumMode = ChecksumMode.AUTO
    # Drop row events whose table metadata cannot be loaded instead of failing.
    discard_no_meta_row_events: bool = False
    health_enabled: bool = False
    health_port: int = Field(default=8080, ge=0, le=65535)

    @field_validator("include_table_regex", "exclude_table_regex")
    @classmethod
    def validate_patterns(cls, v: list[str]) -> list[str]:
        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as exc:
                msg = f"invalid table pattern {pattern!r}: {exc}"
                raise ValueError(msg) from exc
        return v

    @model_validator(mode="after")
    def check_liveness_windows(self) -> Self:
        hb = self.heartbeat_period_seconds
        rt = self.read_timeout_seconds
        if hb > 0 and rt > 0 and rt <= hb:
            msg = (
                f"read_timeout_seconds ({rt:g}) must be greater than "
                f"heartbeat_period_seconds ({hb:g})"
            )
            raise ValueError(msg)
        return self
