"""Live MySQL fixtures for integration tests.

Point ``BINLOG_CDC_MYSQL_HOST`` (plus optional ``_PORT``, ``_USER`` and
``_PASSWORD``) at a server with ``log_bin=ON`` and ``binlog_format=ROW``;
without it every test in this directory is skipped.
"""

from __future__ import annotations

import os
import shutil
import uuid
from collections.abc import Iterator

import pymysql
import pytest

from binlog_cdc.config.models import DumpConfig, EngineConfig, SourceConfig

HOST_ENV = "BINLOG_CDC_MYSQL_HOST"


def pytest_collection_modifyitems(config, items):
    if os.environ.get(HOST_ENV):
        return
    skip = pytest.mark.skip(reason=f"{HOST_ENV} is not set")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip)


@pytest.fixture(scope="session")
def source_config() -> SourceConfig:
    return SourceConfig(
        host=os.environ.get(HOST_ENV, "127.0.0.1"),
        port=int(os.environ.get("BINLOG_CDC_MYSQL_PORT", "3306")),
        username=os.environ.get("BINLOG_CDC_MYSQL_USER", "root"),
        password=os.environ.get("BINLOG_CDC_MYSQL_PASSWORD", ""),
        server_id=int(os.environ.get("BINLOG_CDC_SERVER_ID", "5101")),
    )


@pytest.fixture
def database(source_config: SourceConfig) -> Iterator[str]:
    """A scratch database with one ``users`` table, dropped afterwards."""
    name = f"cdc_it_{uuid.uuid4().hex[:8]}"
    conn = pymysql.connect(
        host=source_config.host,
        port=source_config.port,
        user=source_config.username,
        password=source_config.password.get_secret_value(),
        autocommit=True,
    )
    try:
        with conn.cursor() as cur:
            cur.execute(f"CREATE DATABASE `{name}`")
            cur.execute(
                f"CREATE TABLE `{name}`.users ("
                " id INT UNSIGNED PRIMARY KEY,"
                " name VARCHAR(32) NOT NULL,"
                " balance DECIMAL(10,2) NULL,"
                " created DATETIME(3) NULL)"
            )
            cur.execute(
                f"INSERT INTO `{name}`.users VALUES "
                "(1, 'alice', 10.50, '2024-01-02 03:04:05.250'),"
                "(2, 'bob', NULL, NULL)"
            )
        yield name
    finally:
        with conn.cursor() as cur:
            cur.execute(f"DROP DATABASE IF EXISTS `{name}`")
        conn.close()


@pytest.fixture
def engine_config(source_config: SourceConfig, database: str) -> EngineConfig:
    dump = DumpConfig(databases=[database])
    if shutil.which(dump.execution_path) is None:
        pytest.skip("mysqldump is not installed")
    return EngineConfig(
        source=source_config,
        dump=dump,
        include_table_regex=[rf"^{database}\."],
        heartbeat_period_seconds=1,
        read_timeout_seconds=5,
        sync_poll_interval_seconds=0.05,
    )


@pytest.fixture
def execute(source_config: SourceConfig):
    """Run statements on a separate autocommit connection."""
    conn = pymysql.connect(
        host=source_config.host,
        port=source_config.port,
        user=source_config.username,
        password=source_config.password.get_secret_value(),
        autocommit=True,
    )

    def _execute(*statements: str) -> None:
        with conn.cursor() as cur:
            for sql in statements:
                cur.execute(sql)

    yield _execute
    conn.close()
