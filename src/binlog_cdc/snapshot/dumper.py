"""mysqldump subprocess wrapper."""

from __future__ import annotations

import asyncio
import os
from collections import deque
from collections.abc import AsyncIterator

import structlog

from binlog_cdc.config.models import DumpConfig, SourceConfig
from binlog_cdc.errors import SnapshotError

logger = structlog.get_logger()

# Single INSERT lines can be very large (long blobs); asyncio's default is 64 KiB.
_LINE_LIMIT = 256 * 1024 * 1024
_STDERR_TAIL = 20


def build_dump_args(source: SourceConfig, dump: DumpConfig) -> list[str]:
    """Build the mysqldump argv (without the password, passed via MYSQL_PWD)."""
    args = [
        dump.execution_path,
        f"--host={source.host}",
        f"--port={source.port}",
        f"--user={source.username}",
    ]
    if not dump.skip_master_data:
        args.append("--source-data" if dump.use_source_data else "--master-data")
    args += [
        "--single-transaction",
        "--skip-lock-tables",
        "--compact",
        "--skip-opt",
        "--quick",
        "--no-create-info",
        "--skip-extended-insert",
    ]
    if dump.hex_blob:
        args.append("--hex-blob")
    if dump.where:
        args.append(f"--where={dump.where}")
    args += dump.extra_options

    if dump.tables:
        args.append(dump.table_db)
        args += dump.tables
    elif dump.databases:
        args.append("--databases")
        args += dump.databases
    else:
        args.append("--all-databases")
    return args


class Dumper:
    """One mysqldump run: start it, stream stdout lines, collect the exit status."""

    def __init__(self, source: SourceConfig, dump: DumpConfig) -> None:
        self._source = source
        self._dump = dump
        self._proc: asyncio.subprocess.Process | None = None
        self._stderr: deque[str] = deque(maxlen=_STDERR_TAIL)
        self._stderr_task: asyncio.Task[None] | None = None
        self._terminated = False

    @property
    def args(self) -> list[str]:
        return build_dump_args(self._source, self._dump)

    @property
    def default_schema(self) -> str:
        """Database the dump output refers to before any ``USE`` line."""
        return self._dump.table_db if self._dump.tables else ""

    async def start(self) -> None:
        args = self.args
        env = dict(os.environ)
        password = self._source.password.get_secret_value()
        if password:
            env["MYSQL_PWD"] = password
        logger.info("dumper.starting", args=args)
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                limit=_LINE_LIMIT,
            )
        except OSError as exc:
            msg = f"cannot start {self._dump.execution_path}: {exc}"
            raise SnapshotError(msg) from exc
        self._stderr_task = asyncio.create_task(self._drain_stderr())

    async def _drain_stderr(self) -> None:
        assert self._proc is not None and self._proc.stderr is not None
        async for raw in self._proc.stderr:
            line = raw.decode(errors="replace").rstrip()
            if line:
                self._stderr.append(line)
                logger.debug("dumper.stderr", line=line)

    async def lines(self) -> AsyncIterator[str]:
        if self._proc is None or self._proc.stdout is None:
            raise SnapshotError("dumper has not been started")
        async for raw in self._proc.stdout:
            yield raw.decode("utf-8", errors="surrogateescape").rstrip("\r\n")

    async def wait(self) -> None:
        """Wait for exit; a non-zero status raises SnapshotError."""
        if self._proc is None:
            raise SnapshotError("dumper has not been started")
        code = await self._proc.wait()
        if self._terminated:
            logger.info("dumper.finished", returncode=code, terminated=True)
            return
        if self._stderr_task is not None:
            await self._stderr_task
        if code != 0:
            tail = "\n".join(self._stderr)
            msg = f"{self._dump.execution_path} exited with status {code}: {tail}"
            raise SnapshotError(msg)
        logger.info("dumper.finished", returncode=code)

    async def terminate(self) -> None:
        """Kill the process if it is still running.  Safe to call repeatedly."""
        proc = self._proc
        if proc is None or self._terminated:
            return
        self._terminated = True
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
            logger.info("dumper.terminated")
        if self._stderr_task is not None:
            self._stderr_task.cancel()
