"""Transfer engine interface and the rclone CLI adapter.

The orchestration core only talks to ``TransferEngine``. ``RcloneCliEngine``
drives the ``rclone`` binary as a child process, streaming its output lines
into the caller's log sink. Cancelling the awaiting task kills the child.
"""

from __future__ import annotations

import asyncio
import json
import logging
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol

from syncboard.exceptions import ConfigurationError, NotFoundError, TransferEngineError
from syncboard.schemas.remote import FileEntry, RemoteInfo, RemoteSize, RemoteUsage

if TYPE_CHECKING:
    from pathlib import Path

    from syncboard.schemas.profile import Profile

logger = logging.getLogger(__name__)

LogSink = asyncio.Queue  # queue of output lines, consumed by the progress reader

_STDERR_TAIL_LINES = 20
_TERMINATE_TIMEOUT = 5.0


class SyncDirection(StrEnum):
    PULL = "pull"
    PUSH = "push"


class TransferEngine(Protocol):
    """Operations the orchestrator needs from a file-transfer backend."""

    async def init_config(self) -> None: ...

    async def sync(self, direction: SyncDirection, profile: Profile, log_sink: LogSink) -> None: ...

    async def bisync(self, profile: Profile, resync: bool, log_sink: LogSink) -> None: ...

    async def copy(self, profile: Profile, log_sink: LogSink) -> None: ...

    async def move(self, profile: Profile, log_sink: LogSink) -> None: ...

    async def check(self, profile: Profile, log_sink: LogSink) -> None: ...

    async def list_remotes(self) -> list[RemoteInfo]: ...

    async def create_remote(
        self, name: str, remote_type: str, config: dict[str, str], *, obscure: bool = False
    ) -> None: ...

    async def update_remote(self, name: str, config: dict[str, str]) -> None: ...

    async def delete_remote(self, name: str) -> None: ...

    async def test_remote(self, name: str) -> None: ...

    async def list_files(self, remote_path: str, recursive: bool = False) -> list[FileEntry]: ...

    async def delete_file(self, remote_path: str) -> None: ...

    async def purge(self, remote_path: str) -> None: ...

    async def mkdir(self, remote_path: str) -> None: ...

    async def about(self, remote_name: str) -> RemoteUsage: ...

    async def get_size(self, remote_path: str) -> RemoteSize: ...


def _append_value(args: list[str], flag: str, value: object) -> None:
    if value is None or value == "":
        return
    args.extend([flag, str(value)])


def build_profile_flags(profile: Profile) -> list[str]:
    """Translate a profile into rclone command-line flags."""
    args: list[str] = []
    if profile.parallel > 0:
        args.extend(["--transfers", str(profile.parallel)])
    if profile.bandwidth > 0:
        args.extend(["--bwlimit", f"{profile.bandwidth}M"])

    for pattern in profile.included_paths:
        if pattern:
            if profile.use_regex:
                args.extend(["--filter", f"+ {{{{{pattern}}}}}"])
            else:
                args.extend(["--include", pattern])
    for pattern in profile.excluded_paths:
        if pattern:
            if profile.use_regex:
                args.extend(["--filter", f"- {{{{{pattern}}}}}"])
            else:
                args.extend(["--exclude", pattern])

    _append_value(args, "--min-size", profile.min_size)
    _append_value(args, "--max-size", profile.max_size)
    _append_value(args, "--filter-from", profile.filter_from_file)
    _append_value(args, "--exclude-if-present", profile.exclude_if_present)
    _append_value(args, "--max-age", profile.max_age)
    _append_value(args, "--min-age", profile.min_age)
    _append_value(args, "--max-depth", profile.max_depth)
    if profile.delete_excluded:
        args.append("--delete-excluded")

    # Safety
    _append_value(args, "--backup-dir", profile.backup_path)
    _append_value(args, "--max-delete", profile.max_delete)
    if profile.immutable:
        args.append("--immutable")
    if profile.dry_run:
        args.append("--dry-run")
    _append_value(args, "--max-transfer", profile.max_transfer)
    _append_value(args, "--max-delete-size", profile.max_delete_size)
    _append_value(args, "--suffix", profile.suffix)
    if profile.suffix_keep_extension:
        args.append("--suffix-keep-extension")

    # Performance
    _append_value(args, "--multi-thread-streams", profile.multi_thread_streams)
    _append_value(args, "--buffer-size", profile.buffer_size)
    if profile.fast_list:
        args.append("--fast-list")
    _append_value(args, "--retries", profile.retries)
    _append_value(args, "--low-level-retries", profile.low_level_retries)
    _append_value(args, "--max-duration", profile.max_duration)
    if profile.check_first:
        args.append("--check-first")
    _append_value(args, "--order-by", profile.order_by)
    _append_value(args, "--retries-sleep", profile.retries_sleep)
    _append_value(args, "--tpslimit", profile.tps_limit)
    _append_value(args, "--contimeout", profile.conn_timeout)
    _append_value(args, "--timeout", profile.io_timeout)

    # Comparison
    if profile.size_only:
        args.append("--size-only")
    if profile.update_mode:
        args.append("--update")
    if profile.ignore_existing:
        args.append("--ignore-existing")
    if profile.delete_timing in ("before", "during", "after"):
        args.append(f"--delete-{profile.delete_timing}")

    _append_value(args, "--cache-dir", profile.cache_path)
    return args


def build_bisync_flags(profile: Profile, resync: bool) -> list[str]:
    args = ["--conflict-resolve", profile.conflict_resolution or "newer"]
    args.extend(["--conflict-loser", profile.conflict_loser or "delete"])
    _append_value(args, "--conflict-suffix", profile.conflict_suffix)
    if profile.resilient:
        args.append("--resilient")
    _append_value(args, "--max-lock", profile.max_lock)
    if profile.check_access:
        args.append("--check-access")
    if resync:
        args.append("--resync")
    return args


def _progress_flags() -> list[str]:
    return ["-v", "--stats", "1s", "--stats-one-line"]


class RcloneCliEngine:
    """``TransferEngine`` backed by the ``rclone`` command-line tool.

    Args:
        binary: Name or path of the rclone executable.
        config_path: Optional rclone config file; rclone's default is used otherwise.
    """

    def __init__(self, binary: str = "rclone", config_path: Path | None = None) -> None:
        self._binary = binary
        self._config_path = config_path
        self._version: str | None = None
        self._init_lock = asyncio.Lock()

    @property
    def version(self) -> str | None:
        return self._version

    def _command(self, *args: str) -> list[str]:
        command = [self._binary]
        if self._config_path is not None:
            command.extend(["--config", str(self._config_path)])
        command.extend(args)
        return command

    async def _spawn(self, command: list[str], merge_output: bool) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT if merge_output else asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            raise ConfigurationError(
                f"rclone binary not found: {self._binary}",
                details="Install rclone or set RCLONE_BINARY",
            ) from None

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=_TERMINATE_TIMEOUT)
        except TimeoutError:
            logger.warning("rclone (pid=%s) did not terminate, killing", proc.pid)
            proc.kill()
            await proc.wait()

    async def _run(self, *args: str) -> str:
        """Run a short rclone command and return its stdout."""
        proc = await self._spawn(self._command(*args), merge_output=False)
        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            await self._terminate(proc)
            raise
        if proc.returncode != 0:
            stderr_text = stderr.decode(errors="replace").strip()
            raise TransferEngineError(
                f"rclone {args[0]} failed (exit code {proc.returncode})",
                details=stderr_text[-2000:],
            )
        return stdout.decode(errors="replace")

    async def _stream(self, log_sink: LogSink, *args: str) -> None:
        """Run a transfer command, forwarding every output line to ``log_sink``."""
        command = self._command(*args)
        logger.info("Running %s", " ".join(command))
        proc = await self._spawn(command, merge_output=True)
        tail: list[str] = []
        try:
            if proc.stdout is not None:
                async for raw in proc.stdout:
                    line = raw.decode(errors="replace").rstrip()
                    if not line:
                        continue
                    tail.append(line)
                    del tail[:-_STDERR_TAIL_LINES]
                    await log_sink.put(line)
            await proc.wait()
        except asyncio.CancelledError:
            await self._terminate(proc)
            raise
        if proc.returncode != 0:
            raise TransferEngineError(
                f"rclone {args[0]} failed (exit code {proc.returncode})",
                details="\n".join(tail),
            )

    async def init_config(self) -> None:
        async with self._init_lock:
            if self._version is not None:
                return
            output = await self._run("version")
            self._version = output.splitlines()[0] if output else "unknown"
            logger.info("Transfer engine ready: %s", self._version)

    async def sync(self, direction: SyncDirection, profile: Profile, log_sink: LogSink) -> None:
        if direction == SyncDirection.PULL:
            source, target = profile.to_path, profile.from_path
        else:
            source, target = profile.from_path, profile.to_path
        await self._stream(
            log_sink, "sync", source, target, *build_profile_flags(profile), *_progress_flags()
        )

    async def bisync(self, profile: Profile, resync: bool, log_sink: LogSink) -> None:
        await self._stream(
            log_sink,
            "bisync",
            profile.from_path,
            profile.to_path,
            *build_profile_flags(profile),
            *build_bisync_flags(profile, resync),
            *_progress_flags(),
        )

    async def copy(self, profile: Profile, log_sink: LogSink) -> None:
        await self._stream(
            log_sink,
            "copy",
            profile.from_path,
            profile.to_path,
            *build_profile_flags(profile),
            *_progress_flags(),
        )

    async def move(self, profile: Profile, log_sink: LogSink) -> None:
        await self._stream(
            log_sink,
            "move",
            profile.from_path,
            profile.to_path,
            *build_profile_flags(profile),
            *_progress_flags(),
        )

    async def check(self, profile: Profile, log_sink: LogSink) -> None:
        await self._stream(
            log_sink, "check", profile.from_path, profile.to_path, *build_profile_flags(profile)
        )

    async def _dump_config(self) -> dict[str, dict[str, Any]]:
        output = await self._run("config", "dump")
        data = json.loads(output or "{}")
        if not isinstance(data, dict):
            raise TransferEngineError("unexpected rclone config dump output")
        return data

    async def list_remotes(self) -> list[RemoteInfo]:
        dump = await self._dump_config()
        remotes: list[RemoteInfo] = []
        for name, section in sorted(dump.items()):
            config = {key: str(value) for key, value in section.items() if key != "type"}
            remotes.append(RemoteInfo(name=name, type=str(section.get("type", "")), config=config))
        return remotes

    async def create_remote(
        self, name: str, remote_type: str, config: dict[str, str], *, obscure: bool = False
    ) -> None:
        pairs = [f"{key}={value}" for key, value in config.items()]
        extra = ["--obscure"] if obscure else []
        await self._run("config", "create", name, remote_type, *pairs, *extra, "--non-interactive")

    async def update_remote(self, name: str, config: dict[str, str]) -> None:
        pairs = [f"{key}={value}" for key, value in config.items()]
        await self._run("config", "update", name, *pairs, "--non-interactive")

    async def delete_remote(self, name: str) -> None:
        await self._run("config", "delete", name)

    async def test_remote(self, name: str) -> None:
        await self._run("lsd", f"{name}:", "--max-depth", "1")

    async def list_files(self, remote_path: str, recursive: bool = False) -> list[FileEntry]:
        args = ["lsjson", remote_path]
        if recursive:
            args.append("--recursive")
        try:
            output = await self._run(*args)
        except TransferEngineError as exc:
            if "directory not found" in exc.details:
                raise NotFoundError(f"path not found: {remote_path}") from exc
            raise
        return [
            FileEntry(
                path=item.get("Path", ""),
                name=item.get("Name", ""),
                size=max(int(item.get("Size", 0)), 0),
                mod_time=item.get("ModTime", ""),
                is_dir=bool(item.get("IsDir", False)),
            )
            for item in json.loads(output or "[]")
        ]

    async def delete_file(self, remote_path: str) -> None:
        await self._run("deletefile", remote_path)

    async def purge(self, remote_path: str) -> None:
        await self._run("purge", remote_path)

    async def mkdir(self, remote_path: str) -> None:
        await self._run("mkdir", remote_path)

    async def about(self, remote_name: str) -> RemoteUsage:
        output = await self._run("about", f"{remote_name}:", "--json")
        data = json.loads(output or "{}")
        return RemoteUsage(total=data.get("total"), used=data.get("used"), free=data.get("free"))

    async def get_size(self, remote_path: str) -> RemoteSize:
        output = await self._run("size", remote_path, "--json")
        data = json.loads(output or "{}")
        return RemoteSize(count=int(data.get("count", 0)), bytes=int(data.get("bytes", 0)))
