"""Admission-time validators for profiles, remote names and cron expressions.

Every validator raises ``ValidationError`` with a ``"field: message"`` text
and returns None when the value is acceptable.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from apscheduler.triggers.cron import CronTrigger

from syncboard.exceptions import ValidationError
from syncboard.services.datetime_service import parse_duration

if TYPE_CHECKING:
    from syncboard.schemas.profile import Profile

MAX_NAME_LENGTH = 100
MAX_REMOTE_NAME_LENGTH = 50
MAX_PATTERN_LENGTH = 1000
MAX_PARALLEL = 256
MAX_BANDWIDTH = 10000
MAX_MULTI_THREAD_STREAMS = 64
MAX_RETRIES = 100

_REMOTE_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_SIZE_SUFFIX_RE = re.compile(r"^(\d+(\.\d+)?)\s*([KMGTPE](i?B)?|B)?$|^off$", re.IGNORECASE)
_CONFLICT_RESOLUTIONS = frozenset(
    {"", "none", "newer", "older", "larger", "smaller", "path1", "path2"}
)


def _invalid(field: str, message: str) -> ValidationError:
    return ValidationError(f"{field}: {message}", details=field)


def validate_name(name: str) -> None:
    if not name:
        raise _invalid("name", "cannot be empty")
    if len(name) > MAX_NAME_LENGTH:
        raise _invalid("name", f"cannot exceed {MAX_NAME_LENGTH} characters")
    if ".." in name or "/" in name or "\\" in name:
        raise _invalid("name", "contains invalid characters")


def _is_local_path(path: str) -> bool:
    return path.startswith("/") or (len(path) >= 2 and path[1] == ":")


def validate_rclone_path(path: str, field: str) -> None:
    """Validate a local path or a ``remote:path`` string."""
    if not path:
        raise _invalid(field, "cannot be empty")
    if ".." in path:
        raise _invalid(field, "path traversal not allowed")

    if _is_local_path(path):
        if path == "/" or (path[1:2] == ":" and len(path) <= 3):
            raise _invalid(field, "path too short")
        if "\x00" in path:
            raise _invalid(field, "contains invalid characters")
        return

    remote_name, sep, remote_path = path.partition(":")
    if not sep:
        raise _invalid(field, "invalid remote path format (expected remote:path)")
    if not remote_name:
        raise _invalid(field, "remote name cannot be empty")
    if not _REMOTE_NAME_RE.match(remote_name):
        raise _invalid(
            field,
            "remote name contains invalid characters "
            "(only alphanumeric, dash, underscore allowed)",
        )
    if len(remote_name) > MAX_REMOTE_NAME_LENGTH:
        raise _invalid(field, f"remote name too long (max {MAX_REMOTE_NAME_LENGTH} characters)")
    # An empty path after the colon means the remote root.
    if "\x00" in remote_path:
        raise _invalid(field, "path contains invalid characters")


def validate_remote_name(name: str) -> None:
    if not name:
        raise _invalid("remote_name", "cannot be empty")
    if not _REMOTE_NAME_RE.match(name):
        raise _invalid(
            "remote_name",
            "contains invalid characters (only alphanumeric, dash, underscore allowed)",
        )
    if len(name) > MAX_REMOTE_NAME_LENGTH:
        raise _invalid("remote_name", f"too long (max {MAX_REMOTE_NAME_LENGTH} characters)")


def validate_parallel(parallel: int) -> None:
    if parallel < 0:
        raise _invalid("parallel", "cannot be negative")
    if parallel > MAX_PARALLEL:
        raise _invalid("parallel", f"cannot exceed {MAX_PARALLEL}")


def validate_bandwidth(bandwidth: int) -> None:
    if bandwidth < 0:
        raise _invalid("bandwidth", "cannot be negative")
    if bandwidth > MAX_BANDWIDTH:
        raise _invalid("bandwidth", f"cannot exceed {MAX_BANDWIDTH} MB/s")


def validate_patterns(patterns: list[str], field: str) -> None:
    for i, pattern in enumerate(patterns):
        if "\x00" in pattern:
            raise _invalid(f"{field}[{i}]", "contains invalid characters")
        if len(pattern) > MAX_PATTERN_LENGTH:
            raise _invalid(
                f"{field}[{i}]", f"pattern too long (max {MAX_PATTERN_LENGTH} characters)"
            )


def validate_regex_patterns(patterns: list[str], field: str) -> None:
    for i, pattern in enumerate(patterns):
        try:
            re.compile(pattern)
        except re.error as exc:
            raise _invalid(f"{field}[{i}]", f"invalid regex pattern: {exc}") from exc


def validate_size_suffix(value: str, field: str) -> None:
    if value and not _SIZE_SUFFIX_RE.match(value):
        raise _invalid(
            field,
            "invalid size format (use number with optional K/M/G/T/P suffix, "
            "e.g. '100K', '10M', '1G', or 'off')",
        )


def validate_duration(value: str, field: str) -> None:
    if not value:
        return
    try:
        parse_duration(value)
    except ValueError as exc:
        raise _invalid(
            field,
            f"invalid duration format (use Go duration syntax, e.g. '1h30m', '45s'): {exc}",
        ) from exc


def validate_conflict_resolution(value: str) -> None:
    if value not in _CONFLICT_RESOLUTIONS:
        raise _invalid(
            "conflict_resolution",
            "must be one of: none, newer, older, larger, smaller, path1, path2",
        )


def validate_max_delete(value: int | None) -> None:
    if value is not None and value < -1:
        raise _invalid("max_delete", "cannot be less than -1 (-1 means unlimited)")


def _validate_bounded(value: int | None, field: str, maximum: int) -> None:
    if value is None:
        return
    if value < 0:
        raise _invalid(field, "cannot be negative")
    if value > maximum:
        raise _invalid(field, f"cannot exceed {maximum}")


def validate_profile(profile: Profile) -> None:
    """Validate a complete profile, stopping at the first problem."""
    validate_name(profile.name)
    validate_rclone_path(profile.from_path, "from")
    validate_rclone_path(profile.to_path, "to")
    validate_parallel(profile.parallel)
    validate_bandwidth(profile.bandwidth)
    validate_patterns(profile.included_paths, "included_paths")
    validate_patterns(profile.excluded_paths, "excluded_paths")
    validate_size_suffix(profile.min_size, "min_size")
    validate_size_suffix(profile.max_size, "max_size")
    validate_conflict_resolution(profile.conflict_resolution)
    validate_max_delete(profile.max_delete)
    validate_size_suffix(profile.buffer_size, "buffer_size")
    validate_duration(profile.max_duration, "max_duration")
    _validate_bounded(
        profile.multi_thread_streams, "multi_thread_streams", MAX_MULTI_THREAD_STREAMS
    )
    _validate_bounded(profile.retries, "retries", MAX_RETRIES)
    _validate_bounded(profile.low_level_retries, "low_level_retries", MAX_RETRIES)
    if profile.use_regex:
        validate_regex_patterns(profile.included_paths, "included_paths")
        validate_regex_patterns(profile.excluded_paths, "excluded_paths")


def parse_cron(expr: str) -> CronTrigger:
    """Parse a standard 5-field cron expression into a trigger."""
    fields = expr.split()
    if len(fields) != 5:
        raise _invalid(
            "cron_expr", f"invalid cron expression {expr!r}: expected 5 fields, got {len(fields)}"
        )
    try:
        return CronTrigger.from_crontab(expr, timezone="UTC")
    except ValueError as exc:
        raise _invalid("cron_expr", f"invalid cron expression {expr!r}: {exc}") from exc


def validate_cron(expr: str) -> None:
    parse_cron(expr)
