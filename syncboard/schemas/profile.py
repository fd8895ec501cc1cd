"""Profile schema: a named bundle of transfer parameters."""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


def parse_leading_int(value: Any) -> int:
    """Read an integer from a legacy string field; malformed values become 0."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    match = _LEADING_INT_RE.match(str(value))
    return int(match.group(1)) if match else 0


class Profile(BaseModel):
    """Transfer configuration used by sync tasks, board edges and flow operations."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = ""
    from_path: str = Field(default="", alias="from")
    to_path: str = Field(default="", alias="to")
    included_paths: list[str] = Field(default_factory=list)
    excluded_paths: list[str] = Field(default_factory=list)
    bandwidth: int = 0
    parallel: int = 0
    backup_path: str = ""
    cache_path: str = ""

    # Filtering
    min_size: str = ""
    max_size: str = ""
    filter_from_file: str = ""
    exclude_if_present: str = ""
    use_regex: bool = False
    max_age: str = ""
    min_age: str = ""
    max_depth: int | None = None
    delete_excluded: bool = False

    # Safety
    max_delete: int | None = None
    immutable: bool = False
    dry_run: bool = False
    max_transfer: str = ""
    max_delete_size: str = ""
    suffix: str = ""
    suffix_keep_extension: bool = False

    # Performance
    multi_thread_streams: int | None = None
    buffer_size: str = ""
    fast_list: bool = False
    retries: int | None = None
    low_level_retries: int | None = None
    max_duration: str = ""
    check_first: bool = False
    order_by: str = ""
    retries_sleep: str = ""
    tps_limit: float | None = None
    conn_timeout: str = ""
    io_timeout: str = ""

    # Comparison and sync behaviour
    size_only: bool = False
    update_mode: bool = False
    ignore_existing: bool = False
    delete_timing: str = ""

    # Bisync
    conflict_resolution: str = ""
    resilient: bool = False
    max_lock: str = ""
    check_access: bool = False
    conflict_loser: str = ""
    conflict_suffix: str = ""

    @field_validator("included_paths", "excluded_paths", mode="before")
    @classmethod
    def null_paths_are_empty(cls, v: Any) -> Any:
        """Accept ``null`` pattern lists from older exports."""
        _ = cls
        return [] if v is None else v

    @field_validator("bandwidth", mode="before")
    @classmethod
    def bandwidth_from_legacy_string(cls, v: Any) -> int:
        """Older layouts stored bandwidth as text such as ``"5M"``."""
        _ = cls
        return parse_leading_int(v)

    def to_json(self) -> str:
        """Serialize for a ``sync_config`` column."""
        return self.model_dump_json(by_alias=True)
