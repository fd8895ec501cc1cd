"""Profile and settings tables."""

from __future__ import annotations

from sqlalchemy import Float, Integer, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from syncboard.models.base import Base, IntBool

# Columns added after the first release, applied with ALTER TABLE on old databases.
PROFILE_ADDED_COLUMNS: tuple[tuple[str, str], ...] = (
    ("max_age", "TEXT NOT NULL DEFAULT ''"),
    ("min_age", "TEXT NOT NULL DEFAULT ''"),
    ("max_depth", "INTEGER"),
    ("delete_excluded", "INTEGER NOT NULL DEFAULT 0"),
    ("dry_run", "INTEGER NOT NULL DEFAULT 0"),
    ("max_transfer", "TEXT NOT NULL DEFAULT ''"),
    ("max_delete_size", "TEXT NOT NULL DEFAULT ''"),
    ("suffix", "TEXT NOT NULL DEFAULT ''"),
    ("suffix_keep_extension", "INTEGER NOT NULL DEFAULT 0"),
    ("check_first", "INTEGER NOT NULL DEFAULT 0"),
    ("order_by", "TEXT NOT NULL DEFAULT ''"),
    ("retries_sleep", "TEXT NOT NULL DEFAULT ''"),
    ("tps_limit", "REAL"),
    ("conn_timeout", "TEXT NOT NULL DEFAULT ''"),
    ("io_timeout", "TEXT NOT NULL DEFAULT ''"),
    ("size_only", "INTEGER NOT NULL DEFAULT 0"),
    ("update_mode", "INTEGER NOT NULL DEFAULT 0"),
    ("ignore_existing", "INTEGER NOT NULL DEFAULT 0"),
    ("delete_timing", "TEXT NOT NULL DEFAULT ''"),
    ("resilient", "INTEGER NOT NULL DEFAULT 0"),
    ("max_lock", "TEXT NOT NULL DEFAULT ''"),
    ("check_access", "INTEGER NOT NULL DEFAULT 0"),
    ("conflict_loser", "TEXT NOT NULL DEFAULT ''"),
    ("conflict_suffix", "TEXT NOT NULL DEFAULT ''"),
)


def _text() -> Mapped[str]:
    return mapped_column(Text, nullable=False, default="", server_default=text("''"))


def _flag() -> Mapped[bool]:
    return mapped_column(IntBool, nullable=False, default=False, server_default=text("0"))


class SettingRow(Base):
    """Key/value application setting."""

    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[str] = _text()


class ProfileRow(Base):
    """Named transfer configuration."""

    __tablename__ = "profiles"

    name: Mapped[str] = mapped_column(Text, primary_key=True)
    from_path: Mapped[str] = _text()
    to_path: Mapped[str] = _text()
    included_paths: Mapped[str] = mapped_column(
        Text, nullable=False, default="[]", server_default=text("'[]'")
    )
    excluded_paths: Mapped[str] = mapped_column(
        Text, nullable=False, default="[]", server_default=text("'[]'")
    )
    bandwidth: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    parallel: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    backup_path: Mapped[str] = _text()
    cache_path: Mapped[str] = _text()
    min_size: Mapped[str] = _text()
    max_size: Mapped[str] = _text()
    filter_from_file: Mapped[str] = _text()
    exclude_if_present: Mapped[str] = _text()
    use_regex: Mapped[bool] = _flag()
    max_delete: Mapped[int | None] = mapped_column(Integer, nullable=True)
    immutable: Mapped[bool] = _flag()
    conflict_resolution: Mapped[str] = _text()
    multi_thread_streams: Mapped[int | None] = mapped_column(Integer, nullable=True)
    buffer_size: Mapped[str] = _text()
    fast_list: Mapped[bool] = _flag()
    retries: Mapped[int | None] = mapped_column(Integer, nullable=True)
    low_level_retries: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_duration: Mapped[str] = _text()

    max_age: Mapped[str] = _text()
    min_age: Mapped[str] = _text()
    max_depth: Mapped[int | None] = mapped_column(Integer, nullable=True)
    delete_excluded: Mapped[bool] = _flag()
    dry_run: Mapped[bool] = _flag()
    max_transfer: Mapped[str] = _text()
    max_delete_size: Mapped[str] = _text()
    suffix: Mapped[str] = _text()
    suffix_keep_extension: Mapped[bool] = _flag()
    check_first: Mapped[bool] = _flag()
    order_by: Mapped[str] = _text()
    retries_sleep: Mapped[str] = _text()
    tps_limit: Mapped[float | None] = mapped_column(Float, nullable=True)
    conn_timeout: Mapped[str] = _text()
    io_timeout: Mapped[str] = _text()
    size_only: Mapped[bool] = _flag()
    update_mode: Mapped[bool] = _flag()
    ignore_existing: Mapped[bool] = _flag()
    delete_timing: Mapped[str] = _text()
    resilient: Mapped[bool] = _flag()
    max_lock: Mapped[str] = _text()
    check_access: Mapped[bool] = _flag()
    conflict_loser: Mapped[str] = _text()
    conflict_suffix: Mapped[str] = _text()
