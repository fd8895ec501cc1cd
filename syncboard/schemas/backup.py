"""Backup export/import schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class ExportOptions(BaseModel):
    include_boards: bool = True
    include_remotes: bool = True
    include_settings: bool = True
    exclude_tokens: bool = False
    compress: bool = True
    passphrase: str = ""


class ImportOptions(BaseModel):
    overwrite_boards: bool = False
    overwrite_remotes: bool = False
    merge_mode: bool = False
    passphrase: str = ""


class ExportManifest(BaseModel):
    version: str = "1"
    app_version: str = ""
    export_date: datetime
    board_count: int = 0
    remote_count: int = 0
    checksum: int = 0


class RemoteExport(BaseModel):
    name: str
    type: str
    config: dict[str, str] = Field(default_factory=dict)


class ImportPreviewSection(BaseModel):
    to_add: list[str] = Field(default_factory=list)
    to_update: list[str] = Field(default_factory=list)
    to_skip: list[str] = Field(default_factory=list)
    total: int = 0


class ImportPreview(BaseModel):
    valid: bool = False
    manifest: ExportManifest | None = None
    boards: ImportPreviewSection | None = None
    remotes: ImportPreviewSection | None = None
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class ImportResult(BaseModel):
    success: bool = True
    boards_added: int = 0
    boards_updated: int = 0
    boards_skipped: int = 0
    remotes_added: int = 0
    remotes_updated: int = 0
    remotes_skipped: int = 0
    settings_applied: int = 0
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
