"""Backup export/import in the ``NSDRIVE`` binary container.

Layout (little-endian)::

    magic "NSDRIVE" (7) | version (1) | flags (4) | crc32 (4) | reserved (16)
    { section type (1) | length (4) | payload (length) }*
    0xFF

Payloads are JSON, gzipped when ``FLAG_COMPRESSED`` is set and Fernet-encrypted
when ``FLAG_ENCRYPTED`` is set. The CRC covers the payload bytes as written.
"""

from __future__ import annotations

import asyncio
import gzip
import json
import logging
import struct
import zlib
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import pydantic

from syncboard.exceptions import AppError, ValidationError
from syncboard.schemas.backup import (
    ExportManifest,
    ImportPreview,
    ImportPreviewSection,
    ImportResult,
    RemoteExport,
)
from syncboard.schemas.board import Board
from syncboard.schemas.settings import AppSettings
from syncboard.services.crypto_service import decrypt_payload, encrypt_payload
from syncboard.services.datetime_service import now_utc

if TYPE_CHECKING:
    from syncboard.schemas.backup import ExportOptions, ImportOptions
    from syncboard.services.board_service import BoardService
    from syncboard.services.notification_service import NotificationService
    from syncboard.services.transfer_engine import TransferEngine

logger = logging.getLogger(__name__)

MAGIC = b"NSDRIVE"
FORMAT_VERSION = 1
HEADER = struct.Struct("<7sBII16s")
SECTION_HEADER = struct.Struct("<BI")

SECTION_BOARDS = 0x01
SECTION_REMOTES = 0x02
SECTION_SETTINGS = 0x03
SECTION_MANIFEST = 0x04
EOF_MARKER = 0xFF

FLAG_COMPRESSED = 0x1
FLAG_ENCRYPTED = 0x2
FLAG_EXCLUDE_TOKENS = 0x4

SENSITIVE_KEYS = frozenset(
    {
        "token",
        "client_id",
        "client_secret",
        "password",
        "password2",
        "pass",
        "secret",
        "key",
        "private_key",
        "service_account_file",
    }
)

TOKENS_EXCLUDED_WARNING = (
    "This backup was exported without authentication tokens. "
    "Remotes will need to be re-authenticated after import."
)


@dataclass
class ParsedBackup:
    flags: int
    manifest: ExportManifest | None = None
    boards: list[Board] = field(default_factory=list)
    remotes: list[RemoteExport] = field(default_factory=list)
    settings: dict[str, Any] | None = None


def pack_backup(sections: list[tuple[int, bytes]], flags: int) -> bytes:
    """Frame already-encoded section payloads into a backup file."""
    checksum = zlib.crc32(b"".join(payload for _, payload in sections)) & 0xFFFFFFFF
    parts = [HEADER.pack(MAGIC, FORMAT_VERSION, flags, checksum, bytes(16))]
    for section_type, payload in sections:
        parts.append(SECTION_HEADER.pack(section_type, len(payload)))
        parts.append(payload)
    parts.append(bytes([EOF_MARKER]))
    return b"".join(parts)


def encode_section(value: Any, flags: int, passphrase: str = "") -> bytes:
    payload = json.dumps(value).encode()
    if flags & FLAG_COMPRESSED:
        payload = gzip.compress(payload)
    if flags & FLAG_ENCRYPTED:
        payload = encrypt_payload(payload, passphrase)
    return payload


def _decode_section(payload: bytes, flags: int, passphrase: str) -> Any:
    if flags & FLAG_ENCRYPTED:
        if not passphrase:
            raise ValidationError("backup is encrypted: a passphrase is required")
        payload = decrypt_payload(payload, passphrase)
    if flags & FLAG_COMPRESSED:
        try:
            payload = gzip.decompress(payload)
        except (OSError, EOFError) as exc:
            raise ValidationError(f"failed to decompress section: {exc}") from exc
    try:
        return json.loads(payload)
    except ValueError as exc:
        raise ValidationError(f"failed to parse section: {exc}") from exc


def unpack_backup(data: bytes) -> tuple[int, int, list[tuple[int, bytes]]]:
    """Split a backup file into ``(flags, stored checksum, sections)``.

    Raises ValidationError on a malformed container or checksum mismatch.
    """
    if len(data) < HEADER.size + 1:
        raise ValidationError("file too small")
    magic, version, flags, stored_checksum, _reserved = HEADER.unpack_from(data, 0)
    if magic != MAGIC:
        raise ValidationError("invalid file format (bad magic bytes)")
    if version > FORMAT_VERSION:
        raise ValidationError(
            f"unsupported format version: {version} (max supported: {FORMAT_VERSION})"
        )

    offset = HEADER.size
    sections: list[tuple[int, bytes]] = []
    while True:
        if offset >= len(data):
            raise ValidationError("failed to read section type: unexpected end of file")
        section_type = data[offset]
        if section_type == EOF_MARKER:
            break
        if offset + SECTION_HEADER.size > len(data):
            raise ValidationError("failed to read section length: unexpected end of file")
        _, length = SECTION_HEADER.unpack_from(data, offset)
        offset += SECTION_HEADER.size
        payload = data[offset : offset + length]
        if len(payload) != length:
            raise ValidationError("failed to read section data: unexpected end of file")
        offset += length
        sections.append((section_type, payload))

    checksum = zlib.crc32(b"".join(payload for _, payload in sections)) & 0xFFFFFFFF
    if checksum != stored_checksum:
        raise ValidationError("checksum mismatch: file may be corrupted")
    return flags, stored_checksum, sections


def parse_backup(data: bytes, passphrase: str = "") -> ParsedBackup:
    flags, _, sections = unpack_backup(data)
    parsed = ParsedBackup(flags=flags)
    try:
        for section_type, payload in sections:
            if section_type == SECTION_BOARDS:
                value = _decode_section(payload, flags, passphrase)
                parsed.boards = [Board.model_validate(item) for item in value]
            elif section_type == SECTION_REMOTES:
                value = _decode_section(payload, flags, passphrase)
                parsed.remotes = [RemoteExport.model_validate(item) for item in value]
            elif section_type == SECTION_SETTINGS:
                parsed.settings = dict(_decode_section(payload, flags, passphrase))
            elif section_type == SECTION_MANIFEST:
                value = _decode_section(payload, flags, passphrase)
                parsed.manifest = ExportManifest.model_validate(value)
            else:
                logger.warning("Skipping unknown backup section 0x%02x", section_type)
    except (pydantic.ValidationError, TypeError) as exc:
        raise ValidationError("failed to parse backup contents", details=str(exc)) from exc
    return parsed


def strip_tokens(config: dict[str, str]) -> dict[str, str]:
    return {key: value for key, value in config.items() if key not in SENSITIVE_KEYS}


class BackupService:
    """Exports boards, remotes and settings; imports them back with merge rules."""

    def __init__(
        self,
        boards: BoardService,
        engine: TransferEngine,
        notifications: NotificationService | None = None,
        app_version: str = "",
    ) -> None:
        self._boards = boards
        self._engine = engine
        self._notifications = notifications
        self._app_version = app_version
        self._lock = asyncio.Lock()

    async def _remotes_for_export(self, exclude_tokens: bool) -> list[RemoteExport]:
        remotes = await self._engine.list_remotes()
        return [
            RemoteExport(
                name=remote.name,
                type=remote.type,
                config=strip_tokens(remote.config) if exclude_tokens else dict(remote.config),
            )
            for remote in remotes
        ]

    async def export_preview(self, options: ExportOptions) -> ExportManifest:
        manifest = ExportManifest(
            version=str(FORMAT_VERSION), app_version=self._app_version, export_date=now_utc()
        )
        if options.include_boards:
            manifest.board_count = len(await self._boards.get_boards())
        if options.include_remotes:
            manifest.remote_count = len(await self._engine.list_remotes())
        return manifest

    async def export_backup(self, options: ExportOptions) -> bytes:
        flags = 0
        if options.compress:
            flags |= FLAG_COMPRESSED
        if options.exclude_tokens:
            flags |= FLAG_EXCLUDE_TOKENS
        if options.passphrase:
            flags |= FLAG_ENCRYPTED

        async with self._lock:
            sections: list[tuple[int, bytes]] = []
            manifest = ExportManifest(
                version=str(FORMAT_VERSION), app_version=self._app_version, export_date=now_utc()
            )

            if options.include_boards:
                boards = await self._boards.get_boards()
                manifest.board_count = len(boards)
                if boards:
                    value = [board.model_dump(mode="json", by_alias=True) for board in boards]
                    sections.append(
                        (SECTION_BOARDS, encode_section(value, flags, options.passphrase))
                    )

            if options.include_remotes:
                remotes = await self._remotes_for_export(options.exclude_tokens)
                manifest.remote_count = len(remotes)
                if remotes:
                    value = [remote.model_dump() for remote in remotes]
                    sections.append(
                        (SECTION_REMOTES, encode_section(value, flags, options.passphrase))
                    )

            if options.include_settings and self._notifications is not None:
                settings = await self._notifications.get_settings()
                sections.append(
                    (
                        SECTION_SETTINGS,
                        encode_section(settings.model_dump(), flags, options.passphrase),
                    )
                )

            manifest.checksum = (
                zlib.crc32(b"".join(payload for _, payload in sections)) & 0xFFFFFFFF
            )
            sections.append(
                (
                    SECTION_MANIFEST,
                    encode_section(manifest.model_dump(mode="json"), flags, options.passphrase),
                )
            )
            data = pack_backup(sections, flags)

        logger.info("Exported %d backup sections, total size: %d bytes", len(sections), len(data))
        return data

    async def preview_import(self, data: bytes, passphrase: str = "") -> ImportPreview:
        preview = ImportPreview()
        try:
            parsed = parse_backup(data, passphrase)
        except ValidationError as exc:
            preview.errors.append(f"Invalid file format: {exc.message}")
            return preview

        preview.valid = True
        preview.manifest = parsed.manifest
        if parsed.flags & FLAG_EXCLUDE_TOKENS:
            preview.warnings.append(TOKENS_EXCLUDED_WARNING)

        if parsed.boards:
            existing = {board.name for board in await self._boards.get_boards()}
            preview.boards = self._preview_section(
                [board.name for board in parsed.boards], existing
            )
        if parsed.remotes:
            existing = {remote.name for remote in await self._engine.list_remotes()}
            preview.remotes = self._preview_section(
                [remote.name for remote in parsed.remotes], existing
            )
        return preview

    @staticmethod
    def _preview_section(names: list[str], existing: set[str]) -> ImportPreviewSection:
        section = ImportPreviewSection(total=len(names))
        for name in names:
            if name in existing:
                section.to_update.append(name)
            else:
                section.to_add.append(name)
        return section

    async def import_backup(self, data: bytes, options: ImportOptions) -> ImportResult:
        """Apply a backup. The whole file is parsed before anything is written."""
        parsed = parse_backup(data, options.passphrase)
        result = ImportResult()
        if parsed.flags & FLAG_EXCLUDE_TOKENS:
            result.warnings.append(
                "Backup was exported without authentication tokens. "
                "Remotes will need re-authentication."
            )

        async with self._lock:
            if parsed.boards:
                await self._import_boards(parsed.boards, options, result)
            if parsed.remotes:
                await self._import_remotes(parsed.remotes, options, result)
            if parsed.settings is not None and not options.merge_mode:
                await self._import_settings(parsed.settings, result)

        result.success = not result.errors
        logger.info(
            "Import completed - Boards: %d added, %d updated, %d skipped; "
            "Remotes: %d added, %d updated, %d skipped",
            result.boards_added,
            result.boards_updated,
            result.boards_skipped,
            result.remotes_added,
            result.remotes_updated,
            result.remotes_skipped,
        )
        return result

    async def _import_boards(
        self, boards: list[Board], options: ImportOptions, result: ImportResult
    ) -> None:
        existing = {board.name: board for board in await self._boards.get_boards()}
        for board in boards:
            current = existing.get(board.name)
            if current is None:
                try:
                    await self._boards.add_board(board)
                except AppError as exc:
                    result.errors.append(f"Failed to add board '{board.name}': {exc}")
                else:
                    result.boards_added += 1
            elif options.merge_mode or not options.overwrite_boards:
                result.boards_skipped += 1
            else:
                board = board.model_copy(update={"id": current.id})
                try:
                    await self._boards.update_board(board)
                except AppError as exc:
                    result.errors.append(f"Failed to update board '{board.name}': {exc}")
                else:
                    result.boards_updated += 1

    async def _import_remotes(
        self, remotes: list[RemoteExport], options: ImportOptions, result: ImportResult
    ) -> None:
        existing = {remote.name for remote in await self._engine.list_remotes()}
        for remote in remotes:
            exists = remote.name in existing
            if exists and (options.merge_mode or not options.overwrite_remotes):
                result.remotes_skipped += 1
                continue
            verb = "update" if exists else "add"
            try:
                if exists:
                    await self._engine.delete_remote(remote.name)
                await self._engine.create_remote(remote.name, remote.type, dict(remote.config))
            except AppError as exc:
                result.errors.append(f"Failed to {verb} remote '{remote.name}': {exc}")
                continue
            if exists:
                result.remotes_updated += 1
            else:
                result.remotes_added += 1
            if not remote.config.get("token"):
                result.warnings.append(f"Remote '{remote.name}' needs re-authentication")

    async def _import_settings(self, values: dict[str, Any], result: ImportResult) -> None:
        if self._notifications is None:
            result.warnings.append("Settings section ignored: settings are not available")
            return
        current = await self._notifications.get_settings()
        known = {key: value for key, value in values.items() if key in AppSettings.model_fields}
        try:
            await self._notifications.update_settings(current.model_copy(update=known))
        except AppError as exc:
            result.errors.append(f"Failed to apply settings: {exc}")
            return
        result.settings_applied = len(known)
