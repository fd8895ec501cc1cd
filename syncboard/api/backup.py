"""Backup API: export to, preview and import from ``.nsd`` files."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile

from syncboard.api.deps import get_backup_service
from syncboard.schemas.backup import (
    ExportManifest,
    ExportOptions,
    ImportOptions,
    ImportPreview,
    ImportResult,
)
from syncboard.services.backup_service import BackupService
from syncboard.services.datetime_service import now_utc

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/backup", tags=["backup"])

BACKUP_MEDIA_TYPE = "application/octet-stream"


@router.post("/export/preview", response_model=ExportManifest)
async def export_preview_endpoint(
    body: ExportOptions,
    backup: Annotated[BackupService, Depends(get_backup_service)],
) -> ExportManifest:
    return await backup.export_preview(body)


@router.post("/export")
async def export_endpoint(
    body: ExportOptions,
    backup: Annotated[BackupService, Depends(get_backup_service)],
) -> Response:
    data = await backup.export_backup(body)
    filename = f"syncboard-backup-{now_utc():%Y-%m-%d}.nsd"
    return Response(
        content=data,
        media_type=BACKUP_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/preview", response_model=ImportPreview)
async def preview_endpoint(
    backup: Annotated[BackupService, Depends(get_backup_service)],
    file: Annotated[UploadFile, File()],
    passphrase: Annotated[str, Form()] = "",
) -> ImportPreview:
    """Check a backup and report what an import would add or update."""
    return await backup.preview_import(await file.read(), passphrase)


@router.post("/import", response_model=ImportResult)
async def import_endpoint(
    backup: Annotated[BackupService, Depends(get_backup_service)],
    file: Annotated[UploadFile, File()],
    overwrite_boards: Annotated[bool, Form()] = False,
    overwrite_remotes: Annotated[bool, Form()] = False,
    merge_mode: Annotated[bool, Form()] = False,
    passphrase: Annotated[str, Form()] = "",
) -> ImportResult:
    options = ImportOptions(
        overwrite_boards=overwrite_boards,
        overwrite_remotes=overwrite_remotes,
        merge_mode=merge_mode,
        passphrase=passphrase,
    )
    data = await file.read()
    logger.info("Importing backup %r (%d bytes)", file.filename, len(data))
    return await backup.import_backup(data, options)
