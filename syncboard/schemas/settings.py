"""Persisted application preferences."""

from __future__ import annotations

from pydantic import BaseModel


class AppSettings(BaseModel):
    """Boolean preferences stored in the ``settings`` table as "true"/"false"."""

    notifications_enabled: bool = True
    debug_mode: bool = False
    minimize_to_tray: bool = False
    start_at_login: bool = False
