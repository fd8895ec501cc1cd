"""Remote and crypt-remote schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class RemoteInfo(BaseModel):
    name: str
    type: str
    config: dict[str, str] = Field(default_factory=dict)
    description: str = ""


class RemoteCreate(BaseModel):
    name: str
    type: str
    config: dict[str, str] = Field(default_factory=dict)


class RemoteUpdate(BaseModel):
    config: dict[str, str] = Field(default_factory=dict)


class CryptRemoteConfig(BaseModel):
    name: str
    wrapped_remote: str
    password: str
    password2: str = ""
    filename_encrypt: str = "standard"
    directory_encrypt: bool = True


class FileEntry(BaseModel):
    """Listing row returned by remote probes."""

    path: str
    name: str
    size: int = 0
    mod_time: str = ""
    is_dir: bool = False


class RemoteUsage(BaseModel):
    total: int | None = None
    used: int | None = None
    free: int | None = None


class RemoteSize(BaseModel):
    count: int = 0
    bytes: int = 0
