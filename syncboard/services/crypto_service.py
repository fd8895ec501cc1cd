"""Passphrase encryption for backup section payloads."""

from __future__ import annotations

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from syncboard.exceptions import ValidationError


def _derive_key(passphrase: str) -> bytes:
    """Derive a Fernet key from a passphrase using SHA-256."""
    digest = hashlib.sha256(passphrase.encode()).digest()
    return base64.urlsafe_b64encode(digest)


def encrypt_payload(payload: bytes, passphrase: str) -> bytes:
    return Fernet(_derive_key(passphrase)).encrypt(payload)


def decrypt_payload(token: bytes, passphrase: str) -> bytes:
    """Decrypt a section payload. Raises ValidationError on a wrong passphrase."""
    try:
        return Fernet(_derive_key(passphrase)).decrypt(token)
    except InvalidToken as exc:
        raise ValidationError("failed to decrypt backup: wrong passphrase") from exc
