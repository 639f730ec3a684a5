# Overview: Opaque artifact storage (QR images, documents) keyed by relative path under ARTIFACT_ROOT.

from __future__ import annotations

from pathlib import Path, PurePosixPath

from flask import current_app

from ..validation import ValidationError


def _root() -> Path:
    return Path(current_app.config["ARTIFACT_ROOT"])


def _resolve(key: str) -> Path:
    rel = PurePosixPath(key)
    if not key or rel.is_absolute() or ".." in rel.parts:
        raise ValidationError(f"Invalid artifact key: {key!r}")
    return _root().joinpath(*rel.parts)


def save(key: str, blob: bytes) -> str:
    if not isinstance(blob, (bytes, bytearray)) or not blob:
        raise ValidationError("Artifact content must be non-empty bytes")
    path = _resolve(key)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(bytes(blob))
    return key


def exists(key: str) -> bool:
    return _resolve(key).is_file()


def path(key: str) -> Path:
    return _resolve(key)


def delete(key: str) -> bool:
    """Remove an artifact. Returns False when it was already gone."""
    target = _resolve(key)
    if not target.exists():
        return False
    target.unlink()
    current_app.logger.info("Artifact discarded: %s", key)
    return True
