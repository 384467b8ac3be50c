"""Helpers for text normalisation, time handling, hashing and folders.

The functions in this module are intentionally lightweight so they can be used
from any service without pulling additional dependencies.
"""
from __future__ import annotations

import hashlib
import json
import os
import re
import unicodedata
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Mapping, Union

from core.logger import log_debug, log_error

PathLike = Union[str, os.PathLike[str]]
Clock = Callable[[], datetime]

__all__ = [
    "Clock",
    "ensure_dir",
    "normalize_text",
    "stable_mapping_hash",
    "strip_accents",
    "to_utc",
    "utc_now",
]

# ====================================
# FUNCIONES DE NORMALIZACIÓN
# ====================================

def strip_accents(text: str) -> str:
    """Return ``text`` without diacritics using Unicode normalisation."""
    if not isinstance(text, str):
        return text

    normalised = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in normalised if unicodedata.category(ch) != "Mn")


def normalize_text(text: str) -> str:
    """Return a simplified version of ``text`` for substring comparisons."""

    if not isinstance(text, str):
        return ""

    simplified = strip_accents(text.lower())
    simplified = re.sub(r"[^a-z0-9\s]", " ", simplified)
    simplified = re.sub(r"\s+", " ", simplified).strip()
    return simplified


# ====================================
# TIEMPO
# ====================================

def utc_now() -> datetime:
    """Default clock: timezone-aware current time in UTC."""

    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so comparisons never mix naive and aware."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ====================================
# HASH ESTABLE
# ====================================

def _normalise_for_hash(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {
            str(key): _normalise_for_hash(inner)
            for key, inner in sorted(value.items(), key=lambda item: str(item[0]))
        }
    if isinstance(value, (list, tuple)):
        return [_normalise_for_hash(item) for item in value]
    if isinstance(value, set):
        return sorted(_normalise_for_hash(item) for item in value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def stable_mapping_hash(payload: Mapping[str, Any]) -> str:
    """SHA-256 of ``payload`` that does not depend on key order."""

    normalised = _normalise_for_hash(payload)
    encoded = json.dumps(
        normalised,
        ensure_ascii=False,
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    ).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


# ====================================
# MANEJO DE CARPETAS
# ====================================

def ensure_dir(path: PathLike) -> Path:
    """Create *path* (and its parents) if it does not already exist."""

    directory = Path(path)
    if not directory.exists():
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:  # pragma: no cover - depends on permissions.
            log_error(f"No se pudo crear el directorio {directory}: {exc}")
            raise
        else:
            log_debug(f"Directorio creado: {directory}")
    return directory
