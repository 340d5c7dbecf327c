"""Configuration loading utilities for the admin console."""

from __future__ import annotations

import contextlib
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple


LOGGER = logging.getLogger(__name__)


_PERMISSION_SENTINEL = ".admin_console_write_check"

API_URL_ENV = "ADMIN_CONSOLE_API_URL"
API_TOKEN_ENV = "ADMIN_CONSOLE_API_TOKEN"

DEFAULT_API_URL = "http://localhost:5000/api"
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024
DEFAULT_UPLOAD_CHUNK_SIZE = 64 * 1024


def _ensure_writable_directory(path: Path) -> bool:
    """Return ``True`` if *path* can be created and written to."""

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False

    test_file = path / _PERMISSION_SENTINEL
    try:
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("ok")
    except OSError:
        return False
    finally:
        with contextlib.suppress(OSError):
            test_file.unlink()

    return True


def _select_writable_directory(
    preferred: Path,
    *,
    label: str,
    fallbacks: Iterable[Path] = (),
) -> Tuple[Path, bool]:
    """Return a usable directory based on ``preferred`` and ``fallbacks``.

    The first writable candidate wins and is returned with a flag telling
    whether a fallback was used. When nothing can be prepared the original
    ``preferred`` path is returned so the bootstrapper can report it.
    """

    preferred = preferred.resolve()
    if _ensure_writable_directory(preferred):
        return preferred, False

    for fallback in fallbacks:
        candidate = fallback.resolve()
        if candidate == preferred:
            continue
        if _ensure_writable_directory(candidate):
            LOGGER.warning(
                "Preferred %s directory '%s' is not writable; using fallback '%s'.",
                label,
                preferred,
                candidate,
            )
            return candidate, True

    LOGGER.warning(
        "%s directory '%s' is not writable and no fallback is available.",
        label.capitalize(),
        preferred,
    )
    return preferred, False


@dataclass(frozen=True)
class AppConfig:
    """Runtime settings for the console: remote API, uploads and exports."""

    api_base_url: str
    export_root: Path
    api_token: Optional[str] = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    upload_chunk_size: int = DEFAULT_UPLOAD_CHUNK_SIZE
    slug_policy: str = "always"
    page_size: int = 10

    @property
    def log_root(self) -> Path:
        """Directory holding the console log file."""

        return self.export_root.parent.resolve()

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any], *, base_path: Path) -> "AppConfig":
        preferred_exports = (base_path / mapping.get("export_root", "exports")).resolve()
        export_root, _ = _select_writable_directory(
            preferred_exports,
            label="export",
            fallbacks=(Path.home() / ".admin_console" / "exports",),
        )

        api_base_url = os.getenv(API_URL_ENV) or mapping.get("api_base_url") or DEFAULT_API_URL
        api_token = os.getenv(API_TOKEN_ENV) or mapping.get("api_token") or None

        return cls(
            api_base_url=str(api_base_url).rstrip("/"),
            export_root=export_root,
            api_token=api_token,
            request_timeout=float(mapping.get("request_timeout", DEFAULT_REQUEST_TIMEOUT)),
            max_upload_bytes=int(mapping.get("max_upload_bytes", DEFAULT_MAX_UPLOAD_BYTES)),
            upload_chunk_size=int(mapping.get("upload_chunk_size", DEFAULT_UPLOAD_CHUNK_SIZE)),
            slug_policy=str(mapping.get("slug_policy", "always")),
            page_size=int(mapping.get("page_size", 10)),
        )


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load the console configuration from ``config/default.json`` by default."""

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        config_path = base_path / "config" / "default.json"

    with config_path.open("r", encoding="utf-8") as config_file:
        raw_config = json.load(config_file)

    return AppConfig.from_mapping(raw_config, base_path=base_path)


__all__ = ["AppConfig", "load_config"]
