from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from admin_console.bootstrap import Bootstrapper
from admin_console.config import AppConfig


@pytest.fixture()
def temp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    monkeypatch.delenv("ADMIN_CONSOLE_API_URL", raising=False)
    monkeypatch.delenv("ADMIN_CONSOLE_API_TOKEN", raising=False)
    monkeypatch.chdir(tmp_path)

    config = AppConfig.from_mapping(
        {
            "api_base_url": "http://api.test/api",
            "export_root": "storage/exports",
            "max_upload_bytes": 1024,
        },
        base_path=tmp_path,
    )

    Bootstrapper(config).initialize()
    return config
