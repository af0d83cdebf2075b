from __future__ import annotations

import json
import os
from pathlib import Path

import pytest
import yaml

from covenant.common.config import get_settings
from covenant.common.files import default_cache
from covenant.schemer import Schemer


@pytest.fixture(autouse=True)
def _isolated_runtime(monkeypatch):
    """
    Test hygiene: every test starts with default settings and empty caches.
    """
    for k in list(os.environ):
        if k.startswith("COVENANT_"):
            monkeypatch.delenv(k, raising=False)
    monkeypatch.setenv("COVENANT_ENV", "test")
    get_settings.cache_clear()
    Schemer.clear_cache()
    default_cache().invalidate()
    yield
    get_settings.cache_clear()
    Schemer.clear_cache()
    default_cache().invalidate()


USER_SCHEMA = {
    "type": "object",
    "required": ["id"],
    "properties": {"id": {"type": "string"}},
}


@pytest.fixture
def terms_dir(tmp_path: Path) -> Path:
    d = tmp_path / "terms"
    d.mkdir()
    (d / "provider.yaml").write_text(yaml.safe_dump({"provides": USER_SCHEMA}), encoding="utf-8")
    (d / "consumer.json").write_text(
        json.dumps({"accepts": {"type": "object", "required": ["id"]}}),
        encoding="utf-8",
    )
    return d
