from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep local data and operator env switches out of every test."""

    monkeypatch.setenv("CATALOGSYNC_DATA_DIR", str(tmp_path / "catalogsync-data"))
    monkeypatch.delenv("CATALOGSYNC_DRY_RUN", raising=False)
    monkeypatch.delenv("STRAPI_HTTP_CACHE", raising=False)
