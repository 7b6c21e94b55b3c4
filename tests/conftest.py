"""Shared test fixtures."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from primenet_manager.config import DeviceSettings
from primenet_manager.sync.locks import LockManager


@pytest.fixture()
def locks() -> LockManager:
    return LockManager(retries=2, retry_delay_seconds=0.0, sleep=lambda _: None)


@pytest.fixture()
def tf_device(tmp_path: Path) -> DeviceSettings:
    return DeviceSettings(device=0, directory=tmp_path, kind="tf", assignments=5)


@pytest.fixture()
def ll_device(tmp_path: Path) -> DeviceSettings:
    return DeviceSettings(device=1, directory=tmp_path, kind="ll", work_type="101", assignments=2)


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("PRIMENET_MANAGER_"):
            monkeypatch.delenv(name)
