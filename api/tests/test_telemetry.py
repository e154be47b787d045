from __future__ import annotations

import pytest
from fastapi import FastAPI

from upkeep.core import telemetry
from upkeep.core.config import Settings


@pytest.fixture
def installs(monkeypatch: pytest.MonkeyPatch) -> list[bool]:
    calls: list[bool] = []
    monkeypatch.setattr(telemetry, "_install_log_correlation", lambda: calls.append(True))
    return calls


def test_log_correlation_can_be_disabled(installs: list[bool]) -> None:
    settings = Settings(otel_enabled=False, otel_log_correlation=False)

    runtime = telemetry.setup_api_telemetry(FastAPI(), settings)

    assert runtime.enabled is False
    assert installs == []


def test_log_correlation_is_installed_by_default(installs: list[bool]) -> None:
    telemetry.setup_api_telemetry(FastAPI(), Settings(otel_enabled=False))

    assert installs == [True]
