"""Shared test fixtures for Rollwright."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from rollwright.config import RolloutSettings
from rollwright.core.clock import FakeClock
from rollwright.core.controller import RolloutController
from rollwright.core.history import RolloutHistory
from rollwright.models.artifacts import ArtifactRef
from rollwright.models.rollout import RolloutOutcome, RolloutRecord
from rollwright.platform.memory import InMemoryPlatform


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def history(tmp_dir: Path) -> RolloutHistory:
    """Provide a fresh RolloutHistory backed by a temp SQLite database."""
    return RolloutHistory(tmp_dir / "test_history.db")


@pytest.fixture
def settings() -> RolloutSettings:
    """Development settings that ignore any local .env file."""
    return RolloutSettings(_env_file=None, environment="development", debug=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def v1() -> ArtifactRef:
    return ArtifactRef(registry="r", repository="app", tag="v1")


@pytest.fixture
def v2() -> ArtifactRef:
    return ArtifactRef(registry="r", repository="app", tag="v2")


@pytest.fixture
def platform(v1: ArtifactRef) -> InMemoryPlatform:
    """An in-memory platform with ``svc1`` healthy on ``r/app:v1``."""
    platform = InMemoryPlatform()
    platform.register_service("svc1", v1)
    return platform


@pytest.fixture
def controller(
    platform: InMemoryPlatform,
    history: RolloutHistory,
    settings: RolloutSettings,
    clock: FakeClock,
) -> Iterator[RolloutController]:
    """A controller on simulated time wired to the test platform and history."""
    with RolloutController(platform, history, settings=settings, clock=clock) as ctl:
        yield ctl


# ---------------------------------------------------------------------------
# Record factories — shared across test modules
# ---------------------------------------------------------------------------


@pytest.fixture
def make_record() -> Callable[..., RolloutRecord]:
    """Factory fixture: build a terminal RolloutRecord with sensible defaults.

    ``finished_offset`` places ``finished_at`` that many seconds after a
    fixed epoch, which makes ordering tests deterministic.
    """
    epoch = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def _factory(
        service_id: str = "svc1",
        tag: str = "v2",
        outcome: RolloutOutcome = RolloutOutcome.SUCCEEDED,
        finished_offset: float = 60.0,
        **overrides: Any,
    ) -> RolloutRecord:
        defaults: dict[str, Any] = {
            "service_id": service_id,
            "target": ArtifactRef(registry="r", repository="app", tag=tag),
            "previous_artifact": ArtifactRef(registry="r", repository="app", tag="v1"),
            "started_at": epoch + timedelta(seconds=finished_offset - 30),
            "finished_at": epoch + timedelta(seconds=finished_offset),
            "outcome": outcome,
            "attempts": 1,
            "detail": f"{outcome.value} in test",
        }
        defaults.update(overrides)
        return RolloutRecord(**defaults)

    return _factory
