"""Unit tests for the CLI — Typer command registration and behavior.

Exercises every command via typer.testing.CliRunner.  ``deploy`` runs
against the in-memory platform by swapping out the ECS client factory.
"""

from __future__ import annotations

import json
import sqlite3

import pytest
from typer.testing import CliRunner

from rollwright.cli.app import app
from rollwright.cli.commands import deploy as deploy_module
from rollwright.core.history import RolloutHistory
from rollwright.models.artifacts import ArtifactRef
from rollwright.models.rollout import RolloutOutcome
from rollwright.platform.memory import InMemoryPlatform

runner = CliRunner()


# ---------------------------------------------------------------------------
# Test: CLI help and registration
# ---------------------------------------------------------------------------


class TestCliApp:
    """The CLI must register all expected commands and show help."""

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        # Typer's no_args_is_help may exit with 0 or 2 depending on version
        assert result.exit_code in (0, 2)
        assert "usage" in result.output.lower()

    def test_help_flag(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("deploy", "history", "show", "demo"):
            assert command in result.output

    @pytest.mark.parametrize("command", ["deploy", "history", "show", "demo"])
    def test_command_help(self, command):
        result = runner.invoke(app, [command, "--help"])
        assert result.exit_code == 0


# ---------------------------------------------------------------------------
# Test: deploy
# ---------------------------------------------------------------------------


class _FakeEcs:
    """Stands in for ``EcsPlatformClient`` and hands out an in-memory platform."""

    def __init__(self, platform: InMemoryPlatform) -> None:
        self.platform = platform
        self.overrides: dict = {}

    def from_settings(self, settings, **overrides):
        self.overrides = overrides
        return self.platform


@pytest.fixture
def fake_ecs(monkeypatch, v1) -> _FakeEcs:
    platform = InMemoryPlatform()
    platform.register_service("web", v1)
    fake = _FakeEcs(platform)
    monkeypatch.setattr(deploy_module, "EcsPlatformClient", fake)
    return fake


class TestDeployCommand:
    def test_invalid_image_reference(self, tmp_dir):
        result = runner.invoke(
            app, ["deploy", "web", "no-tag-here", "-c", "prod", "-H", str(tmp_dir / "h.db")]
        )
        assert result.exit_code == 2
        assert "Invalid image reference" in result.output

    def test_missing_cluster(self, tmp_dir, monkeypatch):
        monkeypatch.setattr(deploy_module.settings, "ecs_cluster", "")
        result = runner.invoke(app, ["deploy", "web", "r/app:v2", "-H", str(tmp_dir / "h.db")])
        assert result.exit_code == 2
        assert "cluster" in result.output

    def test_successful_deploy(self, tmp_dir, fake_ecs):
        db = tmp_dir / "h.db"
        result = runner.invoke(
            app, ["deploy", "web", "r/app:v2", "-c", "prod", "-H", str(db), "--json"]
        )
        assert result.exit_code == 0, result.output
        record = json.loads(result.output[result.output.index("{"):])
        assert record["outcome"] == "succeeded"
        assert record["target"]["tag"] == "v2"
        assert fake_ecs.overrides["cluster"] == "prod"
        assert RolloutHistory(db).get(record["id"]).outcome == RolloutOutcome.SUCCEEDED

    def test_failed_deploy_exits_nonzero(self, tmp_dir, fake_ecs):
        fake_ecs.platform.reject(ArtifactRef.parse("r/app:v2"))
        result = runner.invoke(
            app, ["deploy", "web", "r/app:v2", "-c", "prod", "-H", str(tmp_dir / "h.db")]
        )
        assert result.exit_code == 1
        assert "FAILED" in result.output

    def test_unknown_service_refused(self, tmp_dir, fake_ecs):
        result = runner.invoke(
            app, ["deploy", "ghost", "r/app:v2", "-c", "prod", "-H", str(tmp_dir / "h.db")]
        )
        assert result.exit_code == 2
        assert "Rollout refused" in result.output


# ---------------------------------------------------------------------------
# Test: history / show
# ---------------------------------------------------------------------------


@pytest.fixture
def seeded_db(tmp_dir, make_record):
    db = tmp_dir / "seeded.db"
    history = RolloutHistory(db)
    ids = [
        history.append(make_record(tag="v2", finished_offset=10)).id,
        history.append(
            make_record(tag="v3", outcome=RolloutOutcome.ROLLED_BACK, finished_offset=20)
        ).id,
    ]
    return db, ids


class TestHistoryCommand:
    def test_missing_database(self, tmp_dir):
        result = runner.invoke(app, ["history", "svc1", "-H", str(tmp_dir / "absent.db")])
        assert result.exit_code == 1
        assert "History not found" in result.output

    def test_table(self, seeded_db):
        db, _ = seeded_db
        result = runner.invoke(app, ["history", "svc1", "-H", str(db)])
        assert result.exit_code == 0
        assert "Rollout History" in result.output
        assert "Rollouts: 2" in result.output

    def test_json_newest_first(self, seeded_db):
        db, ids = seeded_db
        result = runner.invoke(app, ["history", "svc1", "-H", str(db), "--json"])
        assert result.exit_code == 0
        records = json.loads(result.output)
        assert [r["id"] for r in records] == list(reversed(ids))
        assert records[0]["outcome"] == "rolled_back"

    def test_limit(self, seeded_db):
        db, ids = seeded_db
        result = runner.invoke(app, ["history", "svc1", "-H", str(db), "--json", "-n", "1"])
        assert [r["id"] for r in json.loads(result.output)] == [ids[1]]

    def test_verify(self, seeded_db):
        db, _ = seeded_db
        result = runner.invoke(app, ["history", "svc1", "-H", str(db), "--verify"])
        assert result.exit_code == 0
        assert "is valid" in result.output

    def test_verify_detects_tampering(self, seeded_db):
        db, _ = seeded_db
        conn = sqlite3.connect(str(db))
        conn.execute("UPDATE rollout_history SET attempts = 7")
        conn.commit()
        conn.close()
        result = runner.invoke(app, ["history", "svc1", "-H", str(db), "--verify"])
        assert result.exit_code == 1
        assert "BROKEN" in result.output

    def test_unknown_service_lists_known(self, seeded_db):
        db, _ = seeded_db
        result = runner.invoke(app, ["history", "ghost", "-H", str(db)])
        assert result.exit_code == 0
        assert "No rollouts recorded for ghost" in result.output
        assert "svc1" in result.output


class TestShowCommand:
    def test_show(self, seeded_db):
        db, ids = seeded_db
        result = runner.invoke(app, ["show", ids[0], "-H", str(db)])
        assert result.exit_code == 0
        assert ids[0] in result.output
        assert "SUCCEEDED" in result.output

    def test_show_json(self, seeded_db):
        db, ids = seeded_db
        result = runner.invoke(app, ["show", ids[1], "-H", str(db), "--json"])
        assert result.exit_code == 0
        assert json.loads(result.output)["id"] == ids[1]

    def test_show_unknown(self, seeded_db):
        db, _ = seeded_db
        result = runner.invoke(app, ["show", "ro-nope", "-H", str(db)])
        assert result.exit_code == 1


# ---------------------------------------------------------------------------
# Test: demo
# ---------------------------------------------------------------------------


class TestDemoCommand:
    def test_demo_produces_all_outcomes(self, tmp_dir):
        db = tmp_dir / "demo.db"
        result = runner.invoke(app, ["demo", "-H", str(db)])
        assert result.exit_code == 0, result.output

        records = list(RolloutHistory(db).list_by_service("demo-web"))
        assert [r.outcome for r in records] == [
            RolloutOutcome.FAILED,
            RolloutOutcome.ROLLED_BACK,
            RolloutOutcome.SUCCEEDED,
        ]
        assert [r.target.tag for r in records] == ["v4-missing", "v3-broken", "v2"]
        assert RolloutHistory(db).verify_chain("demo-web")
