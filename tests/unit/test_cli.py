"""Tests for the floworx-approvals CLI."""
from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from floworx_approval.approval.models import ApprovalRequest, ApprovalStatus
from floworx_approval.approval.repository import SqliteApprovalRepository
from floworx_approval.cli.main import cli
from floworx_approval.engine import ApprovalEngine

PAYLOAD = json.dumps({"from": "lead@example.com", "subject": "Quote", "body": "Three units please"})


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, runner: CliRunner) -> Path:
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(cli, ["init", "--template", "strict"])
    assert result.exit_code == 0, result.output
    return tmp_path


def _stored(workspace: Path) -> dict[str, ApprovalRequest]:
    repository = SqliteApprovalRepository(workspace / "approval_requests.db")
    return {request.request_id: request for request in repository.all_requests()}


def _trigger(runner: CliRunner) -> str:
    result = runner.invoke(cli, ["trigger", "all-replies", "--payload", PAYLOAD])
    assert result.exit_code == 0, result.output
    (request_id,) = _stored(Path.cwd())
    return request_id


# ---------------------------------------------------------------------------
# version / init
# ---------------------------------------------------------------------------


class TestBasics:
    def test_version_command(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["version"])
        assert result.exit_code == 0
        assert "floworx-approval-engine" in result.output

    def test_init_writes_config(self, workspace: Path) -> None:
        assert (workspace / "approvals.yaml").exists()

    def test_init_refuses_overwrite(self, workspace: Path, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["init"])
        assert result.exit_code == 1

    def test_init_force_overwrites(self, workspace: Path, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["init", "--template", "minimal", "--force"])
        assert result.exit_code == 0
        assert "ai-replies" in (workspace / "approvals.yaml").read_text(encoding="utf-8")


# ---------------------------------------------------------------------------
# workflows
# ---------------------------------------------------------------------------


class TestWorkflowCommands:
    def test_list(self, workspace: Path, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["workflows", "list"])
        assert result.exit_code == 0
        assert "all-replies" in result.output

    def test_validate_ok(self, workspace: Path, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["workflows", "validate"])
        assert result.exit_code == 0
        assert "VALID" in result.output

    def test_validate_bad_config(self, workspace: Path, runner: CliRunner) -> None:
        (workspace / "approvals.yaml").write_text(
            "engine:\n  timeout_policy: escalate\n", encoding="utf-8"
        )
        result = runner.invoke(cli, ["workflows", "validate"])
        assert result.exit_code == 1
        assert "INVALID" in result.output

    def test_validate_missing_config(self, tmp_path: Path, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["workflows", "validate", "-c", str(tmp_path / "none.yaml")])
        assert result.exit_code == 1


# ---------------------------------------------------------------------------
# Request lifecycle
# ---------------------------------------------------------------------------


class TestLifecycleCommands:
    def test_trigger_creates_awaiting_request(self, workspace: Path, runner: CliRunner) -> None:
        request_id = _trigger(runner)
        stored = _stored(workspace)[request_id]
        assert stored.status is ApprovalStatus.AWAITING_DECISION
        assert stored.current_step_index == 1

    def test_trigger_rejects_bad_json(self, workspace: Path, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["trigger", "all-replies", "--payload", "{oops"])
        assert result.exit_code == 1

    def test_trigger_rejects_unknown_workflow(self, workspace: Path, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["trigger", "ghost", "--payload", PAYLOAD])
        assert result.exit_code == 1

    def test_pending_lists_request(self, workspace: Path, runner: CliRunner) -> None:
        _trigger(runner)
        result = runner.invoke(cli, ["pending"])
        assert result.exit_code == 0
        assert "Total pending: 1" in result.output

    def test_pending_empty(self, workspace: Path, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["pending"])
        assert result.exit_code == 0
        assert "No pending approval requests" in result.output

    def test_decide_approves(self, workspace: Path, runner: CliRunner) -> None:
        request_id = _trigger(runner)
        result = runner.invoke(
            cli, ["decide", request_id, "--approve", "--actor", "mgr1", "-m", "ok"]
        )
        assert result.exit_code == 0, result.output
        stored = _stored(workspace)[request_id]
        assert stored.status is ApprovalStatus.APPROVED
        assert stored.decision_log[-1].actor_id == "mgr1"

    def test_decide_stale_step_is_noop(self, workspace: Path, runner: CliRunner) -> None:
        request_id = _trigger(runner)
        result = runner.invoke(
            cli, ["decide", request_id, "--reject", "--actor", "mgr1", "--step", "1"]
        )
        assert result.exit_code == 0
        assert "No change" in result.output
        assert _stored(workspace)[request_id].status is ApprovalStatus.AWAITING_DECISION

    def test_decide_unknown_request(self, workspace: Path, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["decide", "missing", "--approve", "--actor", "mgr1"])
        assert result.exit_code == 1

    def test_show(self, workspace: Path, runner: CliRunner) -> None:
        request_id = _trigger(runner)
        result = runner.invoke(cli, ["show", request_id])
        assert result.exit_code == 0
        assert "Decision Log" in result.output

    def test_show_unknown_request(self, workspace: Path, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["show", "missing"])
        assert result.exit_code == 1

    def test_sweep_with_nothing_expired(self, workspace: Path, runner: CliRunner) -> None:
        _trigger(runner)
        result = runner.invoke(cli, ["sweep"])
        assert result.exit_code == 0
        assert "Timed out 0 request(s)" in result.output

    def test_audit_show(self, workspace: Path, runner: CliRunner) -> None:
        _trigger(runner)
        result = runner.invoke(cli, ["audit", "show", "--last", "5"])
        assert result.exit_code == 0
        assert "Total audit records: 4" in result.output

    def test_audit_show_rejects_non_positive_last(self, workspace: Path, runner: CliRunner) -> None:
        _trigger(runner)
        result = runner.invoke(cli, ["audit", "show", "--last", "0"])
        assert result.exit_code == 2
        assert "Total audit records" not in result.output

    def test_audit_show_limits_rows(self, workspace: Path, runner: CliRunner) -> None:
        _trigger(runner)
        result = runner.invoke(cli, ["audit", "show", "--last", "1"])
        assert result.exit_code == 0
        assert "Last 1 Audit Events" in result.output
        assert "request_created" not in result.output


# ---------------------------------------------------------------------------
# Engine start-up
# ---------------------------------------------------------------------------


class TestEngineStartup:
    def test_workflows_list_closes_engine(self, workspace: Path, runner: CliRunner) -> None:
        with patch.object(ApprovalEngine, "close") as close:
            result = runner.invoke(cli, ["workflows", "list"])
        assert result.exit_code == 0
        close.assert_called_once()

    def test_single_digit_hour_config_runs(self, workspace: Path, runner: CliRunner) -> None:
        config = workspace / "approvals.yaml"
        config.write_text(
            config.read_text(encoding="utf-8")
            + "business_hours:\n  schedule:\n    monday: {open: true, start: '9:00'}\n",
            encoding="utf-8",
        )
        assert runner.invoke(cli, ["workflows", "validate"]).exit_code == 0
        result = runner.invoke(cli, ["pending"])
        assert result.exit_code == 0, result.output

    def test_engine_start_failure_exits_cleanly(self, workspace: Path, runner: CliRunner) -> None:
        with patch.object(ApprovalEngine, "from_config", side_effect=ValueError("bad schedule")):
            result = runner.invoke(cli, ["pending"])
        assert result.exit_code == 1
        assert not isinstance(result.exception, ValueError)
