"""Tests for the `flowpilot` command line."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

import flowpilot.automation.main as cli
from flowpilot.automation.workflow.models import Flow


@pytest.fixture(autouse=True)
def _quiet(monkeypatch) -> None:
    monkeypatch.setattr(cli, "configure_logging", lambda _level: None)
    monkeypatch.setenv("FLOWPILOT_MOCK_SEND_DELAY_MS", "0")
    monkeypatch.delenv("FLOWPILOT_MESSAGE_WEBHOOK_URL", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)


def _write(path: Path, flow: Flow | dict) -> Path:
    body = flow.to_json() if isinstance(flow, Flow) else flow
    path.write_text(json.dumps(body), encoding="utf-8")
    return path


def test_validate_valid_flow(tmp_path: Path, capsys, welcome_flow: Flow) -> None:
    path = _write(tmp_path / "flow.json", welcome_flow)

    assert cli.main(["validate", str(path)]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out == {"valid": True, "errors": []}


def test_validate_invalid_flow(tmp_path: Path, capsys) -> None:
    path = _write(tmp_path / "flow.json", {"id": "f", "name": "Empty", "nodes": [], "edges": []})

    assert cli.main(["validate", str(path)]) == 1
    out = json.loads(capsys.readouterr().out)
    assert [e["code"] for e in out["errors"]] == ["NO_TRIGGER", "EMPTY_FLOW"]


def test_unreadable_file_exits_2(tmp_path: Path, capsys) -> None:
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")

    assert cli.main(["validate", str(tmp_path / "missing.json")]) == 2
    assert cli.main(["validate", str(bad)]) == 2
    assert "Cannot read flow file" in capsys.readouterr().err


def test_run_prints_audit_log(tmp_path: Path, capsys, welcome_flow: Flow) -> None:
    path = _write(tmp_path / "flow.json", welcome_flow)

    code = cli.main(["run", str(path), "--context", '{"customer": {"phone": "+100", "name": "Ann"}}'])

    out = capsys.readouterr().out
    assert code == 0
    assert "[INFO] Sent message via whatsapp" in out
    assert out.strip().splitlines()[-1].endswith("COMPLETED")


def test_run_refuses_invalid_flow_without_force(tmp_path: Path, capsys) -> None:
    path = _write(tmp_path / "flow.json", {"id": "f", "name": "Empty", "nodes": [], "edges": []})

    assert cli.main(["run", str(path)]) == 1
    assert "--force" in capsys.readouterr().err

    assert cli.main(["run", str(path), "--force"]) == 1
    assert "FAILED (No TRIGGER node found)" in capsys.readouterr().out


def test_run_times_out_and_cancels(tmp_path: Path, capsys, delayed_flow: Flow) -> None:
    path = _write(tmp_path / "flow.json", delayed_flow)

    assert cli.main(["run", str(path), "--timeout", "0.05"]) == 1
    assert "FAILED (Run cancelled)" in capsys.readouterr().out


def test_invalid_settings_exit_2(monkeypatch, tmp_path: Path, capsys) -> None:
    monkeypatch.setenv("LOG_LEVEL", "LOUD")
    assert cli.main(["validate", str(tmp_path / "flow.json")]) == 2
    assert "Configuration error" in capsys.readouterr().err
