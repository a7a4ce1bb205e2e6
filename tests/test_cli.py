"""Tests for the command-line entrypoint."""

import json

import pytest

from biofeedback_loop import main as cli


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch):
    # Keep structlog on the test capture configuration.
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)


def _lines(capsys) -> list[dict]:
    return [json.loads(line) for line in capsys.readouterr().out.splitlines() if line]


def test_patterns(capsys):
    cli.main(["patterns"])
    records = _lines(capsys)
    assert len(records) == 11
    coherence = next(r for r in records if r["id"] == "coherence")
    assert coherence["breath_rate"] == 5.0
    assert coherence["target"]["rhythm"] == 0.9


def test_simulate(capsys):
    cli.main(["simulate", "--scenario", "nominal", "--ticks", "150", "--pattern", "4-7-8", "--seed", "2"])
    records = _lines(capsys)
    summary = records[-1]
    assert summary["type"] == "session_summary"
    assert summary["pattern"] == "4-7-8"
    assert summary["ticks"] == 150
    assert summary["commands"] == len(records) - 1
    assert all(r["type"] == "tempo_command" for r in records[:-1])
    assert "covariance" not in summary["final_belief"]


def test_unknown_pattern_exits(capsys):
    with pytest.raises(SystemExit) as exc:
        cli.main(["simulate", "--pattern", "nope"])
    assert exc.value.code == 2
    assert "UnknownPatternError" in capsys.readouterr().err


def test_no_command_prints_help():
    with pytest.raises(SystemExit) as exc:
        cli.main([])
    assert exc.value.code == 1
