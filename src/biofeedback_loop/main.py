"""Command-line entrypoint: inspect the pattern catalogue or simulate a session."""

from __future__ import annotations

import argparse
import json
import sys

from biofeedback_loop.config import get_settings
from biofeedback_loop.logger import setup_logging
from biofeedback_loop.models import BiofeedbackError
from biofeedback_loop.protocols import BREATHING_PATTERNS, get_pattern, target_for_pattern
from biofeedback_loop.simulation import SCENARIOS, run_session


def _emit(record: dict) -> None:
    print(json.dumps(record, sort_keys=True))


def _cmd_patterns() -> None:
    for pattern in BREATHING_PATTERNS.values():
        record = pattern.model_dump(mode="json")
        record["breath_rate"] = round(pattern.breath_rate, 3)
        record["target"] = target_for_pattern(pattern).model_dump(mode="json")
        _emit(record)


def _cmd_simulate(args: argparse.Namespace) -> None:
    pattern = get_pattern(args.pattern) if args.pattern else None
    report = run_session(
        args.scenario,
        ticks=args.ticks,
        dt=args.dt,
        seed=args.seed,
        protocol=pattern,
        settings=get_settings(),
    )
    for command in report.commands:
        _emit({"type": "tempo_command", **command.model_dump(mode="json")})
    belief = report.final_belief.model_dump(mode="json", exclude={"covariance"})
    _emit(
        {
            "type": "session_summary",
            "scenario": report.scenario,
            "pattern": report.pattern,
            "ticks": report.ticks,
            "commands": len(report.commands),
            "faults": report.fault_count,
            "final_tempo": report.final_tempo,
            "final_belief": belief,
        }
    )


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="biofeedback-loop",
        description="Closed-loop breathing biofeedback engine.",
    )
    parser.add_argument("--log-level", default=None, help="Override BIOFEEDBACK_LOG_LEVEL.")
    sub = parser.add_subparsers(dest="command")

    # ── patterns ──────────────────────────────────────────────
    sub.add_parser("patterns", help="List the breathing-pattern catalogue as JSON lines.")

    # ── simulate ──────────────────────────────────────────────
    sim_parser = sub.add_parser("simulate", help="Run a synthetic session and print tempo commands.")
    sim_parser.add_argument("--scenario", choices=sorted(SCENARIOS), default="nominal")
    sim_parser.add_argument("--pattern", default=None, help="Breathing pattern id, e.g. 4-7-8.")
    sim_parser.add_argument("--ticks", type=int, default=300)
    sim_parser.add_argument("--dt", type=float, default=0.1)
    sim_parser.add_argument("--seed", type=int, default=0)

    args = parser.parse_args(argv)
    settings = get_settings()
    setup_logging(args.log_level or settings.log_level)

    try:
        if args.command == "patterns":
            _cmd_patterns()
        elif args.command == "simulate":
            _cmd_simulate(args)
        else:
            parser.print_help()
            sys.exit(1)
    except BiofeedbackError as exc:
        print(f"error: {exc.__class__.__name__}: {exc}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
