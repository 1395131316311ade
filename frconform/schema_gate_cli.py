"""Command-line gate that validates phase-2C packets or the optimization gate root."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional, Sequence

from frconform.phase2c_optimization import (
    OptimizationGateStatus,
    validate_phase2c_optimization_gate,
)
from frconform.phase2c_packets import (
    NOT_READY,
    PacketReadiness,
    PacketValidationReport,
    Phase2cError,
    discover_phase2c_packets,
    validate_phase2c_packets,
)

DEFAULT_PACKET_ROOT = Path("artifacts/phase2c")
DEFAULT_OPTIMIZATION_ROOT = Path("artifacts/optimization/phase2c-gate")

_LEDGER_FLAGS = frozenset({"--decision-ledger", "--galaxy-brain"})
_OPTIMIZATION_FLAGS = frozenset({"--optimization-gate", "--perf-gate"})


class _UsageError(Exception):
    """Raised when the command line cannot be used."""


def _print_ledger(report: PacketValidationReport) -> None:
    ledger = report.decision_ledger
    print(f"decision.posterior_contract_violation: {ledger.posterior_contract_violation:.6f}")
    print(f"decision.expected_loss.proceed_impl: {ledger.expected_loss_proceed:.6f}")
    print(f"decision.expected_loss.block_impl: {ledger.expected_loss_block:.6f}")
    print(f"decision.recommended_action: {ledger.recommended_action.value}")
    if ledger.evidence_terms:
        summary = ", ".join(
            f"{term.signal}(count={term.count},log_odds_shift={term.log_odds_shift:.3f})"
            for term in ledger.evidence_terms
        )
        print(f"decision.evidence_terms: {summary}")


def _run_packets(args: list[str], emit_decision_ledger: bool) -> int:
    if args:
        packet_dirs = [Path(arg) for arg in args]
    else:
        packet_dirs = discover_phase2c_packets(DEFAULT_PACKET_ROOT)

    if not packet_dirs:
        print(
            f"status: {NOT_READY}\nreason: no packet directories found "
            f"(expected FR-P2C-* under {DEFAULT_PACKET_ROOT})"
        )
        return 1

    has_not_ready = False
    for report in validate_phase2c_packets(packet_dirs):
        print(f"packet: {report.packet_id}")
        print(f"schema_version: {report.schema_version or '<missing>'}")
        print(f"status: {report.readiness.value}")
        if report.missing_files:
            print(f"missing_files: {', '.join(report.missing_files)}")
        if report.missing_fields:
            print(f"missing_fields: {', '.join(report.missing_fields)}")
        if report.errors:
            print(f"errors: {' | '.join(report.errors)}")
        if emit_decision_ledger:
            _print_ledger(report)
        print("---")
        if report.readiness is PacketReadiness.NOT_READY:
            has_not_ready = True
    return 1 if has_not_ready else 0


def _run_optimization_gate(args: list[str]) -> int:
    if not args:
        gate_root = DEFAULT_OPTIMIZATION_ROOT
    elif len(args) == 1:
        gate_root = Path(args[0])
    else:
        raise _UsageError(
            "optimization gate accepts at most one optional path argument: <optimization_root>"
        )

    report = validate_phase2c_optimization_gate(gate_root)
    print(f"optimization_root: {report.root}")
    print(f"status: {report.status.value}")
    if report.baseline_mean_seconds is not None:
        print(f"baseline_mean_seconds: {report.baseline_mean_seconds:.9f}")
    if report.after_mean_seconds is not None:
        print(f"after_mean_seconds: {report.after_mean_seconds:.9f}")
    if report.missing_files:
        print(f"missing_files: {', '.join(report.missing_files)}")
    if report.errors:
        print(f"errors: {' | '.join(report.errors)}")
    for round_report in report.rounds:
        status = (
            OptimizationGateStatus.READY
            if round_report.is_ready()
            else OptimizationGateStatus.NOT_READY
        )
        print(f"round: {round_report.round_id}")
        print(f"round_status: {status.value}")
        if round_report.claim_id is not None:
            print(f"round_claim_id: {round_report.claim_id}")
        if round_report.evidence_id is not None:
            print(f"round_evidence_id: {round_report.evidence_id}")
        if round_report.delta_percent is not None:
            print(f"round_delta_percent: {round_report.delta_percent:.3f}")
        if round_report.missing_files:
            print(f"round_missing_files: {', '.join(round_report.missing_files)}")
        if round_report.errors:
            print(f"round_errors: {' | '.join(round_report.errors)}")
        print("---")

    return 0 if report.status is OptimizationGateStatus.READY else 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the gate; return 0 when ready, 1 when not ready and 2 on error."""
    raw = sys.argv[1:] if argv is None else list(argv)
    emit_decision_ledger = any(arg in _LEDGER_FLAGS for arg in raw)
    optimization_gate = any(arg in _OPTIMIZATION_FLAGS for arg in raw)
    args = [arg for arg in raw if arg not in _LEDGER_FLAGS and arg not in _OPTIMIZATION_FLAGS]

    try:
        if optimization_gate:
            return _run_optimization_gate(args)
        return _run_packets(args, emit_decision_ledger)
    except (Phase2cError, _UsageError) as err:
        print(f"error: {err}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())