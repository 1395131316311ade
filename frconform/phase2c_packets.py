"""Phase-2C packet discovery, schema validation and the implementation gate ledger."""

from __future__ import annotations

import enum
import json
import math
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional, Union

PHASE2C_SCHEMA_VERSION = "fr_phase2c_packet_v1"
READY_FOR_IMPL = "READY_FOR_IMPL"
NOT_READY = "NOT READY"

REQUIRED_PACKET_FILES: tuple[str, ...] = (
    "legacy_anchor_map.md",
    "contract_table.md",
    "fixture_manifest.json",
    "parity_gate.yaml",
    "risk_note.md",
    "parity_report.json",
    "parity_report.raptorq.json",
    "parity_report.decode_proof.json",
)

REQUIRED_MANIFEST_FIELDS: tuple[str, ...] = (
    "packet_id",
    "legacy_paths",
    "legacy_symbols",
    "state_machine_contract",
    "protocol_contract",
    "command_acl_contract",
    "persistence_replication_contract",
    "error_contract",
    "strict_mode_policy",
    "hardened_mode_policy",
    "excluded_scope",
    "oracle_tests",
    "performance_sentinels",
    "compatibility_risks",
    "raptorq_artifacts",
)

PathLike = Union[str, "os.PathLike[str]"]


class Phase2cError(Exception):
    """Raised when a phase-2C tree or packet cannot be read at all."""


class PacketReadiness(enum.Enum):
    READY_FOR_IMPL = READY_FOR_IMPL
    NOT_READY = NOT_READY


class GateAction(enum.Enum):
    PROCEED_IMPL = "PROCEED_IMPL"
    BLOCK_IMPL = "BLOCK_IMPL"


@dataclass(frozen=True)
class EvidenceTerm:
    """One signal that shifted the log-odds of a contract violation."""

    signal: str
    count: int
    log_odds_shift: float


_LOSS_PROCEED_ON_VIOLATION = 100.0
_LOSS_BLOCK_ON_VIOLATION = 1.0
_LOSS_BLOCK_ON_CLEAN = 8.0


def _expected_losses(posterior: float) -> tuple[float, float]:
    proceed = posterior * _LOSS_PROCEED_ON_VIOLATION
    block = posterior * _LOSS_BLOCK_ON_VIOLATION + (1.0 - posterior) * _LOSS_BLOCK_ON_CLEAN
    return proceed, block


@dataclass
class GateDecisionLedger:
    """Posterior risk of a contract violation and the gate action it recommends."""

    posterior_contract_violation: float
    expected_loss_proceed: float
    expected_loss_block: float
    recommended_action: GateAction
    evidence_terms: list[EvidenceTerm] = field(default_factory=list)

    @classmethod
    def default_prior(cls) -> GateDecisionLedger:
        """Return the ledger before any evidence has been seen."""
        posterior = 0.01
        proceed, block = _expected_losses(posterior)
        return cls(
            posterior_contract_violation=posterior,
            expected_loss_proceed=proceed,
            expected_loss_block=block,
            recommended_action=GateAction.PROCEED_IMPL,
        )


@dataclass
class PacketValidationReport:
    """Outcome of validating one phase-2C packet directory."""

    packet_id: str
    schema_version: Optional[str] = None
    readiness: PacketReadiness = PacketReadiness.NOT_READY
    missing_files: list[str] = field(default_factory=list)
    missing_fields: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    decision_ledger: GateDecisionLedger = field(default_factory=GateDecisionLedger.default_prior)

    def is_ready_for_impl(self) -> bool:
        return self.readiness is PacketReadiness.READY_FOR_IMPL


def load_json_file(path: PathLike) -> Any:
    """Read and decode a JSON file, raising Phase2cError on failure."""
    path = Path(path)
    try:
        raw = path.read_bytes()
    except OSError as err:
        raise Phase2cError(f"failed to read {path}: {err}") from err
    try:
        return json.loads(raw)
    except (ValueError, UnicodeDecodeError) as err:
        raise Phase2cError(f"invalid JSON {path}: {err}") from err


def is_present(value: Any) -> bool:
    """Return whether a JSON value counts as filled in."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, dict)):
        return bool(value)
    return True


def discover_phase2c_packets(root: PathLike) -> list[Path]:
    """Return the sorted ``FR-P2C-*`` packet directories directly under ``root``."""
    root = Path(root)
    if not root.exists():
        return []
    if not root.is_dir():
        raise Phase2cError(f"phase2c root is not a directory: {root}")
    try:
        entries = list(root.iterdir())
    except OSError as err:
        raise Phase2cError(f"failed to read phase2c root {root}: {err}") from err
    return sorted(
        path for path in entries if path.is_dir() and path.name.startswith("FR-P2C-")
    )


def validate_phase2c_tree(root: PathLike) -> list[PacketValidationReport]:
    """Discover and validate every packet under ``root``."""
    return validate_phase2c_packets(discover_phase2c_packets(root))


def validate_phase2c_packets(packet_dirs: Iterable[PathLike]) -> list[PacketValidationReport]:
    """Validate packets, in parallel when there are several, sorted by packet id."""
    dirs = [Path(d) for d in packet_dirs]
    if not dirs:
        return []
    workers = min(os.cpu_count() or 1, len(dirs))
    if workers <= 1 or len(dirs) < 4:
        reports = [validate_phase2c_packet(d) for d in dirs]
    else:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            reports = list(pool.map(validate_phase2c_packet, dirs))
    reports.sort(key=lambda report: report.packet_id)
    return reports


def _present_required_files(packet_dir: Path) -> set[str]:
    required = set(REQUIRED_PACKET_FILES)
    try:
        with os.scandir(packet_dir) as entries:
            return {
                entry.name
                for entry in entries
                if entry.name in required and entry.is_file()
            }
    except OSError as err:
        raise Phase2cError(f"failed to scan packet directory {packet_dir}: {err}") from err


def validate_phase2c_packet(packet_dir: PathLike) -> PacketValidationReport:
    """Validate one packet directory against the phase-2C schema."""
    packet_dir = Path(packet_dir)
    if not packet_dir.exists():
        raise Phase2cError(f"packet directory does not exist: {packet_dir}")
    if not packet_dir.is_dir():
        raise Phase2cError(f"packet path is not a directory: {packet_dir}")
    packet_id = packet_dir.name
    if not packet_id:
        raise Phase2cError(f"invalid packet directory name: {packet_dir}")

    report = PacketValidationReport(packet_id=packet_id)
    present = _present_required_files(packet_dir)
    report.missing_files = [name for name in REQUIRED_PACKET_FILES if name not in present]

    parity_readiness: Optional[str] = None

    def load(name: str) -> tuple[bool, Any]:
        try:
            return True, load_json_file(packet_dir / name)
        except Phase2cError as err:
            report.errors.append(str(err))
            return False, None

    if "fixture_manifest.json" in present:
        ok, value = load("fixture_manifest.json")
        if ok:
            _validate_fixture_manifest(packet_id, value, report)
    if "parity_report.json" in present:
        ok, value = load("parity_report.json")
        if ok:
            parity_readiness = _validate_parity_report(packet_id, value, report)
    if "parity_report.raptorq.json" in present:
        ok, value = load("parity_report.raptorq.json")
        if ok:
            _validate_raptorq_sidecar(value, report)
    if "parity_report.decode_proof.json" in present:
        ok, value = load("parity_report.decode_proof.json")
        if ok:
            _validate_decode_proof(packet_id, value, report)

    if not (report.missing_files or report.missing_fields or report.errors):
        report.readiness = PacketReadiness.READY_FOR_IMPL

    if report.readiness is PacketReadiness.READY_FOR_IMPL:
        if parity_readiness is None:
            report.errors.append("parity_report.json.readiness missing")
            report.readiness = PacketReadiness.NOT_READY
        elif parity_readiness != READY_FOR_IMPL:
            report.errors.append(
                f"parity_report.json.readiness expected '{READY_FOR_IMPL}', "
                f"got '{parity_readiness}'"
            )
            report.readiness = PacketReadiness.NOT_READY
    elif parity_readiness is not None and parity_readiness != NOT_READY:
        report.errors.append(
            f"parity_report.json.readiness expected '{NOT_READY}' when mandatory "
            f"contract data is missing; got '{parity_readiness}'"
        )

    report.decision_ledger = _build_gate_decision_ledger(report)
    return report


def _build_gate_decision_ledger(report: PacketValidationReport) -> GateDecisionLedger:
    # Prior: violations are rare in a maintained packet, but expensive.
    log_odds = math.log(0.01 / 0.99)
    terms: list[EvidenceTerm] = []
    for signal, items, weight in (
        ("missing_files", report.missing_files, 1.25),
        ("missing_fields", report.missing_fields, 1.05),
        ("validation_errors", report.errors, 1.55),
    ):
        if items:
            shift = weight * len(items)
            log_odds += shift
            terms.append(EvidenceTerm(signal=signal, count=len(items), log_odds_shift=shift))

    posterior = 1.0 / (1.0 + math.exp(-log_odds))
    proceed, block = _expected_losses(posterior)
    if report.readiness is PacketReadiness.NOT_READY or proceed > block:
        action = GateAction.BLOCK_IMPL
    else:
        action = GateAction.PROCEED_IMPL
    return GateDecisionLedger(
        posterior_contract_violation=posterior,
        expected_loss_proceed=proceed,
        expected_loss_block=block,
        recommended_action=action,
        evidence_terms=terms,
    )


def _check_id_field(
    obj: dict, key: str, expected: str, file_label: str, field_label: str,
    report: PacketValidationReport,
) -> None:
    value = obj.get(key)
    if isinstance(value, str):
        if value != expected:
            report.errors.append(
                f"{file_label}.{key} expected '{expected}', got '{value}'"
            )
    else:
        report.missing_fields.append(f"{field_label}.{key}")


def _check_array_field(
    obj: dict, key: str, file_label: str, field_label: str, report: PacketValidationReport
) -> None:
    if key not in obj:
        report.missing_fields.append(f"{field_label}.{key}")
    elif not isinstance(obj[key], list):
        report.errors.append(f"{file_label}.{key} must be an array")


def _validate_fixture_manifest(packet_id: str, manifest: Any, report: PacketValidationReport) -> None:
    if not isinstance(manifest, dict):
        report.errors.append("fixture_manifest.json must be a JSON object")
        return

    version = manifest.get("schema_version")
    if isinstance(version, str):
        report.schema_version = version
        if version != PHASE2C_SCHEMA_VERSION:
            report.errors.append(
                f"fixture_manifest.json.schema_version expected '{PHASE2C_SCHEMA_VERSION}', "
                f"got '{version}'"
            )
    else:
        report.missing_fields.append("fixture_manifest.schema_version")

    report.missing_fields.extend(
        f"fixture_manifest.{name}"
        for name in REQUIRED_MANIFEST_FIELDS
        if not is_present(manifest.get(name))
    )

    value = manifest.get("packet_id")
    if isinstance(value, str) and value != packet_id:
        report.errors.append(
            f"fixture_manifest.packet_id expected '{packet_id}', got '{value}'"
        )


def _validate_parity_report(
    packet_id: str, parity_report: Any, report: PacketValidationReport
) -> Optional[str]:
    if not isinstance(parity_report, dict):
        report.errors.append("parity_report.json must be a JSON object")
        return None
    _check_id_field(
        parity_report, "schema_version", PHASE2C_SCHEMA_VERSION,
        "parity_report.json", "parity_report", report,
    )
    _check_id_field(
        parity_report, "packet_id", packet_id, "parity_report.json", "parity_report", report
    )
    _check_array_field(
        parity_report, "missing_mandatory_fields", "parity_report.json", "parity_report", report
    )
    readiness = parity_report.get("readiness")
    if isinstance(readiness, str):
        return readiness
    report.missing_fields.append("parity_report.readiness")
    return None


def _require_present_keys(
    obj: dict, keys: Iterable[str], prefix: str, report: PacketValidationReport
) -> None:
    report.missing_fields.extend(
        f"{prefix}.{key}" for key in keys if not is_present(obj.get(key))
    )


def _validate_raptorq_sidecar(sidecar: Any, report: PacketValidationReport) -> None:
    label = "parity_report.raptorq.json"
    if not isinstance(sidecar, dict):
        report.errors.append(f"{label} must be a JSON object")
        return

    _require_present_keys(
        sidecar,
        ("artifact_id", "artifact_type", "source_hash", "raptorq", "scrub"),
        "parity_report.raptorq",
        report,
    )
    _check_array_field(sidecar, "decode_proofs", label, "parity_report.raptorq", report)

    sections = (
        ("raptorq", ("k", "repair_symbols", "overhead_ratio", "symbol_hashes")),
        ("scrub", ("last_ok_unix_ms", "status")),
    )
    for name, keys in sections:
        if name not in sidecar:
            continue
        section = sidecar[name]
        if not isinstance(section, dict):
            report.errors.append(f"{label}.{name} must be a JSON object")
            return
        _require_present_keys(section, keys, f"parity_report.raptorq.{name}", report)


def _validate_decode_proof(packet_id: str, decode_proof: Any, report: PacketValidationReport) -> None:
    label = "parity_report.decode_proof.json"
    prefix = "parity_report.decode_proof"
    if not isinstance(decode_proof, dict):
        report.errors.append(f"{label} must be a JSON object")
        return
    _check_id_field(
        decode_proof, "schema_version", PHASE2C_SCHEMA_VERSION, label, prefix, report
    )
    _check_id_field(decode_proof, "packet_id", packet_id, label, prefix, report)
    _check_array_field(decode_proof, "decode_proofs", label, prefix, report)