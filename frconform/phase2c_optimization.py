"""Phase-2C optimization gate: benchmark summaries and canonical optimization rounds."""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from frconform.phase2c_packets import NOT_READY, PathLike, Phase2cError, load_json_file

READY_FOR_OPTIMIZATION = "READY_FOR_OPTIMIZATION"

REQUIRED_OPTIMIZATION_ROOT_FILES: tuple[str, ...] = (
    "run_gate_bench.sh",
    "bench_packets",
    "baseline_hyperfine_multi.json",
    "after_hyperfine_multi.json",
)

REQUIRED_OPTIMIZATION_ROUND_FILES: tuple[str, ...] = (
    "manifest.json",
    "env.json",
    "repro.lock",
    "optimization_report.md",
    "alien_recommendation_card.md",
    "isomorphism_check.txt",
    "baseline_hyperfine.json",
    "after_hyperfine.json",
    "baseline_output.txt",
    "after_output.txt",
    "baseline_output.sha256",
    "after_output.sha256",
    "baseline_strace.txt",
    "after_strace.txt",
)

_MIN_GATE_SAMPLES = 10


class OptimizationGateStatus(enum.Enum):
    READY = READY_FOR_OPTIMIZATION
    NOT_READY = NOT_READY


@dataclass(frozen=True)
class HyperfineSummary:
    """The first result of a hyperfine JSON export."""

    command: str
    mean_seconds: float
    sample_count: int


@dataclass
class OptimizationRoundReport:
    """Outcome of validating one ``round_*`` directory."""

    round_id: str
    claim_id: Optional[str] = None
    evidence_id: Optional[str] = None
    baseline_mean_seconds: Optional[float] = None
    after_mean_seconds: Optional[float] = None
    delta_percent: Optional[float] = None
    missing_files: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def is_ready(self) -> bool:
        return not self.missing_files and not self.errors


@dataclass
class OptimizationGateReport:
    """Outcome of validating an optimization gate root."""

    root: Path
    status: OptimizationGateStatus = OptimizationGateStatus.NOT_READY
    baseline_mean_seconds: Optional[float] = None
    after_mean_seconds: Optional[float] = None
    missing_files: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    rounds: list[OptimizationRoundReport] = field(default_factory=list)


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _non_empty_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _format_float(value: float) -> str:
    if math.isfinite(value) and value == int(value):
        return str(int(value))
    return str(value)


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as err:
        raise Phase2cError(f"failed to read {path}: {err}") from err


def parse_hyperfine_summary(path: PathLike) -> HyperfineSummary:
    """Read the command, mean and sample count of the first hyperfine result."""
    path = Path(path)
    value = load_json_file(path)
    results = value.get("results") if isinstance(value, dict) else None
    if not isinstance(results, list):
        raise Phase2cError(f"invalid hyperfine JSON {path}: missing results[]")
    if not results:
        raise Phase2cError(f"invalid hyperfine JSON {path}: empty results[]")
    first = results[0] if isinstance(results[0], dict) else {}
    command = first.get("command")
    if not isinstance(command, str):
        raise Phase2cError(f"invalid hyperfine JSON {path}: missing command")
    mean = _as_number(first.get("mean"))
    if mean is None:
        raise Phase2cError(f"invalid hyperfine JSON {path}: missing mean")
    if not math.isfinite(mean) or mean <= 0.0:
        raise Phase2cError(
            f"invalid hyperfine mean in {path}: expected positive finite number, "
            f"got {_format_float(mean)}"
        )
    times = first.get("times")
    sample_count = len(times) if isinstance(times, list) else 0
    return HyperfineSummary(command=command, mean_seconds=mean, sample_count=sample_count)


def _summary_if_present(path: Path, errors: list[str]) -> Optional[HyperfineSummary]:
    if not path.is_file():
        return None
    try:
        return parse_hyperfine_summary(path)
    except Phase2cError as err:
        errors.append(str(err))
        return None


def _validate_manifest_section(
    round_dir: Path, manifest: dict, report: OptimizationRoundReport, section_name: str
) -> None:
    section = manifest.get(section_name)
    if not isinstance(section, dict):
        report.errors.append(f"manifest.{section_name} must be an object")
        return

    for key in ("hyperfine", "strace"):
        ref = _non_empty_str(section.get(key))
        if ref is None:
            report.errors.append(f"manifest.{section_name}.{key} must be a non-empty string")
        elif not (round_dir / ref).is_file():
            report.errors.append(
                f"manifest.{section_name}.{key} references missing file '{ref}'"
            )
    if _non_empty_str(section.get("stdout_sha256")) is None:
        report.errors.append(
            f"manifest.{section_name}.stdout_sha256 must be a non-empty string"
        )
    mean = _as_number(section.get("mean_seconds"))
    if mean is None or not math.isfinite(mean) or mean <= 0.0:
        report.errors.append(f"manifest.{section_name}.mean_seconds must be a positive number")


def _validate_round_manifest(
    round_dir: Path, manifest: Any, report: OptimizationRoundReport
) -> None:
    if not isinstance(manifest, dict):
        report.errors.append("optimization manifest must be a JSON object")
        return

    claim_id = _non_empty_str(manifest.get("claim_id"))
    if claim_id is None:
        report.errors.append("manifest.claim_id must be a non-empty string")
    else:
        report.claim_id = claim_id
    evidence_id = _non_empty_str(manifest.get("evidence_id"))
    if evidence_id is None:
        report.errors.append("manifest.evidence_id must be a non-empty string")
    else:
        report.evidence_id = evidence_id
    delta = _as_number(manifest.get("delta_percent"))
    if delta is None or not math.isfinite(delta):
        report.errors.append("manifest.delta_percent must be a finite number")
    else:
        report.delta_percent = delta

    _validate_manifest_section(round_dir, manifest, report, "baseline")
    _validate_manifest_section(round_dir, manifest, report, "after")

    isomorphism = _non_empty_str(manifest.get("isomorphism"))
    if isomorphism is None:
        report.errors.append("manifest.isomorphism must be a non-empty string")
    elif not (round_dir / isomorphism).is_file():
        report.errors.append(f"manifest.isomorphism references missing file '{isomorphism}'")

    source_files = manifest.get("source_files")
    if not isinstance(source_files, list) or not source_files:
        report.errors.append("manifest.source_files must contain at least one entry")


def _check_text_file(path: Path, report: OptimizationRoundReport, check) -> None:
    if not path.is_file():
        return
    try:
        raw = _read_text(path)
    except Phase2cError as err:
        report.errors.append(str(err))
        return
    check(raw)


def validate_optimization_round(round_dir: PathLike) -> OptimizationRoundReport:
    """Validate the artifacts of one optimization round directory."""
    round_dir = Path(round_dir)
    if not round_dir.exists():
        raise Phase2cError(f"optimization round directory does not exist: {round_dir}")
    if not round_dir.is_dir():
        raise Phase2cError(f"optimization round path is not a directory: {round_dir}")
    if not round_dir.name:
        raise Phase2cError(f"invalid optimization round directory: {round_dir}")

    report = OptimizationRoundReport(round_id=round_dir.name)
    report.missing_files = [
        name for name in REQUIRED_OPTIMIZATION_ROUND_FILES if not (round_dir / name).is_file()
    ]

    manifest_path = round_dir / "manifest.json"
    if manifest_path.is_file():
        try:
            manifest = load_json_file(manifest_path)
        except Phase2cError as err:
            report.errors.append(str(err))
        else:
            _validate_round_manifest(round_dir, manifest, report)

    baseline = _summary_if_present(round_dir / "baseline_hyperfine.json", report.errors)
    if baseline is not None:
        report.baseline_mean_seconds = baseline.mean_seconds
    after = _summary_if_present(round_dir / "after_hyperfine.json", report.errors)
    if after is not None:
        report.after_mean_seconds = after.mean_seconds

    isomorphism_path = round_dir / "isomorphism_check.txt"

    def check_isomorphism(raw: str) -> None:
        if "isomorphism_output_match=1" not in raw:
            report.errors.append(
                f"{isomorphism_path} must include 'isomorphism_output_match=1'"
            )

    _check_text_file(isomorphism_path, report, check_isomorphism)

    card_path = round_dir / "alien_recommendation_card.md"

    def check_card(raw: str) -> None:
        if report.claim_id is not None and report.claim_id not in raw:
            report.errors.append(f"{card_path} must reference claim_id '{report.claim_id}'")
        if report.evidence_id is not None and report.evidence_id not in raw:
            report.errors.append(
                f"{card_path} must reference evidence_id '{report.evidence_id}'"
            )

    _check_text_file(card_path, report, check_card)

    report_path = round_dir / "optimization_report.md"

    def check_report(raw: str) -> None:
        if "Delta:" not in raw:
            report.errors.append(f"{report_path} missing performance delta line")
        if "Isomorphism:" not in raw:
            report.errors.append(f"{report_path} missing isomorphism line")

    _check_text_file(report_path, report, check_report)
    return report


def _discover_canonical_rounds(root: Path) -> list[Path]:
    if not root.exists():
        return []
    try:
        entries = list(root.iterdir())
    except OSError as err:
        raise Phase2cError(f"failed to read optimization root {root}: {err}") from err
    return sorted(
        path
        for path in entries
        if path.is_dir()
        and path.name.startswith("round_")
        and (path / "manifest.json").is_file()
    )


def _check_multi_summary(
    root: Path, name: str, errors: list[str]
) -> Optional[float]:
    summary = _summary_if_present(root / name, errors)
    if summary is None:
        return None
    if "run_gate_bench.sh" not in summary.command:
        errors.append(
            f"{name} command should invoke run_gate_bench.sh, got '{summary.command}'"
        )
    if summary.sample_count < _MIN_GATE_SAMPLES:
        errors.append(
            f"{name} expected >={_MIN_GATE_SAMPLES} samples, got {summary.sample_count}"
        )
    return summary.mean_seconds


def validate_phase2c_optimization_gate(root: PathLike) -> OptimizationGateReport:
    """Validate an optimization gate root and every canonical round beneath it."""
    root = Path(root)
    report = OptimizationGateReport(root=root)

    if root.exists() and not root.is_dir():
        raise Phase2cError(f"optimization gate root is not a directory: {root}")

    for required in REQUIRED_OPTIMIZATION_ROOT_FILES:
        path = root / required
        present = path.is_dir() if required == "bench_packets" else path.is_file()
        if not present:
            report.missing_files.append(required)

    script_path = root / "run_gate_bench.sh"
    if script_path.is_file():
        try:
            script = _read_text(script_path)
        except Phase2cError as err:
            report.errors.append(str(err))
        else:
            if "phase2c_schema_gate" not in script:
                report.errors.append(f"{script_path} does not invoke phase2c_schema_gate")
            if "bench_packets" not in script:
                report.errors.append(f"{script_path} does not include bench_packets corpus")

    report.baseline_mean_seconds = _check_multi_summary(
        root, "baseline_hyperfine_multi.json", report.errors
    )
    report.after_mean_seconds = _check_multi_summary(
        root, "after_hyperfine_multi.json", report.errors
    )

    bench_root = root / "bench_packets"
    if bench_root.is_dir():
        try:
            suites = [path.name for path in bench_root.iterdir() if path.is_dir()]
        except OSError as err:
            raise Phase2cError(
                f"failed to read bench packet corpus {bench_root}: {err}"
            ) from err
        valid_count = sum("VALID" in name for name in suites)
        invalid_count = sum("INVALID" in name for name in suites)
        if valid_count == 0 or invalid_count == 0:
            report.errors.append(
                "bench_packets corpus must include both VALID and INVALID suites "
                f"(valid={valid_count}, invalid={invalid_count})"
            )

    round_dirs = _discover_canonical_rounds(root)
    if not round_dirs:
        report.errors.append(
            f"no canonical optimization rounds found under {root} "
            "(expected round_*/manifest.json)"
        )
    for round_dir in round_dirs:
        round_report = validate_optimization_round(round_dir)
        if not round_report.is_ready():
            report.errors.append(
                f"optimization round {round_report.round_id} is incomplete"
            )
        report.rounds.append(round_report)

    if not report.missing_files and not report.errors:
        report.status = OptimizationGateStatus.READY
    return report