"""User-journey corpus gate: checks that every packet family has a traced workflow."""

from __future__ import annotations

import enum
import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Sequence, Union

from frconform.log_contract import PACKET_FAMILIES, LogContractError, StructuredLogEvent

USER_WORKFLOW_CORPUS_SCHEMA_VERSION = "user_workflow_corpus/v1"
USER_WORKFLOW_CORPUS_REPORT_SCHEMA_VERSION = "user_workflow_corpus_report/v1"

DEFAULT_REPO_ROOT = Path(".")
DEFAULT_MANIFEST = Path("crates/fr-conformance/fixtures/user_workflow_corpus_v1.json")

PathLike = Union[str, Path]


class JourneyGateError(Exception):
    """Raised when the corpus or a golden log cannot be read, or the command line is wrong."""


@dataclass(frozen=True)
class CliArgs:
    manifest: Path
    json_out: Optional[Path] = None


class DifferentialStatus(enum.Enum):
    ACTIVE = "active"
    PLANNED = "planned"


@dataclass(frozen=True)
class WorkflowHook:
    suite_id: str
    test_or_scenario_id: str
    replay_cmd: str
    owner_bead: str


@dataclass(frozen=True)
class DifferentialHook:
    status: DifferentialStatus
    hook_mode: str
    fixtures: list[str]
    command: str
    owner_bead: str
    notes: str


@dataclass(frozen=True)
class WorkflowJourney:
    journey_id: str
    packet_id: str
    description: str
    golden_log_path: str
    unit_hook: WorkflowHook
    differential_hook: DifferentialHook
    e2e_hook: WorkflowHook
    stable_reason_codes: list[str]


def _field(data: Any, key: str, ctx: str) -> Any:
    if not isinstance(data, dict):
        raise JourneyGateError(f"{ctx} must be a JSON object")
    if key not in data:
        raise JourneyGateError(f"missing field `{key}` in {ctx}")
    return data[key]


def _str_field(data: Any, key: str, ctx: str) -> str:
    value = _field(data, key, ctx)
    if not isinstance(value, str):
        raise JourneyGateError(f"field `{key}` in {ctx} must be a string")
    return value


def _str_list_field(data: Any, key: str, ctx: str) -> list[str]:
    value = _field(data, key, ctx)
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise JourneyGateError(f"field `{key}` in {ctx} must be a list of strings")
    return list(value)


def _hook_from_dict(data: Any, ctx: str) -> WorkflowHook:
    return WorkflowHook(
        suite_id=_str_field(data, "suite_id", ctx),
        test_or_scenario_id=_str_field(data, "test_or_scenario_id", ctx),
        replay_cmd=_str_field(data, "replay_cmd", ctx),
        owner_bead=_str_field(data, "owner_bead", ctx),
    )


def _differential_from_dict(data: Any, ctx: str) -> DifferentialHook:
    raw_status = _field(data, "status", ctx)
    try:
        status = DifferentialStatus(raw_status)
    except ValueError as err:
        raise JourneyGateError(f"unknown differential status {raw_status!r} in {ctx}") from err
    return DifferentialHook(
        status=status,
        hook_mode=_str_field(data, "hook_mode", ctx),
        fixtures=_str_list_field(data, "fixtures", ctx),
        command=_str_field(data, "command", ctx),
        owner_bead=_str_field(data, "owner_bead", ctx),
        notes=_str_field(data, "notes", ctx),
    )


def _journey_from_dict(data: Any, ctx: str) -> WorkflowJourney:
    return WorkflowJourney(
        journey_id=_str_field(data, "journey_id", ctx),
        packet_id=_str_field(data, "packet_id", ctx),
        description=_str_field(data, "description", ctx),
        golden_log_path=_str_field(data, "golden_log_path", ctx),
        unit_hook=_hook_from_dict(_field(data, "unit_hook", ctx), f"{ctx}.unit_hook"),
        differential_hook=_differential_from_dict(
            _field(data, "differential_hook", ctx), f"{ctx}.differential_hook"
        ),
        e2e_hook=_hook_from_dict(_field(data, "e2e_hook", ctx), f"{ctx}.e2e_hook"),
        stable_reason_codes=_str_list_field(data, "stable_reason_codes", ctx),
    )


@dataclass(frozen=True)
class WorkflowCorpus:
    schema_version: str
    corpus_id: str
    generated_at_utc: str
    log_manifest_path: str
    journeys: list[WorkflowJourney]

    @classmethod
    def from_dict(cls, data: Any) -> WorkflowCorpus:
        """Build a corpus from its decoded JSON manifest."""
        ctx = "corpus"
        raw_journeys = _field(data, "journeys", ctx)
        if not isinstance(raw_journeys, list):
            raise JourneyGateError("field `journeys` in corpus must be a list")
        return cls(
            schema_version=_str_field(data, "schema_version", ctx),
            corpus_id=_str_field(data, "corpus_id", ctx),
            generated_at_utc=_str_field(data, "generated_at_utc", ctx),
            log_manifest_path=_str_field(data, "log_manifest_path", ctx),
            journeys=[
                _journey_from_dict(item, f"journeys[{idx}]")
                for idx, item in enumerate(raw_journeys)
            ],
        )


@dataclass(frozen=True)
class PacketJourneyCoverage:
    packet_id: str
    journey_id: str
    differential_status: DifferentialStatus
    differential_owner_bead: str
    differential_fixtures: list[str]


@dataclass
class WorkflowCorpusReport:
    schema_version: str
    corpus_id: str
    manifest_path: str
    journey_count: int
    active_differential_count: int
    planned_differential_count: int
    packet_coverage: list[PacketJourneyCoverage] = field(default_factory=list)
    violations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready mapping of the report."""
        return {
            "schema_version": self.schema_version,
            "corpus_id": self.corpus_id,
            "manifest_path": self.manifest_path,
            "journey_count": self.journey_count,
            "active_differential_count": self.active_differential_count,
            "planned_differential_count": self.planned_differential_count,
            "packet_coverage": [
                {
                    "packet_id": item.packet_id,
                    "journey_id": item.journey_id,
                    "differential_status": item.differential_status.value,
                    "differential_owner_bead": item.differential_owner_bead,
                    "differential_fixtures": list(item.differential_fixtures),
                }
                for item in self.packet_coverage
            ],
            "violations": list(self.violations),
        }


def _usage(reason: str) -> str:
    return (
        f"{reason}\nusage: user_journey_corpus_gate "
        "[--manifest <path>] [--json-out <path>]"
    )


def parse_args(argv: Sequence[str]) -> CliArgs:
    """Parse the command line; unknown arguments are ignored."""
    manifest = DEFAULT_REPO_ROOT / DEFAULT_MANIFEST
    json_out: Optional[Path] = None
    args = iter(argv)
    for arg in args:
        if arg == "--manifest":
            value = next(args, None)
            if value is None:
                raise JourneyGateError(_usage("missing path after --manifest"))
            manifest = Path(value)
        elif arg == "--json-out":
            value = next(args, None)
            if value is None:
                raise JourneyGateError(_usage("missing path after --json-out"))
            json_out = Path(value)
        elif arg in ("-h", "--help"):
            raise JourneyGateError(_usage("help requested"))
    return CliArgs(manifest=manifest, json_out=json_out)


def load_corpus(path: PathLike) -> WorkflowCorpus:
    """Read and decode a workflow corpus manifest."""
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as err:
        raise JourneyGateError(f"failed to read manifest {path}: {err}") from err
    try:
        return WorkflowCorpus.from_dict(json.loads(raw))
    except (ValueError, JourneyGateError) as err:
        raise JourneyGateError(f"invalid manifest JSON {path}: {err}") from err


def load_golden_log_events(path: PathLike) -> list[StructuredLogEvent]:
    """Read the non-blank lines of a golden JSONL log as structured events."""
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as err:
        raise JourneyGateError(f"failed to read golden log {path}: {err}") from err
    events = []
    for line_no, line in enumerate(raw.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            events.append(StructuredLogEvent.from_json_line(line))
        except LogContractError as err:
            raise JourneyGateError(
                f"failed to parse golden log line {line_no} at {path}: {err}"
            ) from err
    if not events:
        raise JourneyGateError(f"golden log file has no events: {path}")
    return events


def write_json_report(path: PathLike, report: WorkflowCorpusReport) -> None:
    """Write the report as pretty-printed JSON, creating the parent directory."""
    path = Path(path)
    if str(path.parent) not in ("", "."):
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as err:
            raise JourneyGateError(
                f"failed to create report directory {path.parent}: {err}"
            ) from err
    payload = json.dumps(report.to_dict(), indent=2, ensure_ascii=False)
    try:
        path.write_text(payload, encoding="utf-8")
    except OSError as err:
        raise JourneyGateError(f"failed to write report {path}: {err}") from err


def _resolve_repo_path(raw: str, repo_root: Path) -> Path:
    path = Path(raw)
    return path if path.is_absolute() else repo_root / path


def _require_non_empty(field_name: str, value: str, violations: list[str]) -> None:
    if not value.strip():
        violations.append(f"{field_name} must not be empty")


def _validate_hook(prefix: str, hook: WorkflowHook, violations: list[str]) -> None:
    for name in ("suite_id", "test_or_scenario_id", "replay_cmd", "owner_bead"):
        _require_non_empty(f"{prefix}.{name}", getattr(hook, name), violations)


def _validate_differential_hook(hook: DifferentialHook, violations: list[str]) -> None:
    for name in ("hook_mode", "command", "owner_bead", "notes"):
        _require_non_empty(f"differential_hook.{name}", getattr(hook, name), violations)
    if not hook.fixtures:
        violations.append("differential_hook.fixtures must not be empty")


def _validate_golden_event_refs(
    journey: WorkflowJourney, events: list[StructuredLogEvent], violations: list[str]
) -> None:
    for label, hook in (("unit", journey.unit_hook), ("e2e", journey.e2e_hook)):
        event = next(
            (e for e in events if e.test_or_scenario_id == hook.test_or_scenario_id), None
        )
        if event is None:
            violations.append(
                f"{label} scenario '{hook.test_or_scenario_id}' missing from golden log "
                f"for journey '{journey.journey_id}'"
            )
            continue
        if event.packet_id != journey.packet_id:
            violations.append(
                f"{label} hook packet mismatch for journey '{journey.journey_id}': "
                f"expected '{journey.packet_id}', got '{event.packet_id}'"
            )
        if event.suite_id != hook.suite_id:
            violations.append(
                f"{label} hook suite mismatch for journey '{journey.journey_id}': "
                f"expected '{hook.suite_id}', got '{event.suite_id}'"
            )


def validate_corpus(
    corpus: WorkflowCorpus, manifest_path: PathLike, repo_root: PathLike = DEFAULT_REPO_ROOT
) -> WorkflowCorpusReport:
    """Check the corpus and its golden logs, collecting every violation."""
    repo_root = Path(repo_root)
    violations: list[str] = []

    if corpus.schema_version != USER_WORKFLOW_CORPUS_SCHEMA_VERSION:
        violations.append(
            f"schema_version expected '{USER_WORKFLOW_CORPUS_SCHEMA_VERSION}', "
            f"got '{corpus.schema_version}'"
        )
    if not corpus.generated_at_utc.strip():
        violations.append("generated_at_utc must not be empty")
    log_manifest = _resolve_repo_path(corpus.log_manifest_path, repo_root)
    if not log_manifest.exists():
        violations.append(f"log_manifest_path does not exist: {log_manifest}")

    journey_ids: set[str] = set()
    packet_ids_seen: set[str] = set()
    active = planned = 0
    coverage: list[PacketJourneyCoverage] = []

    for journey in corpus.journeys:
        _require_non_empty("journey_id", journey.journey_id, violations)
        _require_non_empty("packet_id", journey.packet_id, violations)
        _require_non_empty("description", journey.description, violations)

        if journey.journey_id in journey_ids:
            violations.append(f"duplicate journey_id '{journey.journey_id}'")
        journey_ids.add(journey.journey_id)
        packet_ids_seen.add(journey.packet_id)

        if journey.packet_id not in PACKET_FAMILIES:
            violations.append(
                f"unknown packet_id '{journey.packet_id}' in journey '{journey.journey_id}'"
            )

        _validate_hook("unit_hook", journey.unit_hook, violations)
        _validate_hook("e2e_hook", journey.e2e_hook, violations)
        _validate_differential_hook(journey.differential_hook, violations)

        for code in ("parity_ok", "journey_ok"):
            if code not in journey.stable_reason_codes:
                violations.append(
                    f"journey '{journey.journey_id}' stable_reason_codes missing '{code}'"
                )

        if journey.differential_hook.status is DifferentialStatus.ACTIVE:
            active += 1
        else:
            planned += 1

        try:
            events = load_golden_log_events(
                _resolve_repo_path(journey.golden_log_path, repo_root)
            )
        except JourneyGateError as err:
            violations.append(str(err))
        else:
            _validate_golden_event_refs(journey, events, violations)

        coverage.append(
            PacketJourneyCoverage(
                packet_id=journey.packet_id,
                journey_id=journey.journey_id,
                differential_status=journey.differential_hook.status,
                differential_owner_bead=journey.differential_hook.owner_bead,
                differential_fixtures=list(journey.differential_hook.fixtures),
            )
        )

    expected = set(PACKET_FAMILIES)
    missing = sorted(expected - packet_ids_seen)
    unexpected = sorted(packet_ids_seen - expected)
    if missing:
        violations.append(f"missing packet journeys: {', '.join(missing)}")
    if unexpected:
        violations.append(f"unexpected packet journeys: {', '.join(unexpected)}")

    coverage.sort(key=lambda item: item.packet_id)

    return WorkflowCorpusReport(
        schema_version=USER_WORKFLOW_CORPUS_REPORT_SCHEMA_VERSION,
        corpus_id=corpus.corpus_id,
        manifest_path=str(manifest_path),
        journey_count=len(corpus.journeys),
        active_differential_count=active,
        planned_differential_count=planned,
        packet_coverage=coverage,
        violations=violations,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the gate; return 0 without violations, 1 with violations and 2 on error."""
    raw = sys.argv[1:] if argv is None else list(argv)
    try:
        cli = parse_args(raw)
        corpus = load_corpus(cli.manifest)
        report = validate_corpus(corpus, cli.manifest)

        print(f"corpus_id: {report.corpus_id}")
        print(f"journey_count: {report.journey_count}")
        print(
            f"differential_hooks: active={report.active_differential_count} "
            f"planned={report.planned_differential_count}"
        )
        if cli.json_out is not None:
            write_json_report(cli.json_out, report)
            print(f"json_report: {cli.json_out}")
    except JourneyGateError as err:
        print(f"error: {err}", file=sys.stderr)
        return 2

    if report.violations:
        print("violations:")
        for violation in report.violations:
            print(f"- {violation}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())