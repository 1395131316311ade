"""Structured test-log contract: event schema, validation, golden logs and JSONL output."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

STRUCTURED_LOG_SCHEMA_VERSION = "fr_testlog_v1"

PACKET_FAMILIES: tuple[str, ...] = tuple(f"FR-P2C-{n:03d}" for n in range(1, 10))

_U64_LIMIT = 2**64
_FNV_OFFSET_BASIS = 0xCBF29CE484222325
_FNV_PRIME = 0x00000100000001B3

_LOG_CONTRACT_ROOT = "crates/fr-conformance/fixtures/log_contract_v1"
_COMMON_ARTIFACT_REFS = (
    "TEST_LOG_SCHEMA_V1.md",
    f"{_LOG_CONTRACT_ROOT}/manifest.json",
    f"{_LOG_CONTRACT_ROOT}/env.json",
    f"{_LOG_CONTRACT_ROOT}/repro.lock",
)
_ENV_REF = f"{_LOG_CONTRACT_ROOT}/env.json"


class LogContractError(ValueError):
    """Raised when a structured log event breaks the contract or cannot be read or written."""


class VerificationPath(enum.Enum):
    UNIT = "unit"
    PROPERTY = "property"
    E2E = "e2e"


class LogOutcome(enum.Enum):
    @staticmethod
    def _generate_next_value_(name: str, start: int, count: int, last_values: list) -> str:
        return name.lower()

    PASS = enum.auto()
    FAIL = enum.auto()


class LogMode(enum.Enum):
    STRICT = "strict"
    HARDENED = "hardened"

    def as_env_value(self) -> str:
        """Return the value used for the FR_MODE environment variable."""
        return self.value


def _require_non_empty(field_name: str, value: str) -> None:
    if not value.strip():
        raise LogContractError(f"{field_name} must not be empty")


_STRING_FIELDS = (
    "schema_version",
    "ts_utc",
    "suite_id",
    "test_or_scenario_id",
    "packet_id",
    "input_digest",
    "output_digest",
    "reason_code",
    "replay_cmd",
)


def _take_str(data: Mapping[str, Any], key: str) -> str:
    if key not in data:
        raise LogContractError(f"missing field `{key}`")
    value = data[key]
    if not isinstance(value, str):
        raise LogContractError(f"field `{key}` must be a string")
    return value


def _take_u64(data: Mapping[str, Any], key: str) -> int:
    if key not in data:
        raise LogContractError(f"missing field `{key}`")
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value < _U64_LIMIT:
        raise LogContractError(f"field `{key}` must be an unsigned 64-bit integer")
    return value


def _take_enum(data: Mapping[str, Any], key: str, enum_type: type[enum.Enum]) -> Any:
    if key not in data:
        raise LogContractError(f"missing field `{key}`")
    try:
        return enum_type(data[key])
    except ValueError as err:
        raise LogContractError(f"unknown variant {data[key]!r} for field `{key}`") from err


def _take_optional_str(data: Mapping[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise LogContractError(f"field `{key}` must be a string or null")
    return value


@dataclass
class StructuredLogEvent:
    """One record of the structured test log."""

    schema_version: str
    ts_utc: str
    suite_id: str
    test_or_scenario_id: str
    packet_id: str
    mode: LogMode
    verification_path: VerificationPath
    seed: int
    input_digest: str
    output_digest: str
    duration_ms: int
    outcome: LogOutcome
    reason_code: str
    replay_cmd: str
    artifact_refs: list[str] = field(default_factory=list)
    fixture_id: Optional[str] = None
    env_ref: Optional[str] = None

    def validate(self) -> None:
        """Raise LogContractError if any contract field is wrong or empty."""
        if self.schema_version != STRUCTURED_LOG_SCHEMA_VERSION:
            raise LogContractError(
                f"schema_version expected '{STRUCTURED_LOG_SCHEMA_VERSION}', "
                f"got '{self.schema_version}'"
            )
        for name in _STRING_FIELDS[1:]:
            _require_non_empty(name, getattr(self, name))
        if not self.artifact_refs:
            raise LogContractError("artifact_refs must not be empty")
        for idx, artifact_ref in enumerate(self.artifact_refs):
            if not artifact_ref.strip():
                raise LogContractError(f"artifact_refs[{idx}] must not be empty")
        if self.fixture_id is not None:
            _require_non_empty("fixture_id", self.fixture_id)
        if self.env_ref is not None:
            _require_non_empty("env_ref", self.env_ref)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready mapping, leaving out unset optional fields."""
        out: dict[str, Any] = {
            "schema_version": self.schema_version,
            "ts_utc": self.ts_utc,
            "suite_id": self.suite_id,
            "test_or_scenario_id": self.test_or_scenario_id,
            "packet_id": self.packet_id,
            "mode": self.mode.value,
            "verification_path": self.verification_path.value,
            "seed": self.seed,
            "input_digest": self.input_digest,
            "output_digest": self.output_digest,
            "duration_ms": self.duration_ms,
            "outcome": self.outcome.value,
            "reason_code": self.reason_code,
            "replay_cmd": self.replay_cmd,
            "artifact_refs": list(self.artifact_refs),
        }
        if self.fixture_id is not None:
            out["fixture_id"] = self.fixture_id
        if self.env_ref is not None:
            out["env_ref"] = self.env_ref
        return out

    def to_json_line(self) -> str:
        """Validate the event and return it as one compact JSON line."""
        self.validate()
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StructuredLogEvent:
        """Build an event from a decoded JSON object; the content is not validated."""
        if not isinstance(data, Mapping):
            raise LogContractError("structured log event must be a JSON object")
        if "artifact_refs" not in data:
            raise LogContractError("missing field `artifact_refs`")
        refs = data["artifact_refs"]
        if not isinstance(refs, list) or not all(isinstance(r, str) for r in refs):
            raise LogContractError("field `artifact_refs` must be a list of strings")
        strings = {name: _take_str(data, name) for name in _STRING_FIELDS}
        return cls(
            mode=_take_enum(data, "mode", LogMode),
            verification_path=_take_enum(data, "verification_path", VerificationPath),
            seed=_take_u64(data, "seed"),
            duration_ms=_take_u64(data, "duration_ms"),
            outcome=_take_enum(data, "outcome", LogOutcome),
            artifact_refs=list(refs),
            fixture_id=_take_optional_str(data, "fixture_id"),
            env_ref=_take_optional_str(data, "env_ref"),
            **strings,
        )

    @classmethod
    def from_json_line(cls, line: str) -> StructuredLogEvent:
        """Parse one JSON line into an event."""
        try:
            data = json.loads(line)
        except json.JSONDecodeError as err:
            raise LogContractError(f"invalid structured log JSON: {err}") from err
        return cls.from_dict(data)


def unit_replay_cmd(crate_name: str, test_or_scenario_id: str, mode: LogMode, seed: int) -> str:
    """Return the command that replays a unit test."""
    return (
        f"FR_MODE={mode.as_env_value()} FR_SEED={seed} "
        f"cargo test -p {crate_name} {test_or_scenario_id} -- --nocapture"
    )


def e2e_replay_cmd(test_or_scenario_id: str, mode: LogMode, seed: int) -> str:
    """Return the command that replays an end-to-end scenario."""
    return (
        f"FR_MODE={mode.as_env_value()} FR_SEED={seed} "
        f"cargo test -p fr-conformance --test smoke -- --nocapture {test_or_scenario_id}"
    )


def deterministic_digest(label: str) -> str:
    """Return the 64-bit FNV-1a hash of ``label`` as 16 hex digits."""
    value = _FNV_OFFSET_BASIS
    for byte in label.encode("utf-8"):
        value ^= byte
        value = (value * _FNV_PRIME) % _U64_LIMIT
    return f"{value:016x}"


def golden_packet_logs(packet_id: str) -> tuple[StructuredLogEvent, StructuredLogEvent]:
    """Return the golden (unit, e2e) log events for a packet family."""
    if packet_id not in PACKET_FAMILIES:
        raise LogContractError(f"unknown packet family '{packet_id}'")

    slug = packet_id.lower()
    unit_test_id = f"{slug}::unit_contract_smoke"
    e2e_scenario_id = f"{slug}::e2e_contract_smoke"
    artifact_refs = [*_COMMON_ARTIFACT_REFS, f"{_LOG_CONTRACT_ROOT}/{packet_id}.golden.jsonl"]

    unit = StructuredLogEvent(
        schema_version=STRUCTURED_LOG_SCHEMA_VERSION,
        ts_utc="2026-02-14T00:00:00Z",
        suite_id=f"unit::{slug}",
        test_or_scenario_id=unit_test_id,
        packet_id=packet_id,
        mode=LogMode.STRICT,
        verification_path=VerificationPath.UNIT,
        seed=17,
        input_digest=deterministic_digest(f"{packet_id}:unit:input"),
        output_digest=deterministic_digest(f"{packet_id}:unit:output"),
        duration_ms=7,
        outcome=LogOutcome.PASS,
        reason_code="parity_ok",
        replay_cmd=unit_replay_cmd("fr-runtime", unit_test_id, LogMode.STRICT, 17),
        artifact_refs=list(artifact_refs),
        fixture_id=f"{packet_id}::unit_fixture",
        env_ref=_ENV_REF,
    )
    e2e = StructuredLogEvent(
        schema_version=STRUCTURED_LOG_SCHEMA_VERSION,
        ts_utc="2026-02-14T00:00:01Z",
        suite_id=f"e2e::{slug}",
        test_or_scenario_id=e2e_scenario_id,
        packet_id=packet_id,
        mode=LogMode.HARDENED,
        verification_path=VerificationPath.E2E,
        seed=42,
        input_digest=deterministic_digest(f"{packet_id}:e2e:input"),
        output_digest=deterministic_digest(f"{packet_id}:e2e:output"),
        duration_ms=11,
        outcome=LogOutcome.PASS,
        reason_code="journey_ok",
        replay_cmd=e2e_replay_cmd(e2e_scenario_id, LogMode.HARDENED, 42),
        artifact_refs=list(artifact_refs),
        fixture_id=f"{packet_id}::e2e_fixture",
        env_ref=_ENV_REF,
    )
    return unit, e2e


def _sanitize_path_segment(text: str) -> str:
    out = "".join(
        ch if (ch.isascii() and ch.isalnum()) or ch in "-_" else "_" for ch in text
    )
    return out or "unnamed"


def live_log_output_path(root: Union[str, Path], suite_id: str, fixture_name: str) -> Path:
    """Return ``root/<suite>/<fixture>.jsonl`` with both segments sanitised."""
    fixture_base = fixture_name[: -len(".json")] if fixture_name.endswith(".json") else fixture_name
    return Path(root) / _sanitize_path_segment(suite_id) / f"{_sanitize_path_segment(fixture_base)}.jsonl"


def append_structured_log_jsonl(
    path: Union[str, Path], events: Iterable[StructuredLogEvent]
) -> None:
    """Append each event as a validated JSON line, creating directories as needed."""
    events = list(events)
    if not events:
        return
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as err:
        raise LogContractError(f"failed to create log directory {path.parent}: {err}") from err
    try:
        handle = path.open("a", encoding="utf-8")
    except OSError as err:
        raise LogContractError(f"failed to open structured log file {path}: {err}") from err
    with handle:
        for event in events:
            line = event.to_json_line()
            try:
                handle.write(line + "\n")
            except OSError as err:
                raise LogContractError(
                    f"failed to append structured log line {path}: {err}"
                ) from err