import json
from pathlib import Path

import pytest

from frconform.phase2c_packets import (
    NOT_READY,
    PHASE2C_SCHEMA_VERSION,
    READY_FOR_IMPL,
    REQUIRED_MANIFEST_FIELDS,
    REQUIRED_PACKET_FILES,
    GateAction,
    GateDecisionLedger,
    PacketReadiness,
    Phase2cError,
    discover_phase2c_packets,
    is_present,
    load_json_file,
    validate_phase2c_packet,
    validate_phase2c_packets,
    validate_phase2c_tree,
)


def _write_json(path: Path, value) -> None:
    path.write_text(json.dumps(value), encoding="utf-8")


def _make_packet(
    root: Path,
    name: str,
    *,
    drop_manifest=(),
    parity_readiness=READY_FOR_IMPL,
    raptorq_overrides=None,
    skip_files=(),
) -> Path:
    packet = root / name
    packet.mkdir(parents=True)
    for text_file in ("legacy_anchor_map.md", "contract_table.md", "parity_gate.yaml", "risk_note.md"):
        if text_file not in skip_files:
            (packet / text_file).write_text("content\n", encoding="utf-8")

    manifest = {"schema_version": PHASE2C_SCHEMA_VERSION}
    for field_name in REQUIRED_MANIFEST_FIELDS:
        manifest[field_name] = ["entry"]
    manifest["packet_id"] = name
    for field_name in drop_manifest:
        manifest.pop(field_name, None)
    _write_json(packet / "fixture_manifest.json", manifest)

    _write_json(
        packet / "parity_report.json",
        {
            "schema_version": PHASE2C_SCHEMA_VERSION,
            "packet_id": name,
            "missing_mandatory_fields": [],
            "readiness": parity_readiness,
        },
    )
    sidecar = {
        "artifact_id": "artifact",
        "artifact_type": "parity_report",
        "source_hash": "abc",
        "raptorq": {"k": 10, "repair_symbols": 3, "overhead_ratio": 0.3, "symbol_hashes": ["abc"]},
        "scrub": {"last_ok_unix_ms": 1, "status": "ok"},
        "decode_proofs": [],
    }
    sidecar.update(raptorq_overrides or {})
    _write_json(packet / "parity_report.raptorq.json", sidecar)
    _write_json(
        packet / "parity_report.decode_proof.json",
        {"schema_version": PHASE2C_SCHEMA_VERSION, "packet_id": name, "decode_proofs": []},
    )
    return packet


@pytest.fixture
def fixture_root(tmp_path):
    root = tmp_path / "phase2c"
    _make_packet(root, "FR-P2C-TEST-VALID")
    _make_packet(
        root,
        "FR-P2C-TEST-INVALID",
        drop_manifest=("command_acl_contract",),
        parity_readiness=NOT_READY,
    )
    (root / "notes").mkdir()
    (root / "FR-P2C-file.txt").write_text("x", encoding="utf-8")
    return root


def test_discovers_phase2c_packet_dirs(fixture_root):
    packets = discover_phase2c_packets(fixture_root)
    assert [p.name for p in packets] == ["FR-P2C-TEST-INVALID", "FR-P2C-TEST-VALID"]


def test_discover_missing_root_is_empty(tmp_path):
    assert discover_phase2c_packets(tmp_path / "absent") == []


def test_discover_rejects_file_root(tmp_path):
    target = tmp_path / "file"
    target.write_text("x", encoding="utf-8")
    with pytest.raises(Phase2cError, match="not a directory"):
        discover_phase2c_packets(target)


def test_valid_packet_is_ready_for_impl(fixture_root):
    report = validate_phase2c_packet(fixture_root / "FR-P2C-TEST-VALID")
    assert report.is_ready_for_impl()
    assert report.readiness is PacketReadiness.READY_FOR_IMPL
    assert report.readiness.value == READY_FOR_IMPL
    assert report.schema_version == PHASE2C_SCHEMA_VERSION
    assert report.missing_files == []
    assert report.missing_fields == []
    assert report.errors == []
    assert report.decision_ledger.recommended_action is GateAction.PROCEED_IMPL
    assert report.decision_ledger.posterior_contract_violation < 0.1
    assert report.decision_ledger.evidence_terms == []


def test_missing_mandatory_field_marks_packet_not_ready(fixture_root):
    report = validate_phase2c_packet(fixture_root / "FR-P2C-TEST-INVALID")
    assert report.readiness is PacketReadiness.NOT_READY
    assert report.readiness.value == NOT_READY
    assert not report.is_ready_for_impl()
    assert "fixture_manifest.command_acl_contract" in report.missing_fields
    assert report.errors == []
    ledger = report.decision_ledger
    assert ledger.recommended_action is GateAction.BLOCK_IMPL
    assert ledger.posterior_contract_violation > 0.01
    assert [t.signal for t in ledger.evidence_terms] == ["missing_fields"]
    assert ledger.evidence_terms[0].count == len(report.missing_fields)


def test_tree_validation_includes_all_packets(fixture_root):
    reports = validate_phase2c_tree(fixture_root)
    assert len(reports) == 2
    readiness = {r.packet_id: r.readiness for r in reports}
    assert readiness["FR-P2C-TEST-VALID"] is PacketReadiness.READY_FOR_IMPL
    assert readiness["FR-P2C-TEST-INVALID"] is PacketReadiness.NOT_READY


def test_packet_validation_order_is_deterministic(fixture_root):
    dirs = list(reversed(discover_phase2c_packets(fixture_root)))
    reports = validate_phase2c_packets(dirs)
    assert [r.packet_id for r in reports] == ["FR-P2C-TEST-INVALID", "FR-P2C-TEST-VALID"]


def test_many_packets_are_sorted_by_id(tmp_path):
    names = [f"FR-P2C-{n:03d}" for n in range(1, 7)]
    for name in names:
        _make_packet(tmp_path, name)
    reports = validate_phase2c_packets(reversed([tmp_path / n for n in names]))
    assert [r.packet_id for r in reports] == names
    assert all(r.is_ready_for_impl() for r in reports)


def test_empty_packet_list_gives_no_reports():
    assert validate_phase2c_packets([]) == []


def test_empty_packet_reports_every_missing_file(tmp_path):
    packet = tmp_path / "FR-P2C-EMPTY"
    packet.mkdir()
    report = validate_phase2c_packet(packet)
    assert report.missing_files == list(REQUIRED_PACKET_FILES)
    assert report.readiness is PacketReadiness.NOT_READY
    assert report.schema_version is None
    assert report.decision_ledger.recommended_action is GateAction.BLOCK_IMPL
    assert report.decision_ledger.evidence_terms[0].signal == "missing_files"
    assert report.decision_ledger.evidence_terms[0].count == len(REQUIRED_PACKET_FILES)


def test_missing_text_file_is_reported(tmp_path):
    packet = _make_packet(tmp_path, "FR-P2C-X", skip_files=("risk_note.md",))
    report = validate_phase2c_packet(packet)
    assert report.missing_files == ["risk_note.md"]
    assert not report.is_ready_for_impl()


def test_directory_named_like_required_file_is_not_counted(tmp_path):
    packet = _make_packet(tmp_path, "FR-P2C-X", skip_files=("contract_table.md",))
    (packet / "contract_table.md").mkdir()
    report = validate_phase2c_packet(packet)
    assert report.missing_files == ["contract_table.md"]


def test_readiness_mismatch_blocks_complete_packet(tmp_path):
    packet = _make_packet(tmp_path, "FR-P2C-X", parity_readiness=NOT_READY)
    report = validate_phase2c_packet(packet)
    assert report.readiness is PacketReadiness.NOT_READY
    assert report.errors == [
        f"parity_report.json.readiness expected '{READY_FOR_IMPL}', got '{NOT_READY}'"
    ]
    assert report.decision_ledger.recommended_action is GateAction.BLOCK_IMPL


def test_incomplete_packet_claiming_ready_is_flagged(tmp_path):
    packet = _make_packet(tmp_path, "FR-P2C-X", drop_manifest=("error_contract",))
    report = validate_phase2c_packet(packet)
    assert report.readiness is PacketReadiness.NOT_READY
    assert any("when mandatory contract data is missing" in e for e in report.errors)


def test_invalid_json_is_reported(tmp_path):
    packet = _make_packet(tmp_path, "FR-P2C-X")
    (packet / "parity_report.json").write_text("{not json", encoding="utf-8")
    report = validate_phase2c_packet(packet)
    assert any(e.startswith("invalid JSON") for e in report.errors)
    assert report.readiness is PacketReadiness.NOT_READY


def test_manifest_packet_id_mismatch(tmp_path):
    packet = _make_packet(tmp_path, "FR-P2C-X")
    manifest = load_json_file(packet / "fixture_manifest.json")
    manifest["packet_id"] = "FR-P2C-Y"
    _write_json(packet / "fixture_manifest.json", manifest)
    report = validate_phase2c_packet(packet)
    assert "fixture_manifest.packet_id expected 'FR-P2C-X', got 'FR-P2C-Y'" in report.errors


def test_raptorq_section_must_be_object(tmp_path):
    packet = _make_packet(tmp_path, "FR-P2C-X", raptorq_overrides={"raptorq": "bad"})
    report = validate_phase2c_packet(packet)
    assert "parity_report.raptorq.json.raptorq must be a JSON object" in report.errors


def test_raptorq_scrub_missing_keys(tmp_path):
    packet = _make_packet(tmp_path, "FR-P2C-X", raptorq_overrides={"scrub": {"status": "ok"}})
    report = validate_phase2c_packet(packet)
    assert report.missing_fields == ["parity_report.raptorq.scrub.last_ok_unix_ms"]


def test_decode_proofs_must_be_array(tmp_path):
    packet = _make_packet(tmp_path, "FR-P2C-X")
    _write_json(
        packet / "parity_report.decode_proof.json",
        {"schema_version": PHASE2C_SCHEMA_VERSION, "packet_id": "FR-P2C-X", "decode_proofs": {}},
    )
    report = validate_phase2c_packet(packet)
    assert "parity_report.decode_proof.json.decode_proofs must be an array" in report.errors


def test_missing_packet_dir_raises(tmp_path):
    with pytest.raises(Phase2cError, match="does not exist"):
        validate_phase2c_packet(tmp_path / "FR-P2C-NOPE")


def test_packet_path_that_is_file_raises(tmp_path):
    target = tmp_path / "FR-P2C-FILE"
    target.write_text("x", encoding="utf-8")
    with pytest.raises(Phase2cError, match="not a directory"):
        validate_phase2c_packet(target)


def test_default_prior_prefers_proceeding():
    ledger = GateDecisionLedger.default_prior()
    assert ledger.posterior_contract_violation == pytest.approx(0.01)
    assert ledger.recommended_action is GateAction.PROCEED_IMPL
    assert ledger.expected_loss_proceed < ledger.expected_loss_block
    assert ledger.evidence_terms == []


def test_load_json_file_round_trip(tmp_path):
    payload = {"a": [1, 2], "b": {"c": None}}
    target = tmp_path / "data.json"
    _write_json(target, payload)
    assert load_json_file(target) == payload


def test_load_json_file_missing_raises(tmp_path):
    with pytest.raises(Phase2cError, match="failed to read"):
        load_json_file(tmp_path / "absent.json")


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, False),
        ("", False),
        ("   ", False),
        ("x", True),
        ([], False),
        ([0], True),
        ({}, False),
        ({"k": 1}, True),
        (0, True),
        (False, True),
    ],
)
def test_is_present(value, expected):
    assert is_present(value) is expected