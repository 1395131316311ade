# frconform

`frconform` holds the contracts and gates that keep a key-value server
honest about its behaviour. It needs nothing beyond the Python standard
library (3.10 or newer).

- **Event loop contracts** (`frconform.eventloop`): tick budgets, normal and
  blocked modes, phase ordering and phase-trace replay, bootstrap checks and
  the readiness-callback barrier order.
- **Event loop I/O contracts** (`frconform.eventloop_io`): descriptor bounds
  and set-size growth, accept, read and pending-write checks, TLS accept rate
  limiting and active-expire cycle planning.
- **Key expiry** (`frconform.expire`): whether a key has expired and its
  remaining time.
- **Structured test logs** (`frconform.log_contract`): a versioned JSON-lines
  event schema with validation, replay command templates, golden logs for
  every packet family and append-only log files.
- **Packet readiness gate** (`frconform.phase2c_packets`): checks packet
  artifact directories for required files and fields and builds a decision
  ledger for each packet.
- **Optimization gate** (`frconform.phase2c_optimization`): checks an
  optimization root, its benchmark summaries and its `round_*` directories.
- **User journey corpus gate** (`frconform.journey_gate`): checks a workflow
  corpus manifest against the packet families and their golden logs.

## What it does not do

The event loop and I/O modules do not run a loop, open sockets or serve
clients: they plan and check what a loop should do and raise an exception,
with a stable `reason_code()`, when a contract is broken. The replay commands
in structured log events are built as strings and are never run. The gates
read artifact directories; they do not create them.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Using the library

Key expiry follows the TTL convention: -1 for a key without a deadline, -2
for an expired key.

```python
from frconform.expire import evaluate_expiry

decision = evaluate_expiry(100, 99)
assert decision.should_evict
assert decision.remaining_ms == -2

assert evaluate_expiry(10, None).remaining_ms == -1
assert evaluate_expiry(10, 25).remaining_ms == 15
```

Event loop planning and checks:

```python
from frconform.eventloop import (
    EVENT_LOOP_PHASE_ORDER,
    EventLoopMode,
    TickBudget,
    plan_tick,
    replay_phase_trace,
)
from frconform.eventloop_io import ReadPathError, plan_fd_setsize_growth, validate_read_path

plan = plan_tick(100, 10_000, TickBudget(), EventLoopMode.BLOCKED)
assert plan.stats.accepted == TickBudget.BLOCKED_MODE_MAX_ACCEPTS
assert plan.poll_timeout_ms == 0

assert replay_phase_trace(EVENT_LOOP_PHASE_ORDER * 2) == 2
assert plan_fd_setsize_growth(64, 120, 1024) == 128

try:
    validate_read_path(6, 5, 10, False)
except ReadPathError as err:
    print(err.reason_code())              # eventloop.read.querybuf_limit_exceeded
```

Structured log events validate themselves before they are written:

```python
from pathlib import Path
from frconform.log_contract import (
    LogContractError,
    StructuredLogEvent,
    append_structured_log_jsonl,
    golden_packet_logs,
    live_log_output_path,
)

unit_event, e2e_event = golden_packet_logs("FR-P2C-001")
unit_event.validate()
line = unit_event.to_json_line()
assert StructuredLogEvent.from_json_line(line) == unit_event

path = live_log_output_path(Path("artifacts/live"), "suite::core/errors", "core_errors.json")
# artifacts/live/suite__core_errors/core_errors.jsonl
append_structured_log_jsonl(path, [unit_event, e2e_event])

try:
    golden_packet_logs("FR-P2C-404")
except LogContractError as err:
    print(err)                            # unknown packet family 'FR-P2C-404'
```

Packet directories are checked one at a time or as a tree; a directory that
cannot be read raises `Phase2cError`:

```python
from frconform.phase2c_packets import validate_phase2c_packet, validate_phase2c_tree

report = validate_phase2c_packet("artifacts/phase2c/FR-P2C-001")
print(report.readiness, report.missing_files, report.missing_fields, report.errors)
print(report.decision_ledger.recommended_action)

for report in validate_phase2c_tree("artifacts/phase2c"):
    print(report.packet_id, report.is_ready_for_impl())
```

```python
from frconform.phase2c_optimization import validate_phase2c_optimization_gate

gate = validate_phase2c_optimization_gate("artifacts/optimization/phase2c-gate")
print(gate.status, gate.missing_files, gate.errors)
for round_report in gate.rounds:
    print(round_report.round_id, round_report.is_ready())
```

## Command-line gates

### `frconform-schema-gate`

Validates packet directories and prints one block per packet.

```
frconform-schema-gate [--decision-ledger] [PACKET_DIR...]
frconform-schema-gate --optimization-gate [OPTIMIZATION_ROOT]
```

- With no packet directories, `FR-P2C-*` directories are discovered under
  `artifacts/phase2c` in the current directory.
- `--decision-ledger` (or `--galaxy-brain`) also prints the posterior
  probability of a contract violation, the expected loss of proceeding and of
  blocking, the recommended action and the evidence terms.
- `--optimization-gate` (or `--perf-gate`) validates an optimization root
  instead (default `artifacts/optimization/phase2c-gate`): root files,
  benchmark summaries, the bench packet corpus and every `round_*` directory.
  At most one root path may be given.

Exit status is 0 when everything is ready, 1 when something is not ready (or
no packets were found), and 2 on an error such as a missing packet directory
or a root that is not a directory.

### `frconform-journey-gate`

Validates a user workflow corpus manifest: schema version, hooks,
differential hooks, reason codes, coverage of every packet family, and that
each journey's unit and end-to-end scenarios appear in its golden log.

```
frconform-journey-gate [--manifest PATH] [--json-out PATH]
```

The default manifest is
`crates/fr-conformance/fixtures/user_workflow_corpus_v1.json`; it and the
relative paths inside the manifest are resolved from the current directory.
The gate prints the corpus id, the number of journeys and the counts of
active and planned differential hooks; `--json-out` also writes the full
report as JSON. Other arguments are ignored. Violations are listed and give
exit status 1; an unreadable manifest, a missing option value or `--help`
gives exit status 2 with a message on standard error.