"""Tests for JSONL event logging."""

import json
import tempfile
from pathlib import Path

import pytest

from memento.logging import JSONLLogger, LogEntry, configure_logger


@pytest.fixture
def temp_log_dir():
    """Create a temporary directory for logs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def logger(temp_log_dir: Path) -> JSONLLogger:
    return JSONLLogger(log_dir=temp_log_dir)


def read_entries(logger: JSONLLogger) -> list[dict]:
    with open(logger.log_path) as f:
        return [json.loads(line) for line in f]


def test_log_entry_to_dict():
    """Test LogEntry excludes None values."""
    entry = LogEntry(timestamp="2024-01-01T00:00:00Z", event="test")
    data = entry.to_dict()

    assert "timestamp" in data
    assert "event" in data
    assert "memory_id" not in data  # None excluded
    assert "extra" not in data  # Empty dict excluded
    assert "counts" not in data


def test_log_creates_file(logger: JSONLLogger):
    """Test that logging creates the log file."""
    logger.log("test_event")

    assert logger.log_path.exists()
    assert logger.log_path.name == "memory.jsonl"


def test_log_writes_jsonl(logger: JSONLLogger):
    """Test that logs are written in JSONL format."""
    logger.log("event1", memory_id="123")
    logger.log("event2", memory_id="456")

    entries = read_entries(logger)

    assert len(entries) == 2
    assert entries[0]["event"] == "event1"
    assert entries[0]["memory_id"] == "123"
    assert entries[1]["event"] == "event2"


def test_log_cycle(logger: JSONLLogger):
    """Test logging an extraction cycle."""
    logger.log_cycle({"turns": 4, "stored": 1}, duration_ms=12.5, source_type="spotlight")

    [entry] = read_entries(logger)

    assert entry["event"] == "memory_cycle"
    assert entry["counts"] == {"turns": 4, "stored": 1}
    assert entry["duration_ms"] == 12.5
    assert entry["extra"]["source_type"] == "spotlight"


def test_log_consolidation(logger: JSONLLogger):
    """Test logging a consolidation decision."""
    logger.log_consolidation(
        "supersede",
        memory_id="new",
        existing_id="old",
        score=0.812345,
        reason="Contradicts existing memory",
    )

    [entry] = read_entries(logger)

    assert entry["event"] == "consolidation"
    assert entry["action"] == "supersede"
    assert entry["memory_id"] == "new"
    assert entry["extra"] == {
        "existing_id": "old",
        "score": 0.8123,
        "reason": "Contradicts existing memory",
    }


def test_log_consolidation_without_score(logger: JSONLLogger):
    logger.log_consolidation("store", memory_id="abc")

    [entry] = read_entries(logger)

    assert "extra" not in entry


def test_log_maintenance(logger: JSONLLogger):
    """Test that failed steps are recorded as the error."""
    logger.log_maintenance({"pruned": 2}, duration_ms=3.0, errors=["decay", "prune"])

    [entry] = read_entries(logger)

    assert entry["event"] == "maintenance"
    assert entry["counts"] == {"pruned": 2}
    assert entry["error"] == "decay, prune"


def test_rotation(temp_log_dir: Path):
    """Test log rotation when max size is exceeded."""
    logger = JSONLLogger(log_dir=temp_log_dir, max_size_mb=0.001)  # ~1KB

    # Write enough to trigger rotation
    for i in range(100):
        logger.log(f"event_{i}", data="x" * 100)

    # Should have rotated files
    log_files = list(temp_log_dir.glob("memory*.jsonl"))
    assert len(log_files) >= 2


def test_extra_fields(logger: JSONLLogger):
    """Test that extra fields are included."""
    logger.log("custom", custom_field="value", another=123, skipped=None)

    [entry] = read_entries(logger)

    assert entry["extra"] == {"custom_field": "value", "another": 123}


def test_configure_logger(temp_log_dir: Path):
    """configure_logger creates the log directory."""
    configured = configure_logger(temp_log_dir / "events", max_size_mb=1)

    assert configured.max_size_bytes == 1024 * 1024
    assert configured.log_dir == temp_log_dir / "events"
    assert configured.log_dir.is_dir()
