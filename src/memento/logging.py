"""JSONL event log for memory observability."""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass
class LogEntry:
    """A single log entry."""

    timestamp: str
    event: str
    memory_id: str | None = None
    action: str | None = None
    duration_ms: float | None = None
    counts: dict[str, int] = field(default_factory=dict)
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, excluding None values."""
        data = asdict(self)
        return {k: v for k, v in data.items() if v is not None and v != {} and v != []}


class JSONLLogger:
    """Logger that writes memory events in JSONL format."""

    def __init__(
        self,
        log_dir: str | Path | None = None,
        filename: str = "memory.jsonl",
        max_size_mb: float = 10.0,
    ) -> None:
        if log_dir is None:
            log_dir = Path.home() / ".memento" / "logs"
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.filename = filename
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)

    @property
    def log_path(self) -> Path:
        """Current log file path."""
        return self.log_dir / self.filename

    def _rotate_if_needed(self) -> None:
        """Rotate log file if it exceeds max size."""
        if not self.log_path.exists():
            return

        if self.log_path.stat().st_size >= self.max_size_bytes:
            timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
            rotated_name = f"{self.log_path.stem}_{timestamp}.jsonl"
            self.log_path.rename(self.log_dir / rotated_name)

    def _write(self, entry: LogEntry) -> None:
        """Write a log entry to the file."""
        self._rotate_if_needed()

        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")

    def log(
        self,
        event: str,
        *,
        memory_id: str | None = None,
        action: str | None = None,
        duration_ms: float | None = None,
        counts: dict[str, int] | None = None,
        error: str | None = None,
        **extra: Any,
    ) -> None:
        """Log an event."""
        extra = {k: v for k, v in extra.items() if v is not None}
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            memory_id=memory_id,
            action=action,
            duration_ms=duration_ms,
            counts=counts or {},
            error=error,
            extra=extra if extra else {},
        )
        self._write(entry)

    def log_cycle(
        self,
        counts: dict[str, int],
        *,
        duration_ms: float | None = None,
        source_type: str | None = None,
    ) -> None:
        """Log a finished extraction and consolidation cycle."""
        self.log(
            "memory_cycle",
            counts=counts,
            duration_ms=duration_ms,
            source_type=source_type,
        )

    def log_consolidation(
        self,
        action: str,
        *,
        memory_id: str | None = None,
        existing_id: str | None = None,
        score: float | None = None,
        reason: str | None = None,
    ) -> None:
        """Log the decision taken for one candidate memory."""
        self.log(
            "consolidation",
            memory_id=memory_id,
            action=action,
            existing_id=existing_id,
            score=round(score, 4) if score is not None else None,
            reason=reason,
        )

    def log_maintenance(
        self,
        counts: dict[str, int],
        *,
        duration_ms: float | None = None,
        errors: list[str] | None = None,
    ) -> None:
        """Log a maintenance run."""
        self.log(
            "maintenance",
            counts=counts,
            duration_ms=duration_ms,
            error=", ".join(errors) if errors else None,
        )


def configure_logger(log_dir: str | Path | None = None, max_size_mb: float = 10.0) -> JSONLLogger:
    """Create the event log in log_dir (default ~/.memento/logs)."""
    return JSONLLogger(log_dir=log_dir, max_size_mb=max_size_mb)
