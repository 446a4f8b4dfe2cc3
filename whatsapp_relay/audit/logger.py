"""Relay audit trail.

One JSON object per relay outcome, appended to a JSON Lines file. Writers
serialize on an advisory lock next to the file so several uvicorn workers
can share it. Once the file reaches ``max_bytes`` it becomes ``<name>.1``,
older generations shift up by one and the one past ``backup_count`` is
dropped.

Writes are blocking; async callers run ``log`` in a worker thread.
"""

from __future__ import annotations

import fcntl
import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from whatsapp_relay.models import AuditEvent

_FILE_MODE = 0o600


class AuditLogger:
    """Appends ``AuditEvent`` records to a rotating JSON Lines file."""

    def __init__(
        self,
        log_path: str,
        max_bytes: int = 10_485_760,
        backup_count: int = 5,
    ) -> None:
        self.log_path = Path(log_path)
        self._max_bytes = max_bytes
        self._backup_count = backup_count
        self._lock_path = self.log_path.with_name(f".{self.log_path.name}.lock")

    @classmethod
    def from_env(cls, log_path: str) -> AuditLogger:
        """Rotation limits come from AUDIT_LOG_MAX_BYTES and AUDIT_LOG_BACKUP_COUNT."""
        return cls(
            log_path=log_path,
            max_bytes=int(os.environ.get("AUDIT_LOG_MAX_BYTES", "10485760")),
            backup_count=int(os.environ.get("AUDIT_LOG_BACKUP_COUNT", "5")),
        )

    def generations(self) -> list[Path]:
        """The live file followed by its backups, newest first."""
        name = self.log_path.name
        return [self.log_path] + [
            self.log_path.with_name(f"{name}.{n}")
            for n in range(1, self._backup_count + 1)
        ]

    def log(self, event: AuditEvent) -> None:
        """Append ``event``. Raises ``OSError`` when the trail is unwritable."""
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        record = event.model_dump_json(exclude_none=True) + "\n"
        with self._exclusive():
            if self._is_full():
                self._shift_generations()
            self._append(record.encode())

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        fd = os.open(self._lock_path, os.O_WRONLY | os.O_CREAT, _FILE_MODE)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            yield
        finally:
            # Closing the descriptor releases the flock
            os.close(fd)

    def _is_full(self) -> bool:
        try:
            return self.log_path.stat().st_size >= self._max_bytes
        except FileNotFoundError:
            return False

    def _shift_generations(self) -> None:
        chain = self.generations()
        chain[-1].unlink(missing_ok=True)
        for src, dst in reversed(list(zip(chain, chain[1:]))):
            if src.exists():
                src.replace(dst)

    def _append(self, data: bytes) -> None:
        fd = os.open(
            self.log_path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, _FILE_MODE,
        )
        try:
            os.write(fd, data)
        finally:
            os.close(fd)
