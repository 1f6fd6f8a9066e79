"""Per-pair outcome journal for the relay.

Each line is one RelayEvent as JSON, keyed by the pair it concerns. The file
is size-bounded: when the next line would push it past ``max_bytes`` it is
renamed to ``<name>.1`` (dropping any previous backup) and a fresh file is
started. Lookups read the backup first, so results stay oldest first.
"""

import logging
from collections.abc import Iterator
from pathlib import Path

from callrelay.schemas.relay import RelayEvent, RelayStatus

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 5 * 1024 * 1024


class RelayAuditLog:
    """Size-bounded JSONL journal of relay outcomes.

    Usage::

        audit = RelayAuditLog("/var/log/callrelay/audit.jsonl")
        audit.log(event)
        last = audit.last_outcome(pair.key)
    """

    def __init__(self, path: str | Path, *, max_bytes: int = DEFAULT_MAX_BYTES) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._max_bytes = max_bytes

    @property
    def path(self) -> Path:
        return self._path

    @property
    def backup_path(self) -> Path:
        return self._path.with_name(self._path.name + ".1")

    def log(self, event: RelayEvent) -> None:
        line = event.model_dump_json() + "\n"
        self._rotate_before(len(line.encode()))
        with self._path.open("a") as f:
            f.write(line)
        logger.debug("Relay audit: %s status=%s", event.pair_key, event.status)

    def _rotate_before(self, incoming: int) -> None:
        try:
            size = self._path.stat().st_size
        except FileNotFoundError:
            return
        if size == 0 or size + incoming <= self._max_bytes:
            return
        self._path.replace(self.backup_path)
        logger.info("Rotated relay audit log to %s", self.backup_path)

    def _events(self) -> Iterator[RelayEvent]:
        for path in (self.backup_path, self._path):
            if not path.exists():
                continue
            with path.open() as f:
                for line in f:
                    if line.strip():
                        yield RelayEvent.model_validate_json(line)

    def history(self, pair_key: str) -> list[RelayEvent]:
        """Every recorded outcome for one pair, oldest first."""
        return [e for e in self._events() if e.pair_key == pair_key]

    def last_outcome(self, pair_key: str) -> RelayEvent | None:
        """The most recent outcome for one pair, or None if it was never seen."""
        last = None
        for event in self._events():
            if event.pair_key == pair_key:
                last = event
        return last

    def failed_pairs(self) -> list[RelayEvent]:
        """The latest event of every pair whose most recent attempt failed.

        Duplicate and skipped records do not mask an earlier failure; only a
        later upload does.
        """
        latest: dict[str, RelayEvent] = {}
        for event in self._events():
            if event.status in (RelayStatus.UPLOADED, RelayStatus.ERROR):
                latest[event.pair_key] = event
        return [e for e in latest.values() if e.status == RelayStatus.ERROR]
