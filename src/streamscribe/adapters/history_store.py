import json
import logging
import os
import tempfile
import threading
import uuid
from pathlib import Path

from streamscribe.domain.models import SessionRecord

logger = logging.getLogger(__name__)


class JsonHistoryStore:
    """Session history kept as a JSON array, rewritten atomically on change."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()
        self._lock = threading.Lock()
        self._items: list[SessionRecord] = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def items(self) -> list[SessionRecord]:
        with self._lock:
            return list(self._items)

    def append(self, record: SessionRecord) -> None:
        with self._lock:
            self._items.append(record)
            self._save()

    def remove(self, record_id: uuid.UUID) -> None:
        with self._lock:
            self._items = [item for item in self._items if item.id != record_id]
            self._save()

    def clear(self) -> None:
        with self._lock:
            self._items = []
            self._save()

    def filtered(self, search_text: str = "", errors_only: bool = False) -> list[SessionRecord]:
        result = self.items()
        if errors_only:
            result = [item for item in result if item.errors]
        if search_text:
            needle = search_text.casefold()
            result = [item for item in result if needle in item.display_text.casefold()]
        return result

    @property
    def total_sessions(self) -> int:
        return len(self.items())

    @property
    def total_recording_time(self) -> float:
        return sum(item.duration_seconds for item in self.items())

    @property
    def average_session_length(self) -> float:
        items = self.items()
        if not items:
            return 0.0
        return sum(item.duration_seconds for item in items) / len(items)

    def _load(self) -> list[SessionRecord]:
        if not self._path.exists():
            return []
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            items = [SessionRecord.from_dict(entry) for entry in raw]
        except (OSError, ValueError, KeyError, TypeError):
            logger.exception("Failed to load history from %s", self._path)
            return []
        return sorted(items, key=lambda item: item.started_at)

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps([item.to_dict() for item in self._items], indent=2)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".history-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_name, self._path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
