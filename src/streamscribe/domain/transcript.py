import logging

from streamscribe.domain.models import RecognitionResult

logger = logging.getLogger(__name__)


def compose_text(committed: str, pending: str) -> str:
    if not pending:
        return committed.strip()
    return f"{committed} {pending}".strip()


class Transcript:
    """Committed text plus the latest uncommitted hypothesis.

    ``committed`` only ever grows. A final result appends its text and clears
    ``pending``; an interim result replaces ``pending`` wholesale. A final that
    repeats the last committed final (same text, same start offset) is treated
    as a replay and ignored.
    """

    def __init__(self) -> None:
        self._committed = ""
        self._pending = ""
        self._last_final: RecognitionResult | None = None

    @property
    def committed(self) -> str:
        return self._committed

    @property
    def pending(self) -> str:
        return self._pending

    @property
    def live_preview(self) -> str:
        return compose_text(self._committed, self._pending)

    def final_text(self) -> str:
        return compose_text(self._committed, self._pending)

    def reset(self) -> None:
        self._committed = ""
        self._pending = ""
        self._last_final = None

    def apply(self, result: RecognitionResult) -> bool:
        if not result.is_final:
            if result.text == self._pending:
                return False
            self._pending = result.text
            return True

        if self._is_replay(result):
            logger.debug("Ignoring replayed final: %s", result.text)
            return False

        if result.text:
            if self._committed:
                self._committed += " "
            self._committed += result.text
            self._last_final = result
        self._pending = ""
        return True

    def _is_replay(self, result: RecognitionResult) -> bool:
        last = self._last_final
        if last is None or not result.text:
            return False
        return last.text == result.text and last.start_seconds == result.start_seconds
