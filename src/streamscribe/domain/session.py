import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from streamscribe.domain.errors import AudioError, ConnectionFailedError, ConversionError, NoCredentialError
from streamscribe.domain.models import RecognitionResult, SessionError, SessionRecord, SessionSettings
from streamscribe.domain.resampler import LinearResampler, rms_level
from streamscribe.domain.state import SessionState, validate_transition
from streamscribe.domain.transcript import Transcript
from streamscribe.ports.audio import AudioSourcePort, ResamplerPort
from streamscribe.ports.collaborators import (
    DEEPGRAM_API_KEY_NAME,
    ClipboardPort,
    CredentialStorePort,
    HistoryPort,
)
from streamscribe.ports.transcriber import StreamingTranscriberPort, TranscriberFactory

logger = logging.getLogger(__name__)

StateCallback = Callable[[SessionState, SessionState], None]
TextCallback = Callable[[str], None]
LevelCallback = Callable[[float], None]

STATUS_READY = "Ready"
STATUS_RECORDING = "Recording..."
STATUS_PROCESSING = "Processing..."
STATUS_DELIVERING = "Copying to clipboard..."
STATUS_COPIED = "Copied to clipboard"
STATUS_PASTED = "Pasted into the frontmost app"
STATUS_CLIPBOARD_UNAVAILABLE = "Transcribed, but the clipboard is unavailable"
NO_SPEECH_MESSAGE = "No speech detected"
CAPTURE_ENDED_MESSAGE = "Audio input ended before recording was stopped"


@dataclass(frozen=True)
class _ResultArrived:
    result: RecognitionResult


@dataclass(frozen=True)
class _Failure:
    phase: str
    message: str


@dataclass(frozen=True)
class _Notice:
    phase: str
    message: str


@dataclass(frozen=True)
class _CaptureEnded:
    pass


@dataclass(frozen=True)
class _StopRequested:
    pass


_Event = _ResultArrived | _Failure | _Notice | _CaptureEnded | _StopRequested


class _StartFailed(Exception):
    def __init__(self, phase: str, message: str) -> None:
        super().__init__(message)
        self.phase = phase
        self.message = message


class ErrorLog:
    """Ordered session errors, each distinct (phase, message) kept once."""

    def __init__(self) -> None:
        self._entries: list[SessionError] = []
        self._seen: set[tuple[str, str]] = set()

    @property
    def entries(self) -> tuple[SessionError, ...]:
        return tuple(self._entries)

    def add(self, phase: str, message: str) -> bool:
        key = (phase, message)
        if key in self._seen:
            return False
        self._seen.add(key)
        self._entries.append(SessionError(phase=phase, message=message))
        return True


class SessionController:
    """Runs one dictation session at a time.

    ``start_recording``, ``stop_recording`` and ``toggle_recording`` must be
    called from the event loop thread and never block. Each session runs as a
    single task that owns the transcript: the audio pump and the result pump
    only post events to that task's queue.
    """

    def __init__(
        self,
        source: AudioSourcePort,
        transcriber_factory: TranscriberFactory,
        credentials: CredentialStorePort,
        clipboard: ClipboardPort,
        history: HistoryPort,
        settings: SessionSettings | None = None,
        resampler: ResamplerPort | None = None,
        on_state_change: StateCallback | None = None,
        on_status: TextCallback | None = None,
        on_preview: TextCallback | None = None,
        on_level: LevelCallback | None = None,
    ) -> None:
        self._source = source
        self._transcriber_factory = transcriber_factory
        self._credentials = credentials
        self._clipboard = clipboard
        self._history = history
        self._settings = settings or SessionSettings()
        self._resampler = resampler or LinearResampler(self._settings.target_format)
        self._on_state_change = on_state_change
        self._on_status = on_status
        self._on_preview = on_preview
        self._on_level = on_level

        self._state = SessionState.IDLE
        self._status = STATUS_READY
        self._idle = asyncio.Event()
        self._idle.set()
        self._transcript = Transcript()
        self._errors = ErrorLog()
        self._events: asyncio.Queue[_Event] | None = None
        self._stop_requested = False
        self._started_at = datetime.now(timezone.utc)
        self._started_clock = 0.0
        self._session_task: asyncio.Task | None = None
        self._display_task: asyncio.Task | None = None
        self._audio_task: asyncio.Task | None = None
        self._result_task: asyncio.Task | None = None
        self._last_record: SessionRecord | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def status(self) -> str:
        return self._status

    @property
    def committed(self) -> str:
        return self._transcript.committed

    @property
    def pending(self) -> str:
        return self._transcript.pending

    @property
    def live_preview(self) -> str:
        return self._transcript.live_preview

    @property
    def errors(self) -> tuple[SessionError, ...]:
        return self._errors.entries

    @property
    def last_record(self) -> SessionRecord | None:
        return self._last_record

    @property
    def settings(self) -> SessionSettings:
        return self._settings

    def start_recording(self) -> None:
        if self._state is not SessionState.IDLE:
            logger.debug("Start ignored in state %s", self._state.name)
            return

        api_key, problem = self._fetch_credential()
        if not api_key:
            logger.warning("Cannot start recording: %s", problem)
            self._transition_to(SessionState.FAILED, problem)
            self._display_task = asyncio.create_task(
                self._return_to_idle_after(self._settings.failed_display_s)
            )
            return

        loop = asyncio.get_running_loop()
        self._transcript.reset()
        self._errors = ErrorLog()
        # Unbounded: recognition results are never dropped. Audio is bounded upstream
        # by the capture queue and the client send queue.
        self._events = asyncio.Queue()
        self._stop_requested = False
        self._started_at = datetime.now(timezone.utc)
        self._started_clock = loop.time()
        self._last_record = None
        self._transition_to(SessionState.RECORDING, STATUS_RECORDING)
        self._publish_preview()
        self._session_task = asyncio.create_task(self._run_session(api_key, self._events))

    def stop_recording(self) -> None:
        if self._state is not SessionState.RECORDING or self._stop_requested:
            logger.debug("Stop ignored in state %s", self._state.name)
            return
        self._stop_requested = True
        self._events.put_nowait(_StopRequested())

    def toggle_recording(self) -> None:
        if self._state is SessionState.IDLE:
            self.start_recording()
        elif self._state is SessionState.RECORDING:
            self.stop_recording()

    async def wait_until_idle(self, timeout: float | None = None) -> None:
        await asyncio.wait_for(self._idle.wait(), timeout=timeout)

    async def shutdown(self) -> None:
        for task in (self._display_task, self._session_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._display_task = None
        self._session_task = None
        if self._state is not SessionState.IDLE:
            previous = self._state
            logger.info("State: %s -> IDLE (shutdown)", previous.name)
            self._state = SessionState.IDLE
            self._status = STATUS_READY
            self._idle.set()
            self._notify(previous, SessionState.IDLE, STATUS_READY)

    def _fetch_credential(self) -> tuple[str | None, str]:
        try:
            api_key = self._credentials.get(DEEPGRAM_API_KEY_NAME)
        except Exception:
            logger.exception("Credential store lookup failed")
            return None, "Failed to read API key"
        if not api_key:
            return None, str(NoCredentialError())
        return api_key, ""

    async def _run_session(self, api_key: str, events: asyncio.Queue[_Event]) -> None:
        client = self._transcriber_factory(
            api_key,
            on_send_failure=lambda failure: events.put_nowait(_Notice("send", str(failure))),
        )
        try:
            frames = await self._start_components(client)
            self._resampler.reset()
            self._audio_task = asyncio.create_task(self._pump_audio(frames, client, events))
            self._result_task = asyncio.create_task(self._pump_results(client, events))

            failure = await self._consume_until_stop(events)
            if failure is not None:
                await self._fail(failure.phase, failure.message, client)
            else:
                await self._complete(client, events)
        except _StartFailed as exc:
            await self._fail(exc.phase, exc.message, client)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Unexpected error during session")
            await self._fail("session", "Unexpected error, see log for details", client)
        finally:
            await self._release(client)

    async def _start_components(self, client: StreamingTranscriberPort) -> AsyncIterator:
        client_outcome, capture_outcome = await asyncio.gather(
            client.start(),
            self._source.start_capture(),
            return_exceptions=True,
        )
        failures: list[tuple[str, str]] = []
        if isinstance(capture_outcome, BaseException):
            failures.append(("audio", str(capture_outcome)))
        if isinstance(client_outcome, BaseException):
            failures.append(("connection", str(client_outcome)))
        if not failures:
            return capture_outcome

        for phase, message in failures[1:]:
            self._errors.add(phase, message)
        raise _StartFailed(*failures[0])

    async def _consume_until_stop(self, events: asyncio.Queue[_Event]) -> _Failure | None:
        while True:
            event = await events.get()
            if isinstance(event, _StopRequested):
                return None
            if isinstance(event, _Failure):
                return event
            if isinstance(event, _CaptureEnded):
                logger.warning(CAPTURE_ENDED_MESSAGE)
                self._errors.add("audio", CAPTURE_ENDED_MESSAGE)
            else:
                self._handle_event(event)

    def _handle_event(self, event: _Event) -> None:
        if isinstance(event, _ResultArrived):
            result = event.result
            if result.is_final:
                logger.info("Transcript: %s", result.text)
            else:
                logger.debug("Transcript (interim): %s", result.text)
            self._transcript.apply(result)
            self._publish_preview()
        elif isinstance(event, _Notice):
            self._errors.add(event.phase, event.message)

    async def _complete(self, client: StreamingTranscriberPort, events: asyncio.Queue[_Event]) -> None:
        self._transition_to(SessionState.PROCESSING, STATUS_PROCESSING)
        await self._stop_components(client)
        await self._settle_pumps()
        while not events.empty():
            # Results the service sent while closing still count.
            self._handle_event(events.get_nowait())

        text = self._transcript.final_text()
        if not text:
            await self._fail("no_audio", NO_SPEECH_MESSAGE, client)
            return

        self._transition_to(SessionState.DELIVERING, STATUS_DELIVERING)
        status = await self._deliver(text)
        record = self._build_record(text)
        self._persist(record)
        logger.info("Session complete: %d chars in %.1fs", len(text), record.duration_seconds)
        self._transition_to(SessionState.COMPLETED, status)
        await self._return_to_idle_after(self._settings.completed_display_s)

    async def _fail(self, phase: str, message: str, client: StreamingTranscriberPort) -> None:
        self._errors.add(phase, message)
        logger.error("Session failed (%s): %s", phase, message)
        self._transition_to(SessionState.FAILED, message)
        await self._stop_components(client)
        await self._settle_pumps()
        record = self._build_record(self._transcript.final_text() or None)
        self._persist(record)
        await self._return_to_idle_after(self._settings.failed_display_s)

    async def _deliver(self, text: str) -> str:
        try:
            self._clipboard.set_clipboard_text(text)
        except Exception as exc:
            logger.exception("Clipboard delivery failed")
            self._errors.add("delivery", f"Clipboard unavailable: {exc}")
            return STATUS_CLIPBOARD_UNAVAILABLE

        if not self._settings.auto_paste:
            return STATUS_COPIED

        await asyncio.sleep(self._settings.paste_delay_s)
        try:
            self._clipboard.paste_into_frontmost_target()
        except Exception as exc:
            logger.exception("Paste failed")
            self._errors.add("delivery", f"Paste failed: {exc}")
            return STATUS_COPIED
        return STATUS_PASTED

    def _build_record(self, text: str | None) -> SessionRecord:
        duration = asyncio.get_running_loop().time() - self._started_clock
        return SessionRecord(
            started_at=self._started_at,
            text=text,
            duration_seconds=max(duration, 0.0),
            models_used=(self._settings.model_identifier,),
            errors=self._errors.entries,
        )

    def _persist(self, record: SessionRecord) -> None:
        self._last_record = record
        try:
            self._history.append(record)
        except Exception:
            logger.exception("Failed to save session %s to history", record.id)

    async def _pump_audio(
        self,
        frames: AsyncIterator,
        client: StreamingTranscriberPort,
        events: asyncio.Queue[_Event],
    ) -> None:
        try:
            async for frame in frames:
                try:
                    converted = self._resampler.process(frame)
                except ConversionError as exc:
                    logger.warning("Dropping audio frame: %s", exc)
                    events.put_nowait(_Notice("conversion", str(exc)))
                    continue
                if converted is None:
                    continue
                if self._on_level is not None:
                    self._on_level(rms_level(converted))
                client.send(converted)
        except AudioError as exc:
            events.put_nowait(_Failure("audio", str(exc)))
            return
        events.put_nowait(_CaptureEnded())

    async def _pump_results(self, client: StreamingTranscriberPort, events: asyncio.Queue[_Event]) -> None:
        try:
            async for result in client.results():
                events.put_nowait(_ResultArrived(result))
        except ConnectionFailedError as exc:
            events.put_nowait(_Failure("transcription", str(exc)))

    async def _stop_components(self, client: StreamingTranscriberPort) -> None:
        outcomes = await asyncio.gather(
            self._source.stop_capture(),
            client.stop(),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, Exception):
                logger.warning("Error while stopping: %s", outcome)

    async def _settle_pumps(self) -> None:
        audio_task, result_task = self._audio_task, self._result_task
        self._audio_task = None
        self._result_task = None
        if audio_task is not None and not audio_task.done():
            audio_task.cancel()
        if result_task is not None and not result_task.done():
            try:
                await asyncio.wait_for(asyncio.shield(result_task), timeout=self._settings.drain_timeout_s)
            except asyncio.TimeoutError:
                logger.warning("Result stream still open after stop, cancelling")
                result_task.cancel()
        pumps = [task for task in (audio_task, result_task) if task is not None]
        if pumps:
            await asyncio.gather(*pumps, return_exceptions=True)

    async def _release(self, client: StreamingTranscriberPort) -> None:
        await self._stop_components(client)
        await self._settle_pumps()

    async def _return_to_idle_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._state.is_terminal:
            self._transition_to(SessionState.IDLE, STATUS_READY)

    def _publish_preview(self) -> None:
        if self._on_preview is not None:
            self._on_preview(self._transcript.live_preview)

    def _transition_to(self, target: SessionState, status: str) -> None:
        validate_transition(self._state, target)
        logger.info("State: %s -> %s", self._state.name, target.name)
        previous = self._state
        self._state = target
        self._status = status
        if target is SessionState.IDLE:
            self._idle.set()
        else:
            self._idle.clear()
        self._notify(previous, target, status)

    def _notify(self, previous: SessionState, target: SessionState, status: str) -> None:
        if self._on_state_change is not None:
            self._on_state_change(previous, target)
        if self._on_status is not None:
            self._on_status(status)
