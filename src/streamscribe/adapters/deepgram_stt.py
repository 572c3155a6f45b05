import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any
from urllib.parse import urlencode

from websockets.asyncio.client import connect as websocket_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from streamscribe.domain.errors import ConnectionFailedError, NoCredentialError, SendFailure
from streamscribe.domain.models import AudioFrame, RecognitionResult
from streamscribe.ports.transcriber import SendFailureCallback

logger = logging.getLogger(__name__)

DEEPGRAM_LISTEN_URL = "wss://api.deepgram.com/v1/listen"
CLOSE_STREAM_MESSAGE = json.dumps({"type": "CloseStream"})
OPEN_TIMEOUT_SECONDS = 10.0

Connector = Callable[[str, dict[str, str]], Awaitable[Any]]


class ConnectionState(Enum):
    NOT_CONNECTED = auto()
    CONNECTING = auto()
    OPEN = auto()
    CLOSING = auto()
    CLOSED = auto()


@dataclass(frozen=True)
class StreamingOptions:
    model: str = "nova-2"
    language: str = "en"
    sample_rate: int = 16000
    channels: int = 1
    encoding: str = "linear16"
    punctuate: bool = True
    interim_results: bool = True
    endpointing_ms: int = 300
    smart_format: bool = True
    filler_words: bool = False
    diarize: bool = False

    def query_params(self) -> dict[str, str]:
        return {
            "model": self.model,
            "language": self.language,
            "sample_rate": str(self.sample_rate),
            "channels": str(self.channels),
            "encoding": self.encoding,
            "punctuate": _flag(self.punctuate),
            "interim_results": _flag(self.interim_results),
            "endpointing": str(self.endpointing_ms),
            "smart_format": _flag(self.smart_format),
            "filler_words": _flag(self.filler_words),
            "diarize": _flag(self.diarize),
        }


def _flag(value: bool) -> str:
    return "true" if value else "false"


def build_listen_url(options: StreamingOptions, base_url: str = DEEPGRAM_LISTEN_URL) -> str:
    return f"{base_url}?{urlencode(options.query_params())}"


def _optional_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def decode_result(message: str | bytes) -> RecognitionResult | None:
    """Decode one inbound message, or return None if it is not a result.

    Only messages shaped like ``{"channel": {"alternatives": [{"transcript":
    ...}]}, "is_final": ...}`` with a non-empty transcript produce a result.
    Metadata, speech-started and utterance-end messages are ignored.
    """
    if isinstance(message, (bytes, bytearray)):
        try:
            message = bytes(message).decode("utf-8")
        except UnicodeDecodeError:
            return None
    try:
        payload = json.loads(message)
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None

    channel = payload.get("channel")
    if not isinstance(channel, dict):
        return None
    alternatives = channel.get("alternatives")
    if not isinstance(alternatives, list) or not alternatives:
        return None
    first = alternatives[0]
    if not isinstance(first, dict):
        return None
    transcript = first.get("transcript")
    if not isinstance(transcript, str) or not transcript:
        return None

    confidence = _optional_number(first.get("confidence"))
    if confidence is not None and not 0.0 <= confidence <= 1.0:
        confidence = None

    return RecognitionResult(
        text=transcript,
        is_final=payload.get("is_final") is True,
        confidence=confidence,
        segment_duration_seconds=_optional_number(payload.get("duration")),
        start_seconds=_optional_number(payload.get("start")),
    )


async def open_websocket(url: str, headers: dict[str, str]) -> Any:
    return await websocket_connect(
        url,
        additional_headers=headers,
        open_timeout=OPEN_TIMEOUT_SECONDS,
    )


@dataclass(frozen=True)
class _StreamEnd:
    error: ConnectionFailedError | None = None


class DeepgramStreamingClient:
    """One Deepgram live-transcription connection.

    A client serves exactly one session: once stopped it cannot be started
    again. Results are exposed through ``results()`` in receipt order. If the
    connection drops before ``stop()``, the iterator raises
    ``ConnectionFailedError`` after yielding whatever arrived first.
    """

    def __init__(
        self,
        api_key: str,
        options: StreamingOptions | None = None,
        on_send_failure: SendFailureCallback | None = None,
        connect: Connector | None = None,
        base_url: str = DEEPGRAM_LISTEN_URL,
        close_timeout_s: float = 2.0,
        send_queue_size: int = 256,
    ) -> None:
        self._api_key = api_key
        self._options = options or StreamingOptions()
        self._on_send_failure = on_send_failure
        self._connect = connect or open_websocket
        self._base_url = base_url
        self._close_timeout_s = close_timeout_s
        self._state = ConnectionState.NOT_CONNECTED
        self._ws: Any = None
        self._outbound: asyncio.Queue[bytes | str] = asyncio.Queue(maxsize=send_queue_size)
        # Unbounded so the receiver never blocks or drops a result.
        self._results: asyncio.Queue[RecognitionResult | _StreamEnd] = asyncio.Queue()
        self._ended = False
        self._receiver_task: asyncio.Task | None = None
        self._sender_task: asyncio.Task | None = None
        self.frames_sent = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def options(self) -> StreamingOptions:
        return self._options

    async def start(self) -> None:
        if not self._api_key:
            raise NoCredentialError()
        if self._state is not ConnectionState.NOT_CONNECTED:
            raise ConnectionFailedError("client already used, create a new one per session")

        self._state = ConnectionState.CONNECTING
        url = build_listen_url(self._options, self._base_url)
        headers = {"Authorization": f"Token {self._api_key}"}
        try:
            self._ws = await self._connect(url, headers)
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            error = ConnectionFailedError(str(exc) or type(exc).__name__)
            self._state = ConnectionState.CLOSED
            self._finish(error)
            logger.error("Deepgram connection failed: %s", error.reason)
            raise error from exc

        self._state = ConnectionState.OPEN
        self._receiver_task = asyncio.create_task(self._receive_loop())
        self._sender_task = asyncio.create_task(self._send_loop())
        logger.info(
            "Deepgram stream open (model=%s, language=%s, rate=%d)",
            self._options.model, self._options.language, self._options.sample_rate,
        )

    def send(self, frame: AudioFrame) -> None:
        if self._state is not ConnectionState.OPEN:
            return
        try:
            self._outbound.put_nowait(frame.data)
        except asyncio.QueueFull:
            self._report_send_failure(SendFailure("Send queue full, audio frame dropped"))

    async def results(self) -> AsyncIterator[RecognitionResult]:
        while True:
            item = await self._results.get()
            if isinstance(item, _StreamEnd):
                # Put the marker back so any later reader also terminates.
                self._results.put_nowait(item)
                if item.error is not None:
                    raise item.error
                return
            yield item

    async def stop(self) -> None:
        if self._state is not ConnectionState.OPEN:
            return
        self._state = ConnectionState.CLOSING

        if self._receiver_task is not None and not self._receiver_task.done():
            try:
                await asyncio.wait_for(
                    self._outbound.put(CLOSE_STREAM_MESSAGE), timeout=self._close_timeout_s
                )
                await asyncio.wait_for(
                    asyncio.shield(self._receiver_task), timeout=self._close_timeout_s
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "No end-of-stream acknowledgment within %.1fs, closing anyway",
                    self._close_timeout_s,
                )

        await self._teardown()
        logger.info("Deepgram stream closed (%d frames sent)", self.frames_sent)

    async def _teardown(self) -> None:
        for task in (self._sender_task, self._receiver_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._sender_task = None
        self._receiver_task = None

        if self._ws is not None:
            try:
                await self._ws.close()
            except (OSError, WebSocketException):
                logger.debug("Error while closing Deepgram socket", exc_info=True)
        self._ws = None
        self._state = ConnectionState.CLOSED
        self._finish(None)

    async def _receive_loop(self) -> None:
        error: ConnectionFailedError | None = None
        try:
            async for message in self._ws:
                result = decode_result(message)
                if result is None:
                    logger.debug("Ignoring non-result message")
                    continue
                self._results.put_nowait(result)
        except (OSError, WebSocketException) as exc:
            if self._state is ConnectionState.OPEN:
                error = ConnectionFailedError(str(exc) or type(exc).__name__)
        else:
            if self._state is ConnectionState.OPEN:
                error = ConnectionFailedError("connection closed by server")

        if error is not None:
            logger.error("Deepgram stream dropped: %s", error.reason)
        self._finish(error)

    async def _send_loop(self) -> None:
        while True:
            data = await self._outbound.get()
            try:
                await self._ws.send(data)
            except ConnectionClosed:
                logger.debug("Socket closed, sender stopping")
                return
            except (OSError, WebSocketException) as exc:
                self._report_send_failure(SendFailure(str(exc) or type(exc).__name__))
                continue
            if isinstance(data, bytes):
                self.frames_sent += 1

    def _report_send_failure(self, failure: SendFailure) -> None:
        logger.warning("Audio send failed: %s", failure)
        if self._on_send_failure is not None:
            self._on_send_failure(failure)

    def _finish(self, error: ConnectionFailedError | None) -> None:
        if self._ended:
            return
        self._ended = True
        self._results.put_nowait(_StreamEnd(error))
