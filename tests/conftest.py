import asyncio
import json
from collections.abc import AsyncIterator

import numpy as np
import pytest

from streamscribe.domain.errors import AudioError, ConnectionFailedError, NoCredentialError
from streamscribe.domain.models import AudioFormat, AudioFrame, RecognitionResult, SessionSettings
from streamscribe.ports.collaborators import DEEPGRAM_API_KEY_NAME


SAMPLE_RATE = 16000
FRAME_DURATION_MS = 100


def generate_silence(duration_ms: int = FRAME_DURATION_MS, sample_rate: int = SAMPLE_RATE) -> bytes:
    num_samples = int(sample_rate * duration_ms / 1000)
    return np.zeros(num_samples, dtype=np.int16).tobytes()


def generate_sine_wave(
    frequency: float = 440.0,
    duration_ms: int = FRAME_DURATION_MS,
    amplitude: float = 0.8,
    sample_rate: int = SAMPLE_RATE,
    channels: int = 1,
) -> bytes:
    num_samples = int(sample_rate * duration_ms / 1000)
    t = np.arange(num_samples) / sample_rate
    signal = (np.sin(2 * np.pi * frequency * t) * amplitude * 32767).astype(np.int16)
    if channels > 1:
        signal = np.repeat(signal[:, np.newaxis], channels, axis=1)
    return signal.tobytes()


def make_frame(pcm: bytes, sample_rate: int = SAMPLE_RATE, channels: int = 1) -> AudioFrame:
    return AudioFrame.from_pcm(pcm, AudioFormat(sample_rate=sample_rate, channels=channels))


def result_message(
    text: str,
    is_final: bool = False,
    confidence: float = 0.98,
    start: float = 0.0,
    duration: float = 1.0,
) -> str:
    return json.dumps({
        "type": "Results",
        "channel_index": [0, 1],
        "duration": duration,
        "start": start,
        "is_final": is_final,
        "speech_final": is_final,
        "channel": {"alternatives": [{"transcript": text, "confidence": confidence, "words": []}]},
    })


async def wait_for_condition(predicate, timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout)


class FakeAudioSource:
    """Yields the given frames, then stays open until ``stop_capture``."""

    def __init__(
        self,
        frames: list[AudioFrame] | None = None,
        start_error: Exception | None = None,
        end_after_frames: bool = False,
    ) -> None:
        self._frames = list(frames or [])
        self._start_error = start_error
        self._end_after_frames = end_after_frames
        self._stopped = asyncio.Event()
        self._capturing = False
        self.start_calls = 0
        self.stop_calls = 0
        self.failure: AudioError | None = None

    @property
    def is_capturing(self) -> bool:
        return self._capturing

    async def start_capture(self) -> AsyncIterator[AudioFrame]:
        self.start_calls += 1
        if self._start_error is not None:
            raise self._start_error
        self._capturing = True
        self._stopped = asyncio.Event()
        return self._read_frames()

    async def stop_capture(self) -> None:
        self.stop_calls += 1
        self._capturing = False
        self._stopped.set()

    def fail(self, error: AudioError) -> None:
        self.failure = error
        self._stopped.set()

    async def _read_frames(self) -> AsyncIterator[AudioFrame]:
        for frame in self._frames:
            yield frame
            await asyncio.sleep(0)
        if self._end_after_frames:
            return
        await self._stopped.wait()
        if self.failure is not None:
            raise self.failure


class FakeStreamingClient:
    """In-memory stand-in for the Deepgram connection."""

    def __init__(
        self,
        api_key: str = "test-key",
        on_send_failure=None,
        start_error: Exception | None = None,
        results_on_stop: list[RecognitionResult] | None = None,
    ) -> None:
        self.api_key = api_key
        self.on_send_failure = on_send_failure
        self._start_error = start_error
        self._results_on_stop = list(results_on_stop or [])
        self._queue: asyncio.Queue = asyncio.Queue()
        self.sent: list[AudioFrame] = []
        self.started = False
        self.stopped = False
        self.stop_calls = 0

    async def start(self) -> None:
        if not self.api_key:
            raise NoCredentialError()
        if self._start_error is not None:
            raise self._start_error
        self.started = True

    def send(self, frame: AudioFrame) -> None:
        if self.started and not self.stopped:
            self.sent.append(frame)

    def push(self, result: RecognitionResult) -> None:
        self._queue.put_nowait(result)

    def drop(self, reason: str = "connection reset") -> None:
        self._queue.put_nowait(ConnectionFailedError(reason))

    async def results(self) -> AsyncIterator[RecognitionResult]:
        while True:
            item = await self._queue.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def stop(self) -> None:
        self.stop_calls += 1
        if self.stopped:
            return
        self.stopped = True
        for result in self._results_on_stop:
            self._queue.put_nowait(result)
        self._queue.put_nowait(None)


class FakeClientFactory:
    def __init__(self, **client_kwargs) -> None:
        self._client_kwargs = client_kwargs
        self.clients: list[FakeStreamingClient] = []

    def __call__(self, api_key: str, on_send_failure=None) -> FakeStreamingClient:
        client = FakeStreamingClient(api_key, on_send_failure=on_send_failure, **self._client_kwargs)
        self.clients.append(client)
        return client

    @property
    def last(self) -> FakeStreamingClient:
        return self.clients[-1]


class FakeCredentialStore:
    def __init__(self, secrets: dict[str, str] | None = None, error: Exception | None = None) -> None:
        self._secrets = dict(secrets or {})
        self._error = error

    def get(self, name: str) -> str | None:
        if self._error is not None:
            raise self._error
        return self._secrets.get(name)

    def put(self, name: str, secret: str) -> None:
        self._secrets[name] = secret

    def delete(self, name: str) -> None:
        self._secrets.pop(name, None)


class FakeClipboard:
    def __init__(self, copy_error: Exception | None = None, paste_error: Exception | None = None) -> None:
        self.copied: list[str] = []
        self.pastes = 0
        self._copy_error = copy_error
        self._paste_error = paste_error

    def set_clipboard_text(self, text: str) -> None:
        if self._copy_error is not None:
            raise self._copy_error
        self.copied.append(text)

    def paste_into_frontmost_target(self) -> None:
        if self._paste_error is not None:
            raise self._paste_error
        self.pastes += 1


class FakeHistory:
    def __init__(self, error: Exception | None = None) -> None:
        self.records = []
        self._error = error

    def append(self, record) -> None:
        if self._error is not None:
            raise self._error
        self.records.append(record)


class FakeWebSocket:
    """Minimal async websocket: iterate inbound messages, record sends."""

    def __init__(self, close_on_close_stream: bool = True) -> None:
        self._inbound: asyncio.Queue = asyncio.Queue()
        self._close_on_close_stream = close_on_close_stream
        self.sent: list[bytes | str] = []
        self.closed = False
        self.close_calls = 0
        self.send_error: Exception | None = None

    def feed(self, message: str | bytes) -> None:
        self._inbound.put_nowait(message)

    def end(self, error: Exception | None = None) -> None:
        self._inbound.put_nowait(error or StopAsyncIteration())

    async def send(self, data: bytes | str) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(data)
        if self._close_on_close_stream and isinstance(data, str) and "CloseStream" in data:
            self.end()

    async def close(self) -> None:
        self.closed = True
        self.close_calls += 1

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbound.get()
        if isinstance(item, StopAsyncIteration):
            raise item
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def settings():
    return SessionSettings(
        completed_display_s=0.05,
        failed_display_s=0.05,
        paste_delay_s=0.0,
        drain_timeout_s=0.5,
    )


@pytest.fixture
def credentials():
    return FakeCredentialStore({DEEPGRAM_API_KEY_NAME: "test-key"})


@pytest.fixture
def fake_clipboard():
    return FakeClipboard()


@pytest.fixture
def fake_history():
    return FakeHistory()


@pytest.fixture
def client_factory():
    return FakeClientFactory()


@pytest.fixture
def speech_frames():
    return [make_frame(generate_sine_wave(duration_ms=20)) for _ in range(3)]
