import asyncio
import logging
from collections.abc import AsyncIterator

import janus
import numpy as np
import sounddevice as sd

from streamscribe.domain.errors import AudioError
from streamscribe.domain.models import AudioFormat, AudioFrame

logger = logging.getLogger(__name__)


class SounddeviceSource:
    """Microphone capture at the device's native rate, as int16 frames."""

    def __init__(
        self,
        device: str | int | None = None,
        channels: int = 1,
        frame_duration_ms: int = 100,
        queue_size: int = 100,
    ) -> None:
        self._device = device
        self._channels = channels
        self._frame_duration_ms = frame_duration_ms
        self._queue_size = queue_size
        self._stream: sd.InputStream | None = None
        self._queue: janus.Queue[AudioFrame] | None = None
        self._format: AudioFormat | None = None
        self.dropped_frames = 0

    @property
    def is_capturing(self) -> bool:
        return self._stream is not None

    @property
    def native_format(self) -> AudioFormat | None:
        return self._format

    async def start_capture(self) -> AsyncIterator[AudioFrame]:
        if self._stream is not None:
            raise AudioError("already capturing")

        device, info = self._resolve_input_device()
        sample_rate = int(info["default_samplerate"])
        channels = max(1, min(self._channels, int(info["max_input_channels"])))
        audio_format = AudioFormat(sample_rate=sample_rate, channels=channels, sample_width=2)
        blocksize = int(sample_rate * self._frame_duration_ms / 1000)

        queue: janus.Queue[AudioFrame] = janus.Queue(maxsize=self._queue_size)
        loop = asyncio.get_running_loop()

        def audio_callback(indata: np.ndarray, frames: int, time_info, status) -> None:
            if status:
                logger.warning("Audio capture status: %s", status)
            frame = AudioFrame(
                data=np.ascontiguousarray(indata, dtype=np.int16).tobytes(),
                frame_count=frames,
                format=audio_format,
            )
            try:
                queue.sync_q.put_nowait(frame)
            except janus.SyncQueueFull:
                self.dropped_frames += 1

        def finished_callback() -> None:
            loop.call_soon_threadsafe(self._end_stream, queue)

        try:
            stream = sd.InputStream(
                device=device,
                samplerate=sample_rate,
                channels=channels,
                dtype="int16",
                blocksize=blocksize,
                callback=audio_callback,
                finished_callback=finished_callback,
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            queue.close()
            raise AudioError(str(exc)) from exc

        self._stream = stream
        self._queue = queue
        self._format = audio_format
        self.dropped_frames = 0
        logger.info(
            "Audio capture started (device=%s, rate=%d, channels=%d, frame=%dms)",
            info["name"], sample_rate, channels, self._frame_duration_ms,
        )
        return self._read_frames(queue)

    async def stop_capture(self) -> None:
        stream, queue = self._stream, self._queue
        self._stream = None
        self._queue = None
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except sd.PortAudioError:
                logger.warning("Error closing input stream", exc_info=True)
            logger.info("Audio capture stopped (%d frames dropped)", self.dropped_frames)
        if queue is not None:
            queue.close()

    def _end_stream(self, queue: janus.Queue[AudioFrame]) -> None:
        if queue is self._queue:
            logger.warning("Input stream finished while capturing")
        queue.close()

    async def _read_frames(self, queue: janus.Queue[AudioFrame]) -> AsyncIterator[AudioFrame]:
        while True:
            try:
                frame = await asyncio.wait_for(queue.async_q.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            except janus.AsyncQueueShutDown:
                break
            yield frame

    def _resolve_input_device(self) -> tuple[int | None, dict]:
        device = self._device
        if isinstance(device, str):
            try:
                device = int(device)
            except ValueError:
                device = self._find_device_by_name(device)
        try:
            info = sd.query_devices(device, kind="input")
        except (sd.PortAudioError, ValueError) as exc:
            raise AudioError("No audio input device available") from exc
        if int(info["max_input_channels"]) < 1 or float(info["default_samplerate"]) <= 0:
            raise AudioError("No audio input device available")
        return device, info

    def _find_device_by_name(self, name: str) -> int | None:
        for i, dev in enumerate(sd.query_devices()):
            if name.lower() in dev["name"].lower() and dev["max_input_channels"] > 0:
                logger.info("Resolved device '%s' -> %d (%s)", name, i, dev["name"])
                return i
        logger.warning("Device '%s' not found, using the default input", name)
        return None
