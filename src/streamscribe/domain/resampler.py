import logging

import numpy as np

from streamscribe.domain.errors import ConversionError
from streamscribe.domain.models import PROTOCOL_FORMAT, AudioFormat, AudioFrame

logger = logging.getLogger(__name__)

INT16_MAX = 32767
INT16_MIN = -32768


class LinearResampler:
    """Converts native-format PCM frames to the protocol format.

    Channels are averaged down to mono and the rate is changed by linear
    interpolation. The last input sample and the fractional read position
    carry over between calls so consecutive frames join without a seam.
    """

    def __init__(self, target: AudioFormat = PROTOCOL_FORMAT) -> None:
        if target.sample_width != 2:
            raise ValueError("Only 16-bit output is supported")
        self._target = target
        self._source: AudioFormat | None = None
        self._tail: float | None = None
        self._position = 0.0

    @property
    def target(self) -> AudioFormat:
        return self._target

    def reset(self) -> None:
        self._source = None
        self._tail = None
        self._position = 0.0

    def process(self, frame: AudioFrame) -> AudioFrame | None:
        source = frame.format
        mono = self._decode_mono(frame)

        if source != self._source:
            if self._source is not None:
                logger.info(
                    "Input format changed %s -> %s, resetting converter",
                    self._source, source,
                )
            self._source = source
            self._tail = None
            self._position = 0.0

        if source.sample_rate == self._target.sample_rate:
            if mono.size == 0:
                return None
            return self._encode(mono)

        samples = mono if self._tail is None else np.concatenate(([self._tail], mono))
        if samples.size < 2:
            if samples.size == 1:
                self._tail = float(samples[-1])
            return None

        step = source.sample_rate / self._target.sample_rate
        last_index = samples.size - 1
        positions = np.arange(self._position, last_index, step)
        self._tail = float(samples[-1])

        if positions.size == 0:
            self._position -= last_index
            return None

        output = np.interp(positions, np.arange(samples.size), samples)
        self._position = positions[-1] + step - last_index
        return self._encode(output)

    def _decode_mono(self, frame: AudioFrame) -> np.ndarray:
        source = frame.format
        if source.sample_width != 2:
            raise ConversionError(f"Unsupported sample width: {source.sample_width} bytes")
        if source.channels < 1 or source.sample_rate <= 0:
            raise ConversionError(f"Invalid input format: {source}")
        if len(frame.data) % source.bytes_per_frame:
            raise ConversionError(
                f"Buffer of {len(frame.data)} bytes does not hold whole "
                f"{source.channels}-channel frames"
            )

        samples = np.frombuffer(frame.data, dtype="<i2").astype(np.float64)
        if source.channels == 1:
            return samples
        return samples.reshape(-1, source.channels).mean(axis=1)

    def _encode(self, mono: np.ndarray) -> AudioFrame:
        pcm = np.clip(np.round(mono), INT16_MIN, INT16_MAX).astype("<i2")
        if self._target.channels > 1:
            pcm = np.repeat(pcm, self._target.channels)
        return AudioFrame.from_pcm(pcm.tobytes(), self._target)


def rms_level(frame: AudioFrame) -> float:
    if not frame.data or frame.format.sample_width != 2:
        return 0.0
    samples = np.frombuffer(frame.data, dtype="<i2").astype(np.float64)
    if samples.size == 0:
        return 0.0
    rms = float(np.sqrt(np.mean(samples**2)))
    return min(rms / INT16_MAX, 1.0)
