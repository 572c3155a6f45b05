from typing import AsyncIterator, Protocol

from streamscribe.domain.models import AudioFrame


class AudioSourcePort(Protocol):
    @property
    def is_capturing(self) -> bool: ...
    async def start_capture(self) -> AsyncIterator[AudioFrame]: ...
    async def stop_capture(self) -> None: ...


class ResamplerPort(Protocol):
    def reset(self) -> None: ...
    def process(self, frame: AudioFrame) -> AudioFrame | None: ...
