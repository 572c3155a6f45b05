from typing import AsyncIterator, Callable, Protocol

from streamscribe.domain.errors import SendFailure
from streamscribe.domain.models import AudioFrame, RecognitionResult

SendFailureCallback = Callable[[SendFailure], None]


class StreamingTranscriberPort(Protocol):
    async def start(self) -> None: ...
    def send(self, frame: AudioFrame) -> None: ...
    def results(self) -> AsyncIterator[RecognitionResult]: ...
    async def stop(self) -> None: ...


class TranscriberFactory(Protocol):
    def __call__(
        self, api_key: str, on_send_failure: SendFailureCallback | None = None
    ) -> StreamingTranscriberPort: ...
