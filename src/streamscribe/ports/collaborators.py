from typing import Protocol

from streamscribe.domain.models import SessionRecord

DEEPGRAM_API_KEY_NAME = "deepgram_api_key"


class CredentialStorePort(Protocol):
    def get(self, name: str) -> str | None: ...
    def put(self, name: str, secret: str) -> None: ...
    def delete(self, name: str) -> None: ...


class ClipboardPort(Protocol):
    def set_clipboard_text(self, text: str) -> None: ...
    def paste_into_frontmost_target(self) -> None: ...


class HistoryPort(Protocol):
    def append(self, record: SessionRecord) -> None: ...
