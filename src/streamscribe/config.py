from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from streamscribe.adapters.deepgram_stt import DEEPGRAM_LISTEN_URL, StreamingOptions
from streamscribe.domain.models import SessionSettings

CONFIG_DIR = Path.home() / ".config" / "streamscribe"


class StreamscribeConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STREAMSCRIBE_")

    deepgram_url: str = DEEPGRAM_LISTEN_URL
    model: str = "nova-2"
    language: str = "en"
    sample_rate: int = 16000
    channels: int = 1
    encoding: str = "linear16"
    punctuate: bool = True
    interim_results: bool = True
    endpointing_ms: int = 300
    close_timeout_s: float = 2.0

    capture_device: str = ""
    capture_channels: int = 1
    frame_duration_ms: int = 100

    auto_paste: bool = False
    paste_delay_s: float = 0.1
    completed_display_s: float = 2.5
    failed_display_s: float = 5.0
    drain_timeout_s: float = 2.5

    secrets_dir: str = str(CONFIG_DIR / "secrets")
    history_file: str = str(CONFIG_DIR / "history.json")
    hotkey: str = "Key.f9"

    socket_path: str = "/tmp/streamscribe.sock"
    log_file: str = "/tmp/streamscribe.log"

    def session_settings(self) -> SessionSettings:
        return SessionSettings(
            model=self.model,
            language=self.language,
            sample_rate=self.sample_rate,
            channels=self.channels,
            auto_paste=self.auto_paste,
            paste_delay_s=self.paste_delay_s,
            completed_display_s=self.completed_display_s,
            failed_display_s=self.failed_display_s,
            drain_timeout_s=self.drain_timeout_s,
        )

    def streaming_options(self) -> StreamingOptions:
        return StreamingOptions(
            model=self.model,
            language=self.language,
            sample_rate=self.sample_rate,
            channels=self.channels,
            encoding=self.encoding,
            punctuate=self.punctuate,
            interim_results=self.interim_results,
            endpointing_ms=self.endpointing_ms,
        )

    def capture_device_id(self) -> str | None:
        return self.capture_device or None
