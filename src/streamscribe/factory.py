import logging
from functools import partial

from streamscribe.adapters.clipboard import ClipboardService
from streamscribe.adapters.deepgram_stt import DeepgramStreamingClient
from streamscribe.adapters.history_store import JsonHistoryStore
from streamscribe.adapters.hotkey import GlobalHotkey
from streamscribe.adapters.secret_store import FileSecretStore
from streamscribe.adapters.sounddevice_audio import SounddeviceSource
from streamscribe.adapters.unix_control import UnixSocketControlServer
from streamscribe.config import StreamscribeConfig
from streamscribe.domain.resampler import LinearResampler
from streamscribe.domain.session import SessionController
from streamscribe.ports.control import ControlPort
from streamscribe.ports.transcriber import TranscriberFactory

logger = logging.getLogger(__name__)


def create_source(config: StreamscribeConfig) -> SounddeviceSource:
    return SounddeviceSource(
        device=config.capture_device_id(),
        channels=config.capture_channels,
        frame_duration_ms=config.frame_duration_ms,
    )


def create_client_factory(config: StreamscribeConfig) -> TranscriberFactory:
    return partial(
        DeepgramStreamingClient,
        options=config.streaming_options(),
        base_url=config.deepgram_url,
        close_timeout_s=config.close_timeout_s,
    )


def create_secret_store(config: StreamscribeConfig) -> FileSecretStore:
    return FileSecretStore(config.secrets_dir)


def create_history_store(config: StreamscribeConfig) -> JsonHistoryStore:
    return JsonHistoryStore(config.history_file)


def create_controller(
    config: StreamscribeConfig,
) -> tuple[SessionController, ControlPort, GlobalHotkey]:
    settings = config.session_settings()
    controller = SessionController(
        source=create_source(config),
        transcriber_factory=create_client_factory(config),
        credentials=create_secret_store(config),
        clipboard=ClipboardService(),
        history=create_history_store(config),
        settings=settings,
        resampler=LinearResampler(settings.target_format),
        on_status=lambda status: logger.debug("Status: %s", status),
    )
    control = UnixSocketControlServer(socket_path=config.socket_path)
    hotkey = GlobalHotkey(config.hotkey)
    return controller, control, hotkey
