import logging
import os
from dataclasses import dataclass
from pathlib import Path

from streamscribe.adapters.secret_store import FileSecretStore
from streamscribe.config import StreamscribeConfig
from streamscribe.ports.collaborators import DEEPGRAM_API_KEY_NAME

logger = logging.getLogger(__name__)

# A missing API key only fails the session that needs it, so the daemon still starts.
CRITICAL_CHECKS = {"audio_device"}


@dataclass
class HealthCheckResult:
    name: str
    passed: bool
    detail: str


def run_startup_checks(config: StreamscribeConfig) -> list[HealthCheckResult]:
    results = [
        _check_audio_device(config),
        _check_api_key(config),
        _check_history_file(config),
    ]

    passed = sum(1 for r in results if r.passed)
    logger.info("Health check: %d/%d passed", passed, len(results))
    for result in results:
        level = logging.INFO if result.passed else logging.WARNING
        symbol = "OK" if result.passed else "FAIL"
        logger.log(level, "  [%s] %s: %s", symbol, result.name, result.detail)

    return results


def has_critical_failures(results: list[HealthCheckResult]) -> bool:
    return any(not r.passed and r.name in CRITICAL_CHECKS for r in results)


def _check_audio_device(config: StreamscribeConfig) -> HealthCheckResult:
    name = "audio_device"
    try:
        import sounddevice as sd

        device = config.capture_device_id()
        if device is not None:
            for dev in sd.query_devices():
                if device.lower() in dev["name"].lower() and dev["max_input_channels"] > 0:
                    return HealthCheckResult(
                        name=name,
                        passed=True,
                        detail=f"Device '{dev['name']}' at {dev['default_samplerate']:.0f} Hz",
                    )
        try:
            default = sd.query_devices(kind="input")
        except sd.PortAudioError:
            return HealthCheckResult(name=name, passed=False, detail="No input devices available")
        prefix = f"'{device}' not found, " if device else ""
        return HealthCheckResult(
            name=name,
            passed=True,
            detail=f"{prefix}default input: {default['name']} at {default['default_samplerate']:.0f} Hz",
        )
    except Exception as exc:
        return HealthCheckResult(name=name, passed=False, detail=str(exc))


def _check_api_key(config: StreamscribeConfig) -> HealthCheckResult:
    name = "api_key"
    store = FileSecretStore(config.secrets_dir)
    try:
        key = store.get(DEEPGRAM_API_KEY_NAME)
    except OSError as exc:
        return HealthCheckResult(name=name, passed=False, detail=f"Unreadable: {exc}")
    if not key:
        return HealthCheckResult(
            name=name,
            passed=False,
            detail=f"Missing: run 'streamscribe key set <key>' (looked in {store.directory})",
        )
    return HealthCheckResult(name=name, passed=True, detail="Deepgram API key loaded")


def _check_history_file(config: StreamscribeConfig) -> HealthCheckResult:
    name = "history_file"
    path = Path(config.history_file).expanduser()
    directory = path.parent
    while not directory.exists() and directory != directory.parent:
        directory = directory.parent
    if path.exists() and not path.is_file():
        return HealthCheckResult(name=name, passed=False, detail=f"{path} is not a file")
    if not os.access(directory, os.W_OK):
        return HealthCheckResult(name=name, passed=False, detail=f"{directory} is not writable")
    return HealthCheckResult(name=name, passed=True, detail=str(path))
