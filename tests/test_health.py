import sys
import types

import pytest

from streamscribe.adapters.secret_store import FileSecretStore
from streamscribe.config import StreamscribeConfig
from streamscribe.health import HealthCheckResult, has_critical_failures, run_startup_checks


class FakePortAudioError(Exception):
    pass


def fake_sounddevice(devices: list[dict]) -> types.ModuleType:
    module = types.ModuleType("sounddevice")
    module.PortAudioError = FakePortAudioError

    def query_devices(device=None, kind=None):
        if kind is None:
            return devices
        if not devices:
            raise FakePortAudioError("no input")
        return devices[0]

    module.query_devices = query_devices
    return module


@pytest.fixture
def config(tmp_path, monkeypatch):
    monkeypatch.setenv("STREAMSCRIBE_SECRETS_DIR", str(tmp_path / "secrets"))
    monkeypatch.setenv("STREAMSCRIBE_HISTORY_FILE", str(tmp_path / "data" / "history.json"))
    monkeypatch.delenv("STREAMSCRIBE_CAPTURE_DEVICE", raising=False)
    return StreamscribeConfig()


def by_name(results: list[HealthCheckResult]) -> dict[str, HealthCheckResult]:
    return {r.name: r for r in results}


class TestStartupChecks:
    def test_all_pass(self, config, monkeypatch):
        monkeypatch.setitem(sys.modules, "sounddevice", fake_sounddevice([
            {"name": "Mic", "max_input_channels": 1, "default_samplerate": 48000.0},
        ]))
        FileSecretStore(config.secrets_dir).put("deepgram_api_key", "abc")

        results = run_startup_checks(config)

        assert all(r.passed for r in results)
        assert set(by_name(results)) == {"audio_device", "api_key", "history_file"}
        assert not has_critical_failures(results)

    def test_missing_key_is_not_critical(self, config, monkeypatch):
        monkeypatch.setitem(sys.modules, "sounddevice", fake_sounddevice([
            {"name": "Mic", "max_input_channels": 1, "default_samplerate": 48000.0},
        ]))

        results = run_startup_checks(config)

        assert not by_name(results)["api_key"].passed
        assert not has_critical_failures(results)

    def test_no_input_device_is_critical(self, config, monkeypatch):
        monkeypatch.setitem(sys.modules, "sounddevice", fake_sounddevice([]))
        FileSecretStore(config.secrets_dir).put("deepgram_api_key", "abc")

        results = run_startup_checks(config)

        assert not by_name(results)["audio_device"].passed
        assert has_critical_failures(results)

    def test_history_failure_is_not_critical(self):
        results = [HealthCheckResult(name="history_file", passed=False, detail="read-only")]
        assert not has_critical_failures(results)
