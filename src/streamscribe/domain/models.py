import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass(frozen=True)
class AudioFormat:
    sample_rate: int
    channels: int = 1
    sample_width: int = 2

    @property
    def bytes_per_frame(self) -> int:
        return self.channels * self.sample_width


PROTOCOL_FORMAT = AudioFormat(sample_rate=16000, channels=1, sample_width=2)


@dataclass(frozen=True)
class AudioFrame:
    data: bytes
    frame_count: int
    format: AudioFormat

    @classmethod
    def from_pcm(cls, data: bytes, audio_format: AudioFormat) -> "AudioFrame":
        return cls(
            data=data,
            frame_count=len(data) // audio_format.bytes_per_frame,
            format=audio_format,
        )

    @property
    def duration_seconds(self) -> float:
        return self.frame_count / self.format.sample_rate


@dataclass(frozen=True)
class RecognitionResult:
    text: str
    is_final: bool
    confidence: float | None = None
    segment_duration_seconds: float | None = None
    start_seconds: float | None = None


@dataclass(frozen=True)
class SessionSettings:
    model: str = "nova-2"
    language: str = "en"
    sample_rate: int = 16000
    channels: int = 1
    auto_paste: bool = False
    paste_delay_s: float = 0.1
    completed_display_s: float = 2.5
    failed_display_s: float = 5.0
    drain_timeout_s: float = 2.5

    @property
    def model_identifier(self) -> str:
        return f"deepgram/{self.model}"

    @property
    def target_format(self) -> AudioFormat:
        return AudioFormat(sample_rate=self.sample_rate, channels=self.channels, sample_width=2)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SessionError:
    phase: str
    message: str
    occurred_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase,
            "message": self.message,
            "occurredAt": self.occurred_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionError":
        return cls(
            phase=str(data["phase"]),
            message=str(data["message"]),
            occurred_at=datetime.fromisoformat(data["occurredAt"]),
        )


@dataclass(frozen=True)
class SessionRecord:
    started_at: datetime
    text: str | None
    duration_seconds: float
    models_used: tuple[str, ...] = ()
    errors: tuple[SessionError, ...] = ()
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    @property
    def display_text(self) -> str:
        return self.text or ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "startedAt": self.started_at.isoformat(),
            "text": self.text,
            "durationSeconds": self.duration_seconds,
            "modelsUsed": list(self.models_used),
            "errors": [error.to_dict() for error in self.errors],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionRecord":
        return cls(
            id=uuid.UUID(data["id"]),
            started_at=datetime.fromisoformat(data["startedAt"]),
            text=data.get("text"),
            duration_seconds=float(data.get("durationSeconds", 0.0)),
            models_used=tuple(data.get("modelsUsed", [])),
            errors=tuple(SessionError.from_dict(e) for e in data.get("errors", [])),
        )
