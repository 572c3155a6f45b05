class StreamscribeError(Exception):
    pass


class NoCredentialError(StreamscribeError):
    def __init__(self) -> None:
        super().__init__("No API key configured. Add your Deepgram API key in Settings.")


class ConnectionFailedError(StreamscribeError):
    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Connection failed: {reason}")


class AudioError(StreamscribeError):
    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Audio error: {reason}")


class ConversionError(StreamscribeError):
    pass


class SendFailure(StreamscribeError):
    pass
