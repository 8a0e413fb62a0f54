"""Error taxonomy shared by the scheduler, backends and transport."""


class FocusedReaderError(Exception):
    """Base class for all reader errors."""


class InvalidDocument(FocusedReaderError):
    """Document has no chapters or a chapter without words."""


class VoiceNotReady(FocusedReaderError):
    """Neural playback requested before the selected voice was downloaded."""

    def __init__(self, voice_id: str):
        super().__init__(f'Voice {voice_id} not downloaded. Run "download" first.')
        self.voice_id = voice_id


class BackendCanceled(FocusedReaderError):
    """Speech work was canceled by a stop, seek or mode switch."""


class BackendInterrupted(FocusedReaderError):
    """Speech engine interrupted an utterance before it completed."""


class BackendError(FocusedReaderError):
    """Unexpected synthesis or playback failure."""


class TransportError(FocusedReaderError):
    """Malformed or failed response from the synthesis worker."""
