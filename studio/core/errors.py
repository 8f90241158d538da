"""
Error taxonomy surfaced to callers. Each error carries a stable `code` so the
HTTP layer and CLI can tell them apart without matching on messages.
"""


class StudioError(Exception):
    code = "studio_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or (self.__class__.__doc__ or self.code).strip()


class DecodeFailure(StudioError):
    """Audio data could not be decoded."""
    code = "decode_failure"


class PermissionDenied(StudioError):
    """Microphone access was refused or the input device could not be opened."""
    code = "permission_denied"


class NothingToExport(StudioError):
    """Nothing to export. Load a beat or record vocals first."""
    code = "nothing_to_export"


class GraphNotInitialized(StudioError):
    """Audio engine not initialised."""
    code = "graph_not_initialized"


class NoAudioLoaded(StudioError):
    """Add a beat or record vocals before playback."""
    code = "no_audio_loaded"


class RecordingInProgress(StudioError):
    """A recording is already in progress."""
    code = "recording_in_progress"


class InvalidParameter(StudioError):
    """Unknown or non-numeric effect parameter."""
    code = "invalid_parameter"


class CaptureBackendUnavailable(StudioError):
    """Capture backend could not be opened."""
    code = "capture_backend_unavailable"


class OutputUnavailable(StudioError):
    """Audio output device could not be opened."""
    code = "output_unavailable"
