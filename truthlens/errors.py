class TruthLensError(Exception):
    """Base class for every failure raised by the analysis pipeline."""


class InputValidationError(TruthLensError):
    """The uploaded file is not a video."""


class DecodeError(TruthLensError):
    """Video metadata could not be loaded or a seek failed."""


class CaptureError(TruthLensError):
    """A decoded frame could not be turned into a still image."""


class SchemaError(TruthLensError):
    """The model answered with a payload that is not a valid ForensicReport."""


class NetworkError(TruthLensError):
    """The remote model could not be reached or rejected the request."""


class InvalidTransition(TruthLensError):
    """A state machine event arrived in a phase that does not accept it."""

    def __init__(self, event: str, phase):
        self.event = event
        self.phase = phase
        super().__init__(f"Cannot apply '{event}' while in phase {phase.value}")
