"""Exceptions raised by widactl"""


class ConsoleError(Exception):
    """Base class for widactl errors"""


class FetchError(ConsoleError):
    """A resource could not be fetched or decoded"""

    def __init__(self, resource: str, message: str):
        super().__init__(f"{resource}: {message}")
        self.resource = resource


class ValidationError(ConsoleError):
    """An enqueue form was rejected before anything was sent"""


class SubmissionError(ConsoleError):
    """The backend rejected an enqueue request or could not be reached"""


class ConfigError(ConsoleError):
    """Unknown configuration key or invalid value"""
