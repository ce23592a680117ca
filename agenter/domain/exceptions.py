from typing import Optional


class AgenterError(Exception):
    """Base class for all agenter errors"""


class StorageError(AgenterError):
    """The fact log could not be read or written"""


class ConfigurationError(AgenterError):
    """Required configuration is missing or invalid"""


class CompletionError(AgenterError):
    """The text-completion transport failed"""


class StructuredOutputError(AgenterError):
    """A cognition tool reply held no usable JSON object"""

    def __init__(self, message: str, raw_response: Optional[str] = None):
        super().__init__(message)
        self.raw_response = raw_response


class RecallCancelled(AgenterError):
    """The consumer cancelled a recall run between rounds"""
