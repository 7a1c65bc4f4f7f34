from __future__ import annotations
from enum import Enum
from typing import Optional


class DataLensError(Exception):
    """Base class for every error raised by the analysis core."""


class ParseError(DataLensError):
    """The uploaded file is empty, malformed or has no usable header row."""


class EmptyColumn(DataLensError):
    """A column classified as numeric has no value that parses as a number."""

    def __init__(self, column: str):
        super().__init__(f"Column {column!r} has no numeric values")
        self.column = column


class LLMErrorKind(str, Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    MODEL = "model"
    CONFIG = "config"


class LLMError(DataLensError):
    """Failure of the language-model service (network, timeout, model or setup)."""

    def __init__(self, kind: LLMErrorKind, message: str = "", *, cause: Optional[BaseException] = None):
        super().__init__(message or kind.value)
        self.kind = kind
        self.cause = cause

    @property
    def retryable(self) -> bool:
        return self.kind is LLMErrorKind.NETWORK


class ChatRejected(DataLensError):
    """A chat submission was refused at the interface boundary."""
