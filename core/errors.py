# core/errors.py – Error kinds raised by the depth analysis

from __future__ import annotations

from enum import Enum
from typing import Any, Dict

__all__ = [
    "ErrorKind",
    "SNRAnalysisError",
    "DepthStrategyError",
    "CustomDepthError",
    "ROIMissingError",
    "ImageNotFoundError",
    "SNRError",
]


class ErrorKind(str, Enum):
    DEPTH_STRATEGY = "DepthStrategyError"
    CUSTOM_DEPTH = "CustomDepthError"
    ROI_MISSING = "ROIMissingError"
    IMAGE_NOT_FOUND = "ImageNotFoundError"
    SNR = "SNRError"
    IO = "IOError"


class SNRAnalysisError(Exception):
    """Base error carrying a kind tag and structured context."""

    kind: ErrorKind = ErrorKind.SNR

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def __str__(self) -> str:
        if not self.context:
            return self.message
        ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
        return f"{self.message} ({ctx})"


class DepthStrategyError(SNRAnalysisError):
    kind = ErrorKind.DEPTH_STRATEGY


class CustomDepthError(SNRAnalysisError):
    kind = ErrorKind.CUSTOM_DEPTH


class ROIMissingError(SNRAnalysisError):
    kind = ErrorKind.ROI_MISSING


class ImageNotFoundError(SNRAnalysisError):
    kind = ErrorKind.IMAGE_NOT_FOUND


class SNRError(SNRAnalysisError):
    kind = ErrorKind.SNR
