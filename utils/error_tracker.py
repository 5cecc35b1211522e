"""Segmentation error types and centralized unhandled exception tracking."""

from __future__ import annotations

import signal
import sys
import traceback
from typing import Callable, Optional

from .logger import Logger


class SegmentationError(Exception):
    """Base class for plane segmentation errors."""


class ConfigurationError(SegmentationError):
    """Raised when options or the derived cell grid are unusable."""


class FittingError(SegmentationError):
    """Raised when a cell has no points to fit a plane to."""


class InvariantViolation(SegmentationError):
    """Raised when grid geometry is corrupted (e.g. cell index out of range)."""


class ErrorTracker:
    """Installable global exception hook that logs uncaught errors."""

    logger = Logger.get_logger("utils.error_tracker")
    _installed = False
    _orig_hook: Optional[Callable[..., None]] = None

    @classmethod
    def install_excepthook(cls) -> None:
        """Log unhandled exceptions through the project logger."""
        if cls._installed:
            return

        cls._orig_hook = sys.excepthook

        def _hook(exc_type, exc, tb) -> None:
            message = "".join(traceback.format_exception(exc_type, exc, tb))
            cls.logger.error(f"Unhandled exception:\n{message}")
            if cls._orig_hook:
                cls._orig_hook(exc_type, exc, tb)

        sys.excepthook = _hook
        cls._installed = True
        cls.logger.debug("Global exception hook installed")

    @classmethod
    def install_signal_handlers(cls) -> None:
        """Shutdown gracefully on SIGINT or SIGTERM."""

        def _handler(signum, frame) -> None:
            cls.logger.info(f"Received signal {signum}")
            raise SystemExit(1)

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)

    @classmethod
    def report(cls, exc: Exception) -> None:
        """Log an exception with full traceback to logger only."""
        tb = exc.__traceback__
        if tb:
            formatted = "".join(traceback.format_exception(type(exc), exc, tb))
        else:
            stack = "".join(traceback.format_stack())
            formatted = f"{type(exc).__name__}: {exc}\nTraceback (most recent call last):\n{stack}"
        cls.logger.error(formatted)
