"""Callback/hook system for automation run lifecycle events."""

from autoflow.callbacks.base import AutoflowCallback, BaseCallback
from autoflow.callbacks.logging import LoggingCallback

__all__ = ["AutoflowCallback", "BaseCallback", "LoggingCallback"]
