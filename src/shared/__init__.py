"""Shared utilities and helpers."""
from shared.dispatch import UiDispatcher
from shared.progress import CancelToken, ConsoleProgress

__all__ = [
    'CancelToken',
    'ConsoleProgress',
    'UiDispatcher',
]
