"""Alert dispatch to pluggable notifiers."""

from .dispatch import AlertDispatcher, LoggingNotifier, Notifier, NullNotifier

__all__ = [
    "AlertDispatcher",
    "LoggingNotifier",
    "Notifier",
    "NullNotifier",
]
