from execution.telegram_notifier import (
    SenderInitError,
    TelegramNotifier,
    TelegramNotifierError,
    TransportError,
    resolve_destination,
)

__all__ = [
    "SenderInitError",
    "TelegramNotifier",
    "TelegramNotifierError",
    "TransportError",
    "resolve_destination",
]
