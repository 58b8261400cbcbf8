from .composer import AlertComposer, DeliveryResult, channel_label, format_message
from .notifiers import (
    DeliveryError,
    EmailNotifier,
    Notifier,
    SmsNotifier,
    TelegramNotifier,
    default_notifiers,
)

__all__ = [
    "AlertComposer",
    "DeliveryResult",
    "DeliveryError",
    "EmailNotifier",
    "Notifier",
    "SmsNotifier",
    "TelegramNotifier",
    "channel_label",
    "default_notifiers",
    "format_message",
]
