"""
Notification sinks for hostmaint.

Notifications are fire-and-forget: a sink may raise NotificationDeliveryError,
but the job runner never lets a delivery failure change a job's result.

The Telegram sink posts to the Bot API `sendMessage` endpoint. It is disabled
(and silently does nothing) unless both TELEGRAM_BOT_TOKEN and
TELEGRAM_CHAT_ID are configured.

Example:
    >>> notifiers = create_notifiers(config)
    >>> for sink in notifiers:
    ...     sink.send(Notification(Severity.INFO, "Update completed"))
"""

import html
import socket
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, List

import requests

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"

class NotificationError(Exception):
    """Base exception for notification errors."""
    pass

class NotificationDeliveryError(NotificationError):
    """Raised when a notification could not be delivered."""
    pass

class Severity(Enum):
    """Notification severity, ordered from least to most severe."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def icon(self) -> str:
        return {
            Severity.DEBUG: "🔎",
            Severity.INFO: "✅",
            Severity.WARNING: "⚠️",
            Severity.ERROR: "❌",
        }[self]

@dataclass(frozen=True)
class Notification:
    """A message with a severity, addressed to every configured sink."""

    severity: Severity
    message: str
    created_at: datetime = field(default_factory=datetime.now)

class NotificationSink(ABC):
    """Abstract base class for notification sinks."""

    @property
    def enabled(self) -> bool:
        return True

    @abstractmethod
    def send(self, notification: Notification) -> bool:
        """
        Deliver a notification.

        Returns:
            bool: True if delivered, False if the sink is disabled

        Raises:
            NotificationDeliveryError: If delivery fails
        """
        pass

class TelegramNotifier(NotificationSink):
    """
    Telegram Bot API notification sink.

    Attributes:
        token (str): Bot token
        chat_id (str): Target chat identifier
        timeout (float): Request timeout in seconds
        hostname (str): Host name prefixed to every message
        min_severity (Severity): Notifications below this are dropped
    """

    def __init__(self, config: Dict[str, Any]):
        self.token = str(config.get('TELEGRAM_BOT_TOKEN') or '')
        self.chat_id = str(config.get('TELEGRAM_CHAT_ID') or '')
        self.timeout = float(config.get('NOTIFY_TIMEOUT', 10))
        self.hostname = config.get('HOSTNAME') or socket.gethostname()
        self.min_severity = Severity(config.get('NOTIFY_MIN_SEVERITY', 'info'))
        self.api_url = config.get('TELEGRAM_API_URL', TELEGRAM_API_URL).rstrip('/')

    @property
    def enabled(self) -> bool:
        return bool(self.token and self.chat_id)

    def send(self, notification: Notification) -> bool:
        if not self.enabled:
            return False

        order = list(Severity)
        if order.index(notification.severity) < order.index(self.min_severity):
            return False

        text = (
            f"{notification.severity.icon} <b>{html.escape(self.hostname)}</b>: "
            f"{html.escape(notification.message)}"
        )

        try:
            response = requests.post(
                f"{self.api_url}/bot{self.token}/sendMessage",
                data={
                    'chat_id': self.chat_id,
                    'text': text,
                    'parse_mode': 'HTML',
                },
                timeout=self.timeout
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            # Never leak the bot token through the exception text
            raise NotificationDeliveryError(
                f"Telegram delivery failed: {str(e).replace(self.token, '***')}"
            )

        logger.debug(f"Telegram notification sent ({notification.severity.value})")
        return True

    def __repr__(self) -> str:
        return f"TelegramNotifier(chat_id={self.chat_id!r}, enabled={self.enabled})"

def create_notifiers(config: Dict[str, Any]) -> List[NotificationSink]:
    """
    Create the notification sinks enabled by configuration.

    Args:
        config: Configuration dictionary

    Returns:
        List of enabled sinks (empty when notification is not configured)
    """
    sinks: List[NotificationSink] = []

    telegram = TelegramNotifier(config)
    if telegram.enabled:
        sinks.append(telegram)
        logger.debug("Telegram notifications enabled")
    else:
        logger.debug("Telegram notifications not configured")

    return sinks
