# Notification collaborator: fire-and-forget alerts such as "a review was requested"

import abc
import logging
from typing import Callable

logger = logging.getLogger(__name__)


class Notifier(abc.ABC):
    """Base class for notification channels."""

    @abc.abstractmethod
    def notify(self, title: str, body: str):
        """Deliver one notification. Best effort."""
        raise NotImplementedError("Concrete notifiers must implement notify()")


class LogNotifier(Notifier):
    """Writes notifications to the log; the default channel for CLI and API."""

    def __init__(self, logger_name: str = "pricebook.notifications"):
        self.logger = logging.getLogger(logger_name)

    def notify(self, title: str, body: str):
        self.logger.info("%s | %s", title, body)


class CallbackNotifier(Notifier):
    """Forwards notifications to a plain callable."""

    def __init__(self, callback: Callable[[str, str], None]):
        self.callback = callback

    def notify(self, title: str, body: str):
        self.callback(title, body)


def safe_notify(notifier: Notifier, title: str, body: str) -> bool:
    """Call the notifier without ever letting its failure reach the caller."""
    if notifier is None:
        return False
    try:
        notifier.notify(title, body)
        return True
    except Exception:  # pylint: disable=broad-exception-caught
        logger.exception("Notification '%s' could not be delivered", title)
        return False
