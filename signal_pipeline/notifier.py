# signal_pipeline/notifier.py
import asyncio
import logging

from .interfaces import Notifier


class LogNotifier:
    """Publishes trade announcements to the log. Stand-in for a social posting client."""
    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.sent = []

    async def notify(self, message: str):
        self.sent.append(message)
        self.logger.info(f"📣 {message}")


def fire_and_forget(notifier: Notifier, message: str, logger: logging.Logger) -> asyncio.Task:
    """
    Schedules a notification without awaiting it.
    Failures are logged and never reach the execution path.
    """
    async def _send():
        try:
            await notifier.notify(message)
        except Exception as e:
            logger.error(f"Notifier failure: {e}")

    return asyncio.create_task(_send())
