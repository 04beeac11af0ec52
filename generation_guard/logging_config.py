"""
Logging Configuration Module

Thread-safe logging for governance processes: request threads log through
a queue and one listener writes records out in order.
"""

import logging
import logging.handlers
import sys
from queue import Queue
from typing import Optional


NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "openai", "werkzeug")


class ThreadSafeLoggingConfig:
    """Thread-safe logging configuration with queue-based logging."""

    def __init__(self):
        self._log_listener: Optional[logging.handlers.QueueListener] = None
        self._log_queue: Optional[Queue] = None
        self._queue_handler: Optional[logging.handlers.QueueHandler] = None

    def setup_logging(self, debug: bool = False) -> None:
        """
        Configure queue-based logging on the root logger.

        Args:
            debug: Whether to enable debug logging
        """
        self.stop()
        self._log_queue = Queue()
        queue_handler = logging.handlers.QueueHandler(self._log_queue)
        self._queue_handler = queue_handler

        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

        self._log_listener = logging.handlers.QueueListener(
            self._log_queue, console_handler, respect_handler_level=True
        )
        self._log_listener.start()

        root_logger = logging.getLogger()
        root_logger.handlers.clear()
        root_logger.addHandler(queue_handler)
        root_logger.setLevel(logging.DEBUG if debug else logging.INFO)

        if not debug:
            for name in NOISY_LOGGERS:
                logging.getLogger(name).setLevel(logging.WARNING)

    def stop(self) -> None:
        """Stop the logging listener and cleanup."""
        if self._log_listener:
            self._log_listener.stop()
            self._log_listener = None
        if self._queue_handler:
            logging.getLogger().removeHandler(self._queue_handler)
            self._queue_handler = None
        self._log_queue = None


# Global logging configuration instance
logging_config = ThreadSafeLoggingConfig()


def setup_logging(debug: bool = False) -> None:
    """Setup thread-safe logging configuration."""
    logging_config.setup_logging(debug)


def stop_logging() -> None:
    """Stop the logging listener and cleanup."""
    logging_config.stop()
