"""
Tests for queue-based logging setup.
"""

import logging
import logging.handlers

from generation_guard.logging_config import logging_config, setup_logging, stop_logging


class TestLoggingConfig:
    """Test logging setup and teardown."""

    def setup_method(self):
        """Remember root logger state."""
        self.root = logging.getLogger()
        self.saved_handlers = list(self.root.handlers)
        self.saved_level = self.root.level

    def teardown_method(self):
        """Restore root logger state."""
        stop_logging()
        self.root.handlers[:] = self.saved_handlers
        self.root.setLevel(self.saved_level)
        logging.getLogger("openai").setLevel(logging.NOTSET)

    def test_root_logs_through_queue(self):
        setup_logging()

        assert any(isinstance(h, logging.handlers.QueueHandler) for h in self.root.handlers)
        assert self.root.level == logging.INFO
        assert logging.getLogger("openai").level == logging.WARNING

    def test_debug_level(self):
        setup_logging(debug=True)
        assert self.root.level == logging.DEBUG

    def test_setup_twice_keeps_one_handler(self):
        setup_logging()
        setup_logging()
        queue_handlers = [h for h in self.root.handlers if isinstance(h, logging.handlers.QueueHandler)]
        assert len(queue_handlers) == 1

    def test_stop(self):
        setup_logging()
        stop_logging()
        assert logging_config._log_listener is None
