"""Tests for logging setup"""

import logging

import pytest

from snapman.log import ColoredFormatter, setup_logging


@pytest.fixture
def root_logger():
    """Restore the root logger after the test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def _record(level):
    return logging.LogRecord('snapman.test', level, __file__, 1, "hello", None, None)


class TestColoredFormatter:

    def test_level_name_is_colored(self):
        formatter = ColoredFormatter('%(levelname)s %(message)s')
        text = formatter.format(_record(logging.WARNING))
        assert text == '\033[33mWARNING\033[0m hello'

    def test_message_is_not_colored(self):
        text = ColoredFormatter('%(message)s').format(_record(logging.ERROR))
        assert text == 'hello'

    def test_record_is_left_untouched(self):
        record = _record(logging.INFO)
        ColoredFormatter('%(levelname)s %(message)s').format(record)
        assert record.levelname == 'INFO'
        assert logging.Formatter('%(levelname)s').format(record) == 'INFO'

    def test_custom_level_is_plain(self):
        record = _record(25)
        assert ColoredFormatter('%(levelname)s').format(record) == 'Level 25'

class TestSetupLogging:

    def test_verbose_enables_debug(self, root_logger):
        handler = setup_logging(verbose=True)
        assert root_logger.level == logging.DEBUG
        assert handler in root_logger.handlers
        assert isinstance(handler.formatter, ColoredFormatter)

    def test_plain_formatter(self, root_logger):
        handler = setup_logging(colored=False)
        assert root_logger.level == logging.INFO
        assert not isinstance(handler.formatter, ColoredFormatter)
