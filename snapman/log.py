"""Logging setup for applications embedding snapman."""

import logging
import logging.handlers


class ColoredFormatter(logging.Formatter):
    """Terminal formatter that colours the level name of each record.

    Change events are logged at DEBUG and are dimmed so that operation
    outcomes (INFO and above) stand out. Custom levels are left plain.
    """

    LEVEL_COLORS = {
        logging.DEBUG: '\033[2m',        # dim
        logging.INFO: '\033[36m',        # cyan
        logging.WARNING: '\033[33m',     # yellow
        logging.ERROR: '\033[31m',       # red
        logging.CRITICAL: '\033[1;31m',  # bold red
    }
    RESET = '\033[0m'

    def formatMessage(self, record):
        color = self.LEVEL_COLORS.get(record.levelno)
        if not color:
            return super().formatMessage(record)
        # Other handlers share the record; colour a copy
        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().formatMessage(colored)


def setup_logging(verbose: bool = False, colored: bool = True,
                  syslog: bool = False) -> logging.Handler:
    """Configure the root logger.

    Args:
        verbose: Log DEBUG messages (change events, daemon requests)
        colored: Colour levels when logging to a terminal
        syslog: Send records to the local syslog instead of stderr

    Returns:
        The installed handler
    """
    level = logging.DEBUG if verbose else logging.INFO

    if syslog:
        handler = logging.handlers.SysLogHandler(address='/dev/log')
        handler.setFormatter(logging.Formatter(
            'snapman: %(levelname)s - %(message)s'
        ))
    else:
        handler = logging.StreamHandler()
        formatter_cls = ColoredFormatter if colored else logging.Formatter
        handler.setFormatter(formatter_cls(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))

    logging.basicConfig(level=level, handlers=[handler], force=True)
    return handler
