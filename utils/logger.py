import logging
import re
import sys
from typing import Any, List, Optional, Sequence

# Global logger instance
_logger = None

LOGGER_NAME = "kdt"

# Plain output for pipelines, timestamps once debugging is on
CLI_FORMAT = "%(levelname)s %(message)s"
VERBOSE_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

COLORS = {
    "reset": "\033[0m",
    "red": "\033[31m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "cyan": "\033[36m",
    "grey": "\033[90m",
    "bold": "\033[1m",
}

ANSI_PATTERN = re.compile(r'\033\[[0-9;]+m')


class ColoredFormatter(logging.Formatter):
    """Colorize the level column of each record."""

    LEVEL_COLORS = {
        logging.DEBUG: COLORS["grey"],
        logging.INFO: COLORS["green"],
        logging.WARNING: COLORS["yellow"],
        logging.ERROR: COLORS["red"],
        logging.CRITICAL: COLORS["bold"] + COLORS["red"],
    }

    def format(self, record):
        message = super().format(record)
        color = self.LEVEL_COLORS.get(record.levelno)
        if not color:
            return message
        return message.replace(record.levelname, f"{color}{record.levelname}{COLORS['reset']}", 1)


class _MaxLevelFilter(logging.Filter):
    def __init__(self, max_level: int):
        super().__init__()
        self.max_level = max_level

    def filter(self, record):
        return record.levelno <= self.max_level


def visible_width(value: Any) -> int:
    return len(ANSI_PATTERN.sub('', str(value)))


def render_table(headers: Sequence[str], rows: Sequence[Sequence[Any]]) -> List[str]:
    """Lay out rows under headers as aligned text lines, padding on the visible width."""
    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], visible_width(cell))

    def line(cells):
        padded = []
        for i, cell in enumerate(cells):
            text = str(cell)
            padded.append(text + " " * (widths[i] - visible_width(text)))
        return "  ".join(padded).rstrip()

    lines = [line(headers), "  ".join("-" * w for w in widths)]
    lines.extend(line(row) for row in rows)
    return lines


class PrettyLogger:
    """Wrapper around logging.Logger adding colours and table output for the CLI."""

    def __init__(self, logger: logging.Logger, enable_colors: bool = True):
        self.logger = logger
        self.enable_colors = enable_colors

    def _paint(self, msg, color):
        if color and self.enable_colors:
            return f"{COLORS.get(color, '')}{msg}{COLORS['reset']}"
        return msg

    def debug(self, msg, *args, color=None, **kwargs):
        self.logger.debug(self._paint(msg, color), *args, **kwargs)

    def info(self, msg, *args, color=None, **kwargs):
        self.logger.info(self._paint(msg, color), *args, **kwargs)

    def warning(self, msg, *args, color=None, **kwargs):
        self.logger.warning(self._paint(msg, color), *args, **kwargs)

    def error(self, msg, *args, color=None, **kwargs):
        self.logger.error(self._paint(msg, color), *args, **kwargs)

    def success(self, msg, *args, **kwargs):
        self.info(msg, *args, color="green", **kwargs)

    def highlight(self, msg, *args, **kwargs):
        """Log a message that should stand out, like an available update."""
        self.info(msg, *args, color="cyan", **kwargs)

    @property
    def verbose(self) -> bool:
        return self.logger.isEnabledFor(logging.DEBUG)

    def set_level(self, log_level: str):
        """Switch level and output format; debug adds timestamps."""
        level = getattr(logging, log_level.upper())
        self.logger.setLevel(level)
        fmt = VERBOSE_FORMAT if level <= logging.DEBUG else CLI_FORMAT
        for handler in self.logger.handlers:
            handler.setFormatter(_formatter(fmt, self.enable_colors))

    def pretty_table(self, headers: List[str], rows: List[List[Any]], title: Optional[str] = None,
                     level: str = "info"):
        if not rows:
            return
        emit = getattr(self, level)
        if title:
            emit(self._paint(title, "bold"))
        for i, text in enumerate(render_table(headers, rows)):
            emit(self._paint(text, "bold") if i == 0 else text)


def _formatter(fmt: str, colored: bool) -> logging.Formatter:
    if colored:
        return ColoredFormatter(fmt, datefmt=DATE_FORMAT)
    return logging.Formatter(fmt, datefmt=DATE_FORMAT)


def setup_logger(log_level: str = "INFO", enable_colors: bool = True) -> PrettyLogger:
    """
    Set up the CLI logger.

    Records up to INFO go to stdout and warnings and errors to stderr, so
    tables stay clean when a pipeline captures the output. Calling it again
    only changes the level of the existing logger.
    """
    global _logger

    if _logger is not None:
        _logger.set_level(log_level)
        return _logger

    logger = logging.getLogger(LOGGER_NAME)
    logger.propagate = False
    if logger.handlers:
        logger.handlers.clear()

    colored = enable_colors and sys.stdout.isatty()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.addFilter(_MaxLevelFilter(logging.INFO))
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.WARNING)
    logger.addHandler(stdout_handler)
    logger.addHandler(stderr_handler)

    _logger = PrettyLogger(logger, enable_colors=colored)
    _logger.set_level(log_level)
    return _logger


def get_logger() -> PrettyLogger:
    """Get the global logger instance, initializing it if necessary."""
    global _logger

    if _logger is None:
        _logger = setup_logger()

    return _logger
