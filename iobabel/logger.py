"""
iobabel Logging
===============

Process-wide logging for the gateway: a rich console handler, an optional
rotating file, and a formatter that strips terminal control sequences from
request data before it reaches either.

Usage:
    >>> from iobabel.logger import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("Gateway started")

The level comes from ``LOG_LEVEL`` at import and may be changed later with
:func:`set_level` once ``config.toml`` has been read.
"""

import logging
import logging.handlers
import re
import sys
import threading
import time
from pathlib import Path
from typing import Optional, Tuple, Union

from rich.console import Console
from rich.highlighter import RegexHighlighter
from rich.logging import RichHandler
from rich.theme import Theme

from .constants import (
    LOG_LEVEL,
    LOG_FORMAT,
    LOG_DATE_FORMAT,
    LOG_MAX_FILE_SIZE,
    LOG_BACKUP_COUNT,
    LOG_CONSOLE_HIGHLIGHTING,
    LOG_TO_FILE,
)

LOG_FILE_PATH = Path(__file__).parent.parent / "logs" / "iobabel.log"

# Libraries whose INFO chatter would drown out gateway traffic
QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "uvicorn.access": logging.WARNING,
    "uvicorn": logging.ERROR,
    "uvicorn.error": logging.ERROR,
    "uvicorn.asgi": logging.ERROR,
}

BABEL_THEME = Theme({
    "babel.address":        "cyan",
    "babel.hash":           "dim cyan",
    "babel.level_critical": "bold red reverse",
    "babel.level_debug":    "bold dim",
    "babel.level_error":    "bold red",
    "babel.level_info":     "bold green",
    "babel.level_warning":  "bold yellow",
    "babel.logger_name":    "magenta",
    "babel.rpc_method":     "bold white",
    "babel.direction":      "bold magenta",
    "babel.timestamp":      "bold cyan",
    "babel.url":            "cyan",
})


def _level_number(level: Union[str, int, None]) -> int:
    if isinstance(level, int):
        return level
    return getattr(logging, str(level or "INFO").upper(), logging.INFO)


def _resolve_formats(log_format: str, date_format: str) -> Tuple[str, str]:
    """
    Return usable ``(log_format, date_format)``, falling back to the
    defaults for whichever one does not format a sample record.
    """
    try:
        logging.Formatter(fmt=str(log_format), validate=True)
    except (ValueError, TypeError) as e:
        print(f"iobabel.logger - bad LOG_FORMAT ({e}), using default", file=sys.stderr)
        log_format = LOG_FORMAT.default()

    try:
        rendered = time.strftime(str(date_format), time.gmtime(0))
        if not date_format or rendered == date_format:
            raise ValueError("no strftime directives")
    except (ValueError, TypeError) as e:
        print(f"iobabel.logger - bad LOG_DATE_FORMAT ({e}), using default", file=sys.stderr)
        date_format = LOG_DATE_FORMAT.default()

    return str(log_format), str(date_format)


class LogManager:
    """
    Singleton owner of the root logger's handlers.

    ``configure()`` installs handlers once per process; later calls are
    no-ops, so importing modules in any order is safe.
    """

    _instance: Optional["LogManager"] = None
    _lock: threading.Lock = threading.Lock()

    def __new__(cls) -> "LogManager":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._configured = False
        return cls._instance

    @property
    def is_configured(self) -> bool:
        return self._configured

    def configure(
        self,
        log_level: Optional[str] = None,
        log_file: Optional[Path] = None,
        console_output: bool = True,
        file_output: Optional[bool] = None,
    ) -> None:
        """
        Install console and file handlers on the root logger.

        Args:
            log_level: Level name; defaults to ``LOG_LEVEL``
            log_file: Rotating log file; defaults to ``logs/iobabel.log``
            console_output: Log to the terminal
            file_output: Log to ``log_file``; defaults to ``LOG_TO_FILE``
        """
        with self._lock:
            if self._configured:
                return

            level = _level_number(log_level or LOG_LEVEL)
            root_logger = logging.getLogger()
            root_logger.setLevel(level)
            root_logger.handlers.clear()
            for name, quiet_level in QUIET_LOGGERS.items():
                logging.getLogger(name).setLevel(quiet_level)

            log_format, date_format = _resolve_formats(LOG_FORMAT, LOG_DATE_FORMAT)
            # Timestamps are UTC regardless of host timezone
            formatter = TerminalSafeFormatter(fmt=log_format, datefmt=date_format + " UTC")
            formatter.converter = time.gmtime

            if console_output:
                if LOG_CONSOLE_HIGHLIGHTING:
                    handler = RichHandler(
                        console=Console(theme=BABEL_THEME, highlight=False),
                        highlighter=BabelLogHighlighter(),
                        keywords=[],
                        rich_tracebacks=True,
                        show_path=False,
                        show_time=False,
                        show_level=False,
                        markup=False,
                    )
                else:
                    handler = logging.StreamHandler(sys.stdout)
                handler.setFormatter(formatter)
                root_logger.addHandler(handler)

            if file_output is None:
                file_output = bool(LOG_TO_FILE)
            if file_output:
                log_file_path = log_file or LOG_FILE_PATH
                log_file_path.parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.handlers.RotatingFileHandler(
                    filename=str(log_file_path),
                    maxBytes=LOG_MAX_FILE_SIZE,
                    backupCount=LOG_BACKUP_COUNT,
                    encoding="utf-8",
                )
                file_handler.setFormatter(formatter)
                root_logger.addHandler(file_handler)

            self._configured = True

    def set_level(self, log_level: Union[str, int]) -> None:
        """Change the root level after configuration (handlers follow the root)."""
        if not self._configured:
            self.configure(log_level=log_level if isinstance(log_level, str) else None)
        logging.getLogger().setLevel(_level_number(log_level))

    def get_logger(self, name: str) -> logging.Logger:
        if not self._configured:
            self.configure()
        return logging.getLogger(name)


class TerminalSafeFormatter(logging.Formatter):
    """
    Formatter that strips ANSI escapes and control characters.

    Request bodies and parameters are logged verbatim, so anything a client
    sends could otherwise rewrite the operator's terminal (CWE-117).
    """

    _ansi_escape_re = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]|\x1b[@-Z\\-_]")
    # Control chars other than tab and newline
    _control_chars_re = re.compile(r"[\x00-\x08\x0B-\x1F\x7F]")

    @classmethod
    def sanitize(cls, text: str) -> str:
        if not text:
            return text
        return cls._control_chars_re.sub("", cls._ansi_escape_re.sub("", text))

    def format(self, record: logging.LogRecord) -> str:
        return self.sanitize(super().format(record))


class BabelLogHighlighter(RegexHighlighter):
    """
    Colours JSON-RPC method names, native and Ethereum addresses, hashes,
    the ``-->``/``<--`` traffic arrows and upstream URLs.
    """

    base_style = "babel."
    highlights = [
        r"(?P<level_critical>\bCRITICAL\b)",
        r"(?P<level_debug>\bDEBUG\b)",
        r"(?P<level_error>\bERROR\b)",
        r"(?P<level_info>\bINFO\b)",
        r"(?P<level_warning>\bWARNING\b)",
        r"\-\s+\w+\s+-\s+(?P<logger_name>[\w.]+)(?=\s-\s)",
        r"(?P<direction>-->|<--)",
        r"(?P<rpc_method>\b(eth|net|web3)_[A-Za-z]+\b)",
        r"(?P<address>\b(io1[02-9ac-hj-np-z]{38}|0x[0-9a-fA-F]{40})\b)",
        r"(?P<hash>\b0x[0-9a-fA-F]{64}\b)",
        r"(?P<timestamp>^(.*?)UTC)",
        r"(?P<url>https?://\S+)",
    ]


_manager = LogManager()


def get_logger(name: str) -> logging.Logger:
    """Module logger; configures logging on first use."""
    return _manager.get_logger(name)


def set_level(log_level: Union[str, int]) -> None:
    """Apply a configured level (e.g. ``[gateway] log_level``)."""
    _manager.set_level(log_level)


_manager.configure()
