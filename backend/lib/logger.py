"""
Logging Utility for the Tutor Backend

Console logging with:
- color-coded levels (only when attached to a TTY)
- per-logger icons for turn, session and generation traffic
- key/value rendering for structured data
- request/response helpers for the HTTP layer
"""

import logging
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional


class Colors:
    """ANSI color codes for terminal output."""
    RESET = '\033[0m'
    BOLD = '\033[1m'

    DEBUG = '\033[36m'      # Cyan
    INFO = '\033[32m'       # Green
    WARNING = '\033[33m'    # Yellow
    ERROR = '\033[31m'      # Red
    CRITICAL = '\033[35m'   # Magenta

    SECTION = '\033[94m'    # Bright Blue
    KEY = '\033[93m'        # Bright Yellow
    TIMESTAMP = '\033[90m'  # Dark Gray


LEVEL_COLORS = {
    'DEBUG': Colors.DEBUG,
    'INFO': Colors.INFO,
    'WARNING': Colors.WARNING,
    'ERROR': Colors.ERROR,
    'CRITICAL': Colors.CRITICAL,
}


class ColoredFormatter(logging.Formatter):
    """Single-line formatter: time, icon, level, logger name, message."""

    LEVEL_ICONS = {
        'DEBUG': '🔍',
        'INFO': 'ℹ️',
        'WARNING': '⚠️',
        'ERROR': '❌',
        'CRITICAL': '🚨',
    }

    # Keyed on the last dotted component of the logger name
    LOGGER_ICONS = {
        'main': '🌐',
        'turn_pipeline': '💬',
        'session_store': '💾',
        'generation': '🤖',
        'llm_service': '🤖',
        'persistence': '🗄️',
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        icon = self.LOGGER_ICONS.get(record.name.split('.')[-1], self.LEVEL_ICONS.get(record.levelname, '•'))
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S.%f')[:-3]

        if self.use_colors:
            level_color = LEVEL_COLORS.get(record.levelname, Colors.RESET)
            reset, bold, dim = Colors.RESET, Colors.BOLD, Colors.TIMESTAMP
        else:
            level_color = reset = bold = dim = ''

        formatted = (
            f"{dim}[{timestamp}]{reset} {icon} {level_color}{record.levelname:8s}{reset} "
            f"{bold}{record.name}{reset} | {record.getMessage()}"
        )
        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"
        return formatted


def format_data(data: Any, indent: int = 2) -> str:
    """Render dicts/lists as indented key: value lines; long lists are truncated."""
    pad = ' ' * indent
    if isinstance(data, dict):
        lines = [f"{pad}{key}: {format_data(value, indent + 2).lstrip()}" for key, value in data.items()]
        return "\n".join(lines) if lines else f"{pad}{{}}"
    if isinstance(data, list):
        shown: List[Any] = data[:5]
        rendered = ", ".join(str(item) for item in shown)
        if len(data) > len(shown):
            rendered += f", ... ({len(data)} items total)"
        return f"{pad}[{rendered}]"
    return f"{pad}{data}"


class StructuredLogger:
    """Thin wrapper adding data payloads and section banners to a logger."""

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger or logging.getLogger(name)

    def _with_data(self, message: str, data: Optional[Dict[str, Any]]) -> str:
        return f"{message}\n{format_data(data)}" if data else message

    def section(self, title: str, data: Optional[Dict[str, Any]] = None):
        """Log a banner marking the start of a multi-step operation."""
        separator = "=" * 60
        self.logger.info(self._with_data(f"\n{separator}\n📋 {title.upper()}\n{separator}", data))

    def subsection(self, title: str, data: Optional[Dict[str, Any]] = None):
        self.logger.info(self._with_data(f"\n{'-' * 40}\n▶ {title}\n{'-' * 40}", data))

    def debug(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.debug(self._with_data(message, data))

    def info(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.info(self._with_data(message, data))

    def warning(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.warning(self._with_data(message, data))

    def error(self, message: str, error: Optional[Exception] = None, data: Optional[Dict[str, Any]] = None):
        error_info = f" Error: {type(error).__name__}: {error}" if error else ""
        self.logger.error(self._with_data(f"{message}{error_info}", data), exc_info=error)

    def success(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.info(self._with_data(f"✅ {message}", data))

    def request(self, method: str, path: str, session_id: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        request_data = {"session_id": session_id}
        if data:
            request_data.update(data)
        self.logger.info(self._with_data(f"📥 REQUEST: {method} {path}", request_data))

    def response(self, status: int, path: str, duration: Optional[float] = None, data: Optional[Dict[str, Any]] = None):
        response_data: Dict[str, Any] = {"status": status}
        if duration is not None:
            response_data["duration_ms"] = f"{duration * 1000:.2f}"
        if data:
            response_data.update(data)
        self.logger.info(self._with_data(f"📤 RESPONSE: {status} {path}", response_data))


def setup_logging(level: int = logging.INFO, use_colors: bool = True):
    """Install the colored console handler on the root logger."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(use_colors=use_colors))

    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # Suppress noisy loggers
    for noisy in ('asyncio', 'httpx', 'httpcore', 'openai', 'hpack'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name, logging.getLogger(name))
