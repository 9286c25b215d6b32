import sys
from collections import deque
from datetime import datetime
from typing import Deque, List, Optional, TextIO, Tuple

LOG_LEVELS = {"ERROR": 0, "WARN": 1, "INFO": 2, "DEBUG": 3}
MAX_LOG_BUFFER = 100


def color_text(text, color_code):
    return f"\033[{color_code}m{text}\033[0m"

def debug_text(text):
    return f"{color_text('DEBUG', '31')} {text}"

def info_text(text):
    return f"{color_text('INFO', '34')}  {text}"

def warn_text(text):
    return f"{color_text('WARN', '33')}  {text}"

def error_text(text):
    return f"{color_text('ERROR', '91')} {text}"

def sending_text(text):
    return f"{color_text('SENDING  ', '32')} {text}"

def received_text(text):
    return f"{color_text('RECEIVED ', '35')} {text}"


_FORMATTERS = {
    "ERROR": error_text,
    "WARN": warn_text,
    "INFO": info_text,
    "DEBUG": debug_text,
}


class BotLogger:
    """Leveled console logger that keeps the most recent records in memory."""

    def __init__(
        self,
        level: str = "INFO",
        *,
        stream: Optional[TextIO] = None,
        colored: bool = True,
    ) -> None:
        self._level = LOG_LEVELS["INFO"]
        self.set_level(level)
        self._stream = stream
        self._colored = colored
        self._buffer: Deque[Tuple[str, str, str]] = deque(maxlen=MAX_LOG_BUFFER)

    @property
    def level(self) -> str:
        for name, value in LOG_LEVELS.items():
            if value == self._level:
                return name
        return "INFO"

    def set_level(self, level: str) -> None:
        key = level.upper()
        if key not in LOG_LEVELS:
            raise ValueError(f"Unknown log level '{level}'")
        self._level = LOG_LEVELS[key]

    def enabled_for(self, level: str) -> bool:
        return LOG_LEVELS[level] <= self._level

    def log(self, level: str, message: str) -> None:
        if not self.enabled_for(level):
            return
        timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
        self._buffer.append((timestamp, level, message))
        line = f"[{timestamp}] {message}"
        if self._colored:
            line = _FORMATTERS[level](line)
        else:
            line = f"{level:<5} {line}"
        stream = self._stream if self._stream is not None else sys.stderr
        print(line, file=stream, flush=True)

    def error(self, message: str) -> None:
        self.log("ERROR", message)

    def warn(self, message: str) -> None:
        self.log("WARN", message)

    def info(self, message: str) -> None:
        self.log("INFO", message)

    def debug(self, message: str) -> None:
        self.log("DEBUG", message)

    def recent(self, count: Optional[int] = None) -> List[Tuple[str, str, str]]:
        """Return buffered ``(timestamp, level, message)`` records, oldest first."""
        records = list(self._buffer)
        if count is not None:
            records = records[-count:] if count > 0 else []
        return records


_default_logger: Optional[BotLogger] = None


def get_logger() -> BotLogger:
    global _default_logger
    if _default_logger is None:
        _default_logger = BotLogger()
    return _default_logger
