"""
Minimal logging context for Packrat.
Single place to control all output: screen + file, with flush.
"""
import json
import os
import re
from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.text import Text

_COMPONENT_PREFIX = re.compile(r"^\[[A-Za-z][A-Za-z]*\]")
_LEVEL_STYLES = {
    "[ERROR]": "red",
    "[WARNING]": "yellow",
    "[INFO]": "cyan",
    "[DEBUG]": "grey50",
}
_OUTCOME_STYLES = (
    ("Grabbed", "green"),
    ("Rejected", "red"),
    ("Skipping", "grey50"),
)


class PackratLogger:
    """Minimal logger: rich on screen, plain text in file, always flush"""

    def __init__(self, log_file: Optional[Path] = None, debug: bool = False):
        self.log_file = log_file
        self._file_handle = None
        self._start_time = datetime.now()
        self.debug_mode = debug
        self._rate_limit_note_indexes: set[str] = set()
        self._console = Console(highlight=False)
        self._status_active = False

        if log_file:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            self._file_handle = open(log_file, 'w', buffering=1, encoding='utf-8')  # Line buffered, UTF-8

        from packrat.__version__ import __version__

        welcome = f"({self._start_time.strftime('%H:%M:%S')}  Started Packrat {__version__})"
        self.log(welcome)

    def _screen_text(self, line: str) -> Text:
        """Style a log line for the terminal without interpreting rich markup."""
        text = Text(line)
        for marker, style in _LEVEL_STYLES.items():
            start = line.find(marker)
            if start != -1:
                text.stylize(style, start, start + len(marker))
        component = _COMPONENT_PREFIX.match(line)
        if component and component.group(0) not in _LEVEL_STYLES:
            text.stylize("bold", 0, component.end())
        for word, style in _OUTCOME_STYLES:
            start = line.find(word)
            if start != -1:
                text.stylize(style, start, start + len(word))
        return text

    def _clear_status(self) -> None:
        if self._status_active:
            print("\r" + " " * 100 + "\r", end="", flush=True)
            self._status_active = False

    def status(self, msg: str) -> None:
        """Inline progress line on screen only (overwritten by the next line)."""
        print(f"\r{msg}", end="", flush=True)
        self._status_active = True

    def log(self, msg: str, prefix: str = ""):
        """Log to screen and file"""
        output = f"{prefix}{msg}" if prefix else msg

        self._clear_status()
        self._console.print(self._screen_text(output))

        if self._file_handle:
            self._file_handle.write(output + "\n")
            self._file_handle.flush()
            os.fsync(self._file_handle.fileno())

    def info(self, msg: str):
        """Info message"""
        self.log(msg)

    def warning(self, msg: str):
        """Warning message"""
        self.log(msg, "[WARNING] ")

    def error(self, msg: str):
        """Error message"""
        self.log(msg, "[ERROR] ")

    def debug(self, msg: str):
        """Debug message (only shown in debug mode)"""
        if self.debug_mode:
            timestamp = datetime.now().strftime('%H:%M:%S.%f')[:-3]
            self.log(msg, f"[{timestamp}] [DEBUG] ")

    def api_wait(self, index: str, seconds: float):
        """Log request pacing once per index"""
        _ = seconds
        index_key = index.upper()
        if index_key in self._rate_limit_note_indexes:
            return
        self._rate_limit_note_indexes.add(index_key)
        self.log(
            f"Request pacing active for {index_key}; searches are being spaced out.",
            "[INFO] ",
        )

    def api_wait_debug(self, index: str, seconds: float):
        """Log pacing wait details (debug mode only)."""
        self.debug(f"Rate limiting detail: waiting {seconds:.3f}s before next {index} request")

    def api_retry(self, index: str, attempt: int, max_attempts: int, delay: int):
        """Log request retry"""
        self.log(f"{index} did not respond. Retrying in {delay}s... (attempt {attempt}/{max_attempts})", "[WARNING] ")

    def api_failed(self, index: str, max_attempts: int):
        """Log request failure"""
        self.log(f"{index} not responding after {max_attempts} attempts. Aborting.", "[ERROR] ")

    def api_request(self, method: str, url: str, params: dict):
        """Log index request (debug mode only)"""
        if self.debug_mode:
            timestamp = datetime.now().strftime('%H:%M:%S.%f')[:-3]
            self.log(f"Request: {method} {url}", f"[{timestamp}] ")
            if params:
                self.log(f"  Params: {json.dumps(params, indent=2, default=str)}", f"[{timestamp}] ")

    def api_response(self, status: int, data: object, elapsed_ms: float):
        """Log index response (debug mode only)"""
        if self.debug_mode:
            timestamp = datetime.now().strftime('%H:%M:%S.%f')[:-3]
            self.log(f"Response ({elapsed_ms:.0f}ms): Status {status}", f"[{timestamp}] ")
            if data:
                data_str = data if isinstance(data, str) else json.dumps(data, indent=2, default=str)
                # Truncate large responses
                if len(data_str) > 5000:
                    data_str = data_str[:5000] + "\n  ... (truncated)"
                self.log(f"  Data: {data_str}", f"[{timestamp}] ")

    def close(self):
        """Close file handle with goodbye message"""
        if self._file_handle:
            end_time = datetime.now()
            elapsed = end_time - self._start_time
            goodbye = f"({end_time.strftime('%H:%M:%S')}  Ended session, elapsed {elapsed.total_seconds():.1f}s)"
            self.log(goodbye)
            self._file_handle.close()
            self._file_handle = None

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


# Global instance (set by the embedding application)
_logger: Optional[PackratLogger] = None

def set_logger(logger: PackratLogger):
    """Set global logger instance"""
    global _logger
    _logger = logger

def get_logger() -> PackratLogger:
    """Get global logger instance"""
    global _logger
    if _logger is None:
        # Fallback: screen-only logger
        _logger = PackratLogger()
    return _logger

# Convenience functions
def log(msg: str):
    get_logger().log(msg)

def info(msg: str):
    get_logger().info(msg)

def warning(msg: str):
    get_logger().warning(msg)

def error(msg: str):
    get_logger().error(msg)

def debug(msg: str):
    get_logger().debug(msg)
