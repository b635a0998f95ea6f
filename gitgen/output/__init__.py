"""Terminal Output Formatting Package"""

import sys
import os
import threading

from gitgen.llm.base import LLMError
from gitgen.llm.exceptions import (
    AuthenticationError,
    ContextLengthExceededError,
    HttpResponseError,
    RateLimitError,
    SelfHealingError,
    TransportConnectionError,
)


class Colors:
    """ANSI escape codes for terminal colors."""
    RESET = '\033[0m'
    BOLD = '\033[1m'
    DIM = '\033[2m'
    RED = '\033[31m'
    GREEN = '\033[32m'
    CYAN = '\033[36m'


def _supports_color() -> bool:
    if os.environ.get('NO_COLOR'):
        return False
    if os.environ.get('FORCE_COLOR'):
        return True
    if not hasattr(sys.stdout, 'isatty') or not sys.stdout.isatty():
        return False
    if sys.platform == 'win32':
        try:
            import ctypes
            kernel32 = ctypes.windll.kernel32
            kernel32.SetConsoleMode(kernel32.GetStdHandle(-11), 7)
            return True
        except Exception:
            return False
    return True


def _supports_unicode() -> bool:
    if sys.platform == 'win32':
        try:
            '✓'.encode(sys.stdout.encoding or 'utf-8')
            return True
        except (UnicodeEncodeError, LookupError):
            return False
    return True


COLORS_ENABLED = _supports_color()
UNICODE_ENABLED = _supports_unicode()

CHECK = '✓' if UNICODE_ENABLED else '[OK]'
CROSS = '✗' if UNICODE_ENABLED else '[X]'
BULLET = '•' if UNICODE_ENABLED else '*'


def _colorize(text: str, *codes: str) -> str:
    if not COLORS_ENABLED:
        return text
    return f"{''.join(codes)}{text}{Colors.RESET}"


def success(text: str) -> str:
    return _colorize(text, Colors.GREEN)


def error(text: str) -> str:
    return _colorize(text, Colors.RED)


def info(text: str) -> str:
    return _colorize(text, Colors.CYAN)


def dim(text: str) -> str:
    return _colorize(text, Colors.DIM)


def bold(text: str) -> str:
    return _colorize(text, Colors.BOLD)


def print_success(message: str) -> None:
    print(f"{success(CHECK)} {message}")


def print_error(message: str) -> None:
    print(f"{error(CROSS)} {error(message)}", file=sys.stderr)


def _context_length_details(exc: ContextLengthExceededError) -> list[str]:
    lines = []
    if exc.max_context_length is not None:
        lines.append(f"  Model limit: {exc.max_context_length} tokens")
    if exc.requested_tokens is not None:
        requested = f"  Requested:   {exc.requested_tokens} tokens"
        if exc.prompt_tokens is not None and exc.completion_tokens is not None:
            requested += f" ({exc.prompt_tokens} prompt + {exc.completion_tokens} completion)"
        lines.append(requested)
    return lines


def format_failure(exc: Exception) -> str:
    """Turn a failed call into a message the user can act on."""
    if isinstance(exc, AuthenticationError):
        return (
            f"Authentication failed (HTTP {exc.status_code}).\n"
            "Check the API key for this model: GITGEN_APIKEY, --api-key or api_key in .gitgenrc."
        )
    if isinstance(exc, ContextLengthExceededError):
        lines = ["The request is too long for the model's context window."]
        lines.extend(_context_length_details(exc))
        lines.append("Shorten the prompt or lower max_output_tokens.")
        return "\n".join(lines)
    if isinstance(exc, RateLimitError):
        message = f"Still rate limited after {exc.attempts} attempts."
        if exc.retry_after is not None:
            message += f" The provider asked to wait {exc.retry_after:.0f}s."
        return message
    if isinstance(exc, SelfHealingError):
        return (
            f"{exc}\n"
            "The endpoint rejected the parameters it just accepted during detection. "
            "Try again later or run 'gitgen --detect'."
        )
    if isinstance(exc, TransportConnectionError):
        return f"Could not reach {exc.url} after {exc.attempts} attempts. Check the URL and your network."
    if isinstance(exc, (HttpResponseError, LLMError)):
        return str(exc)
    return f"An unexpected error occurred: {exc}"


class Spinner:
    """Animated spinner on stderr while a request is in flight. Use as context manager."""
    FRAMES_UNICODE = ['⠋', '⠙', '⠹', '⠸', '⠼', '⠴', '⠦', '⠧', '⠇', '⠏']
    FRAMES_ASCII = ['-', '\\', '|', '/']

    def __init__(self, label: str = ""):
        self.label = label
        self._thread = None
        self._stop_event = threading.Event()
        self._frames = self.FRAMES_UNICODE if UNICODE_ENABLED else self.FRAMES_ASCII

    def _spin(self):
        idx = 0
        while not self._stop_event.is_set():
            frame = self._frames[idx % len(self._frames)]
            print(f'\r\033[K{frame} {dim(self.label)}', end='', flush=True, file=sys.stderr)
            idx += 1
            self._stop_event.wait(0.08)

    def __enter__(self):
        if sys.stderr.isatty():
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._spin, daemon=True)
            self._thread.start()
        return self

    def __exit__(self, *args):
        self._stop_event.set()
        if self._thread:
            self._thread.join()
            print('\r\033[K', end='', flush=True, file=sys.stderr)


__all__ = [
    "Colors", "COLORS_ENABLED", "UNICODE_ENABLED",
    "CHECK", "CROSS", "BULLET",
    "success", "error", "info", "dim", "bold",
    "print_success", "print_error",
    "format_failure", "Spinner",
]
