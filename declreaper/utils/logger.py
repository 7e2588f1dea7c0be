"""Logging setup and terminal-safe text for the command-line driver.

Library modules only create ``logging.getLogger(__name__)`` loggers; the CLI
calls :func:`configure_logging` once to route them through rich on stderr.
Terminals that cannot print UTF-8 get ASCII stand-ins for the few symbols we
emit.
"""
import locale
import logging
import sys

from rich.logging import RichHandler

# Unicode to ASCII mapping for non-UTF-8 terminals
ICON_MAP = {
    '✓': '[OK]',
}


def detect_terminal_encoding() -> str:
    """Detect the terminal's encoding capability.

    Returns:
        str: Terminal encoding ('utf-8', 'cp1252', 'ascii', etc.)
    """
    if getattr(sys.stderr, 'encoding', None):
        return sys.stderr.encoding.lower()

    encoding = locale.getpreferredencoding(False)
    if encoding:
        return encoding.lower()

    return 'ascii'


def is_utf8_capable() -> bool:
    return detect_terminal_encoding().replace('_', '-') in ('utf-8', 'utf8')


def sanitize_for_terminal(text: str) -> str:
    """Replace Unicode symbols with ASCII equivalents if the terminal needs it.

    Args:
        text: Text potentially containing Unicode symbols

    Returns:
        str: Text safe for the current terminal
    """
    if is_utf8_capable():
        return text

    for unicode_char, ascii_replacement in ICON_MAP.items():
        text = text.replace(unicode_char, ascii_replacement)
    return text


def configure_logging(level: int = logging.WARNING, console=None) -> logging.Handler:
    """Install a RichHandler on the ``declreaper`` logger.

    Calling it again replaces the previously installed handler, so repeated
    CLI invocations in one process (tests) do not stack handlers.

    Args:
        level: Logging level for the package logger
        console: Rich console to log to; defaults to a stderr SafeConsole

    Returns:
        The installed handler
    """
    from .safe_console import SafeConsole

    handler = RichHandler(
        console=console or SafeConsole(stderr=True),
        show_time=False,
        show_path=level <= logging.DEBUG,
        markup=False,
    )
    handler.set_name('declreaper')

    package_logger = logging.getLogger('declreaper')
    for existing in list(package_logger.handlers):
        if existing.get_name() == 'declreaper':
            package_logger.removeHandler(existing)
    package_logger.addHandler(handler)
    package_logger.setLevel(level)
    package_logger.propagate = False
    return handler
