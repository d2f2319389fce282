"""Color output support for the pkgplan CLI.

Color palette:
  - Red: errors and packages being removed
  - Orange: warnings
  - Green: success and packages being installed
  - Blue: upgrades and contextual information
"""

import os
import sys

# ANSI color codes
_COLORS = {
    'reset': '\033[0m',
    'bold': '\033[1m',
    'red': '\033[91m',
    'orange': '\033[93m',   # no true orange in ANSI
    'green': '\033[92m',
    'blue': '\033[94m',
    'dim': '\033[2m',
}

_colors_enabled = True


def init(nocolor: bool = False):
    """Initialize color support.

    Colors are off when nocolor is set, when NO_COLOR is set in the
    environment (https://no-color.org/) or when stdout is not a terminal.
    """
    global _colors_enabled
    _colors_enabled = not (nocolor or os.environ.get('NO_COLOR') or not sys.stdout.isatty())


def enabled() -> bool:
    return _colors_enabled


def _wrap(text: str, color: str) -> str:
    if not _colors_enabled:
        return text
    return f"{_COLORS.get(color, '')}{text}{_COLORS['reset']}"


def error(text: str) -> str:
    return _wrap(text, 'red')


def warning(text: str) -> str:
    return _wrap(text, 'orange')


def success(text: str) -> str:
    return _wrap(text, 'green')


def info(text: str) -> str:
    return _wrap(text, 'blue')


def dim(text: str) -> str:
    return _wrap(text, 'dim')


def bold(text: str) -> str:
    return _wrap(text, 'bold')


# Package names by pending action
def pkg_install(name: str) -> str:
    return success(name)


def pkg_remove(name: str) -> str:
    return error(name)


def pkg_upgrade(name: str) -> str:
    return info(name)


def count(n: int) -> str:
    return bold(str(n))
