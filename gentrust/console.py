"""
gentrust Terminal Formatting
==============================
ANSI colours and small layout helpers shared by the trust prompt and the
CLI.

Import from: gentrust.console
"""

import os
import shutil
import sys


class Colors:
    """ANSI color codes — degrades gracefully on Windows without VT100."""
    ENABLED = True

    @classmethod
    def _try_enable(cls):
        if sys.platform == 'win32':
            try:
                import ctypes
                kernel32 = ctypes.windll.kernel32
                kernel32.SetConsoleMode(kernel32.GetStdHandle(-11), 7)
            except (AttributeError, OSError):
                cls.ENABLED = False
        if os.environ.get('NO_COLOR'):
            cls.ENABLED = False

    @classmethod
    def _c(cls, code: str, text: str) -> str:
        return f"\033[{code}m{text}\033[0m" if cls.ENABLED else text

    @classmethod
    def bold(cls, t): return cls._c("1", t)
    @classmethod
    def dim(cls, t): return cls._c("2", t)
    @classmethod
    def green(cls, t): return cls._c("32", t)
    @classmethod
    def red(cls, t): return cls._c("31", t)
    @classmethod
    def yellow(cls, t): return cls._c("33", t)
    @classmethod
    def cyan(cls, t): return cls._c("36", t)

Colors._try_enable()


def ok_mark() -> str:
    return Colors.green("✓")


def fail_mark() -> str:
    return Colors.red("✗")


def warn_mark() -> str:
    return Colors.yellow("⚠")


def heading(text: str, out=None):
    out = out or sys.stdout
    width = min(shutil.get_terminal_size().columns, 72)
    print(f"\n{Colors.bold(text)}", file=out)
    print(Colors.dim("─" * width), file=out)


def table_row(label: str, value: str, status: str = "", out=None):
    out = out or sys.stdout
    label_col = f"  {label:<30}"
    if status:
        print(f"{label_col} {status} {value}", file=out)
    else:
        print(f"{label_col} {value}", file=out)


__all__ = ['Colors', 'ok_mark', 'fail_mark', 'warn_mark', 'heading', 'table_row']
