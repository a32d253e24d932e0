from __future__ import annotations

from rich.console import Console

_DEBUG_LOG = False

console = Console(stderr=True)


def set_debug_logging(enabled: bool) -> None:
    global _DEBUG_LOG
    _DEBUG_LOG = enabled


def debug_enabled() -> bool:
    return _DEBUG_LOG


def debug_log(message: str) -> None:
    if _DEBUG_LOG:
        console.print(f"[converty debug] {message}", style="dim", markup=False, highlight=False, soft_wrap=True)


def warn(message: str) -> None:
    """Report unrecognized but survivable input; processing continues."""
    console.print(message, style="yellow", markup=False, highlight=False, soft_wrap=True)


def error(message: str) -> None:
    console.print(message, style="bold red", markup=False, highlight=False, soft_wrap=True)


def info(message: str) -> None:
    console.print(message, markup=False, highlight=False, soft_wrap=True)


__all__ = [
    "console",
    "debug_enabled",
    "debug_log",
    "error",
    "info",
    "set_debug_logging",
    "warn",
]
