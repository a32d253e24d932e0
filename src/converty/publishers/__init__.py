"""Publisher modules.

Every submodule exposes ``matcher(name) -> bool`` and
``process(options) -> Path``; the CLI picks the first module (in name order)
whose matcher accepts an input file name.
"""

from __future__ import annotations

import importlib
import pkgutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable

from ..config import ConverterOptions
from ..diagnostics import debug_log


class ModuleLoadError(RuntimeError):
    """Raised when a publisher module lacks ``matcher`` or ``process``."""


@dataclass(frozen=True)
class ConverterModule:
    name: str
    matcher: Callable[[str], bool]
    process: Callable[[ConverterOptions], Path]


def load_modules() -> list[ConverterModule]:
    modules: list[ConverterModule] = []
    for info in sorted(pkgutil.iter_modules(__path__), key=lambda item: item.name):
        if info.name.startswith("_"):
            continue
        module = importlib.import_module(f"{__name__}.{info.name}")
        matcher = getattr(module, "matcher", None)
        process = getattr(module, "process", None)
        if not callable(matcher) or not callable(process):
            raise ModuleLoadError(f'Publisher module "{info.name}" must define "matcher" and "process"')
        modules.append(ConverterModule(name=info.name, matcher=matcher, process=process))
    debug_log(f"Loaded {len(modules)} publisher modules: {', '.join(module.name for module in modules)}")
    return modules


def find_module(modules: Iterable[ConverterModule], filename: str) -> ConverterModule | None:
    for module in modules:
        if module.matcher(filename):
            return module
    return None


__all__ = ["ConverterModule", "ModuleLoadError", "find_module", "load_modules"]
