from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from .diagnostics import debug_log, warn

PROJECT_NAME = "converty"
CONFIG_FILENAME = "converterrc.json"

_BASE_PATH_ENV = "CONVERTY_BASE_PATH"
_DEBUG_OUTPUT_ENV = "CONVERTY_DEBUG_OUTPUT"
_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class ConverterOptions:
    """What a publisher module's ``process`` receives for one input."""

    input_path: Path
    output_path: Path
    debug_output: bool = False


@dataclass(frozen=True)
class ConverterConfig:
    base_path: Path

    @property
    def input_dir(self) -> Path:
        return self.base_path / "input"

    @property
    def output_dir(self) -> Path:
        return self.base_path / "output"

    @property
    def compare_dir(self) -> Path:
        return self.base_path / "compare"

    def ensure_dirs(self) -> None:
        self.input_dir.mkdir(parents=True, exist_ok=True)
        self.output_dir.mkdir(parents=True, exist_ok=True)


def env_flag(name: str, env: Mapping[str, str] | None = None) -> bool:
    source = os.environ if env is None else env
    value = source.get(name)
    if value is None:
        return False
    return value.strip().lower() in _TRUTHY


def debug_output_enabled(env: Mapping[str, str] | None = None) -> bool:
    return env_flag(_DEBUG_OUTPUT_ENV, env)


def _read_config_file(path: Path) -> dict:
    if not path.is_file():
        debug_log(f"No config found at {path}")
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        warn(f"Failed to load config {path}: {exc}")
        return {}
    if not isinstance(data, dict):
        warn(f"Ignoring config {path}: expected a JSON object")
        return {}
    debug_log(f"Loaded config at {path}")
    return data


def load_config(config_path: Path | None = None, env: Mapping[str, str] | None = None) -> ConverterConfig:
    """Resolve the base directory holding ``input/``, ``output/`` and ``compare/``.

    Precedence: ``CONVERTY_BASE_PATH``, then ``baseConverterPath`` of the config
    file (with the project name appended), then ``~/Downloads/converty``.
    """
    source = os.environ if env is None else env
    env_base = source.get(_BASE_PATH_ENV)
    if env_base:
        return ConverterConfig(base_path=Path(env_base).expanduser())

    data = _read_config_file(config_path if config_path is not None else Path.cwd() / CONFIG_FILENAME)
    base = data.get("baseConverterPath")
    if isinstance(base, str) and base.strip():
        return ConverterConfig(base_path=Path(base).expanduser() / PROJECT_NAME)
    return ConverterConfig(base_path=Path.home() / "Downloads" / PROJECT_NAME)


__all__ = [
    "CONFIG_FILENAME",
    "ConverterConfig",
    "ConverterOptions",
    "PROJECT_NAME",
    "debug_output_enabled",
    "env_flag",
    "load_config",
]
