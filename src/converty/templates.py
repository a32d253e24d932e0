from __future__ import annotations

from importlib import resources
from typing import Mapping

from .diagnostics import debug_log

_TEMPLATES: dict[str, str] = {}


def get_template(filename: str) -> str:
    """Load a packaged template from ``converty.data``, cached after the first read."""
    cached = _TEMPLATES.get(filename)
    if cached is not None:
        return cached
    debug_log(f'Loading template "{filename}"')
    resource = resources.files("converty.data").joinpath(filename)
    if not resource.is_file():
        raise FileNotFoundError(f'Could not find template "{filename}"')
    loaded = resource.read_text(encoding="utf-8")
    _TEMPLATES[filename] = loaded
    return loaded


def clear_template_cache() -> None:
    _TEMPLATES.clear()


def apply_template(text: str, args: Mapping[str, str]) -> str:
    """Replace every ``{{KEY}}`` placeholder with its value; unknown placeholders stay."""
    for key, value in args.items():
        text = text.replace("{{" + key + "}}", value)
    return text


__all__ = ["apply_template", "clear_template_cache", "get_template"]
