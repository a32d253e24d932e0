"""Computed style resolution for source documents.

Stylesheets are parsed with cssutils and matched with bs4's CSS selector
support, then cascaded (importance, origin, specificity, order) and inherited
the way a browser would for the handful of properties the converters inspect.
"""

from __future__ import annotations

import re
import sys
from dataclasses import dataclass, field
from typing import Iterable

import cssutils
import soupsieve
from bs4 import BeautifulSoup, Tag

from .diagnostics import debug_log

cssutils.log.setLevel("CRITICAL")

DEFAULT_FONT_SIZE_PX = 16.0

INHERITED_PROPERTIES = frozenset(
    {
        "color",
        "font-family",
        "font-size",
        "font-style",
        "font-variant",
        "font-weight",
        "letter-spacing",
        "line-height",
        "text-align",
        "text-indent",
        "text-transform",
    }
)

# Rendering defaults that matter for transcription, so <b> or <i> without any
# author CSS still resolve to bold/italic.
_UA_STYLESHEET = """
b, strong { font-weight: bold; }
i, em, cite, var, dfn { font-style: italic; }
sup { vertical-align: super; font-size: smaller; }
sub { vertical-align: sub; font-size: smaller; }
u, ins { text-decoration: underline; }
s, strike, del { text-decoration: line-through; }
h1 { font-size: 2em; font-weight: bold; }
h2 { font-size: 1.5em; font-weight: bold; }
h3 { font-size: 1.17em; font-weight: bold; }
h4 { font-weight: bold; }
h5 { font-size: 0.83em; font-weight: bold; }
h6 { font-size: 0.67em; font-weight: bold; }
center { text-align: center; }
"""

_FONT_SIZE_KEYWORDS = {
    "xx-small": 9.0,
    "x-small": 10.0,
    "small": 13.0,
    "medium": 16.0,
    "large": 18.0,
    "x-large": 24.0,
    "xx-large": 32.0,
}

_LENGTH_RE = re.compile(r"^\s*([-+]?\d*\.?\d+)\s*([a-z%]*)\s*$", re.IGNORECASE)

_INLINE_SPECIFICITY = (1, 0, 0, 0)

_UA_ORIGIN = 0
_AUTHOR_ORIGIN = 1


def length_to_px(value: str, font_size_px: float, root_font_size_px: float = DEFAULT_FONT_SIZE_PX) -> float | None:
    """Convert a CSS length to px; ``em``/``%`` are relative to ``font_size_px``."""
    match = _LENGTH_RE.match(value or "")
    if not match:
        return None
    number = float(match.group(1))
    unit = match.group(2).lower()
    if unit in ("", "px"):
        return number
    if unit == "pt":
        return number * 4 / 3
    if unit == "pc":
        return number * 16
    if unit == "em":
        return number * font_size_px
    if unit == "rem":
        return number * root_font_size_px
    if unit == "%":
        return number / 100 * font_size_px
    if unit in ("ex", "ch"):
        return number * font_size_px / 2
    if unit == "in":
        return number * 96
    if unit == "cm":
        return number * 96 / 2.54
    if unit == "mm":
        return number * 96 / 25.4
    return None


def _font_size_to_px(value: str, parent_px: float, root_px: float) -> float | None:
    lowered = value.strip().lower()
    if lowered in _FONT_SIZE_KEYWORDS:
        return _FONT_SIZE_KEYWORDS[lowered]
    if lowered == "larger":
        return parent_px * 1.2
    if lowered == "smaller":
        return parent_px / 1.2
    return length_to_px(lowered, parent_px, root_px)


def _resolve_font_weight(value: str | None, parent_weight: int) -> int:
    if value is None:
        return parent_weight
    lowered = value.strip().lower()
    if lowered == "normal":
        return 400
    if lowered == "bold":
        return 700
    if lowered == "bolder":
        return 700 if parent_weight < 600 else 900
    if lowered == "lighter":
        return 100 if parent_weight < 600 else 400
    try:
        return int(float(lowered))
    except ValueError:
        return parent_weight


@dataclass
class ComputedStyle:
    values: dict[str, str] = field(default_factory=dict)
    font_size_px: float = DEFAULT_FONT_SIZE_PX

    def get(self, name: str, default: str = "") -> str:
        return self.values.get(name, default)

    @property
    def font_weight(self) -> int:
        return _resolve_font_weight(self.values.get("font-weight"), 400)

    @property
    def is_bold(self) -> bool:
        return self.font_weight >= 600

    @property
    def is_italic(self) -> bool:
        return self.get("font-style").strip().lower().startswith(("italic", "oblique"))

    @property
    def vertical_align(self) -> str:
        return self.get("vertical-align").strip().lower()

    @property
    def text_align(self) -> str:
        return self.get("text-align").strip().lower()

    @property
    def text_decorations(self) -> set[str]:
        tokens = f"{self.get('text-decoration')} {self.get('text-decoration-line')}".lower().split()
        return set(tokens)

    def length_px(self, name: str) -> float:
        return length_to_px(self.get(name), self.font_size_px) or 0.0


@dataclass
class _MatchedRule:
    priority: tuple[int, tuple[int, ...], int]
    declarations: list[tuple[str, str, bool]]


class StyleResolver:
    """Resolve ``getComputedStyle``-like values for the tags of one document."""

    def __init__(
        self,
        soup: BeautifulSoup,
        stylesheets: Iterable[str] = (),
        root_font_size_px: float = DEFAULT_FONT_SIZE_PX,
    ) -> None:
        self._soup = soup
        self._root_px = root_font_size_px
        self._matched: dict[int, list[_MatchedRule]] = {}
        self._cache: dict[int, ComputedStyle] = {}
        self._order = 0
        self.add_stylesheet(_UA_STYLESHEET, origin=_UA_ORIGIN)
        for css_text in stylesheets:
            self.add_stylesheet(css_text)

    def add_stylesheet(self, css_text: str, origin: int = _AUTHOR_ORIGIN) -> None:
        sheet = cssutils.parseString(css_text, validate=False)
        for rule in _iter_style_rules(sheet.cssRules):
            declarations = [
                (prop.name.lower(), prop.value, prop.priority == "important")
                for prop in rule.style.getProperties(all=True)
            ]
            if not declarations:
                continue
            for selector in rule.selectorList:
                selector_text = selector.selectorText
                try:
                    matched = self._soup.select(selector_text)
                except (soupsieve.SelectorSyntaxError, NotImplementedError, ValueError) as exc:
                    debug_log(f'Skipping unsupported selector "{selector_text}": {exc}')
                    continue
                priority = (origin, tuple(selector.specificity), self._order)
                self._order += 1
                for elem in matched:
                    self._matched.setdefault(id(elem), []).append(_MatchedRule(priority, declarations))
        self._cache.clear()

    def _declared(self, tag: Tag) -> dict[str, str]:
        ranked: list[tuple[tuple, str, str]] = []
        for matched in self._matched.get(id(tag), ()):
            for name, value, important in matched.declarations:
                ranked.append(((important, *matched.priority), name, value))
        style_attr = tag.get("style")
        if isinstance(style_attr, str) and style_attr.strip():
            inline = cssutils.parseStyle(style_attr, validate=False)
            for prop in inline.getProperties(all=True):
                key = (prop.priority == "important", _AUTHOR_ORIGIN, _INLINE_SPECIFICITY, sys.maxsize)
                ranked.append((key, prop.name.lower(), prop.value))
        ranked.sort(key=lambda item: item[0])
        declared: dict[str, str] = {}
        for _key, name, value in ranked:
            declared[name] = value
        return declared

    def computed(self, tag: Tag) -> ComputedStyle:
        key = id(tag)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        parent = tag.parent
        parent_style: ComputedStyle | None = None
        if isinstance(parent, Tag) and not isinstance(parent, BeautifulSoup):
            parent_style = self.computed(parent)
        parent_px = parent_style.font_size_px if parent_style is not None else self._root_px
        parent_weight = parent_style.font_weight if parent_style is not None else 400

        values: dict[str, str] = {}
        if parent_style is not None:
            for name, value in parent_style.values.items():
                if name in INHERITED_PROPERTIES:
                    values[name] = value

        declared = self._declared(tag)
        for name, value in declared.items():
            lowered = value.strip().lower()
            if lowered == "inherit":
                if parent_style is not None and name in parent_style.values:
                    values[name] = parent_style.values[name]
                continue
            if lowered in ("initial", "unset"):
                values.pop(name, None)
                continue
            values[name] = value.strip()

        font_size_px = parent_px
        declared_size = values.get("font-size") if "font-size" in declared else None
        if declared_size:
            resolved = _font_size_to_px(declared_size, parent_px, self._root_px)
            if resolved is not None:
                font_size_px = resolved
        values["font-size"] = f"{font_size_px:g}px"
        values["font-weight"] = str(_resolve_font_weight(declared.get("font-weight"), parent_weight))

        style = ComputedStyle(values=values, font_size_px=font_size_px)
        self._cache[key] = style
        return style

    def body_font_size_px(self) -> float:
        body = self._soup.find("body")
        if body is None:
            return self._root_px
        return self.computed(body).font_size_px


def _iter_style_rules(rules) -> Iterable:
    for rule in rules:
        if rule.type == rule.STYLE_RULE:
            yield rule
        elif rule.type == rule.MEDIA_RULE:
            yield from _iter_style_rules(rule.cssRules)


__all__ = [
    "ComputedStyle",
    "DEFAULT_FONT_SIZE_PX",
    "INHERITED_PROPERTIES",
    "StyleResolver",
    "length_to_px",
]
