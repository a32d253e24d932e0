from __future__ import annotations

import html
import re

_WHITESPACE_RE = re.compile(r"\s+")


def fix_spaces(text: str) -> str:
    """Collapse whitespace runs (no-break spaces and newlines included) into one space and trim."""
    return _WHITESPACE_RE.sub(" ", text).strip()


def xml_to_string(text: str) -> str:
    """Readable form of a node's text content, with leftover entities resolved."""
    return fix_spaces(html.unescape(text))


def string_to_filename(text: str) -> str:
    # "/" would create a directory, the fraction slash looks the same
    return xml_to_string(text.replace("\\n", " ")).replace("/", "⁄")


def convert_title_compare(title: str) -> str:
    return title.replace(" ", "").replace("…", "...")


__all__ = [
    "convert_title_compare",
    "fix_spaces",
    "string_to_filename",
    "xml_to_string",
]
