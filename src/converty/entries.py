"""Classify a source document by its declared title.

``classify("Chapter 3: The Reckoning")`` splits the title into type, number
and subtitle and maps the type onto a category through a case and whitespace
insensitive lookup table.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable

from .diagnostics import debug_log
from .output import ImgType
from .xhtml import StructureError

GENERIC_TITLE_REGEX = re.compile(
    r"^\s*(?P<type>.+?)(?: (?P<num>\d+))?(?:: (?P<title>.+?))?\s*$",
    re.IGNORECASE,
)


class TitleParseError(StructureError):
    """Raised when a title does not match the structural title pattern."""


class EntryType(Enum):
    IGNORE = "ignore"
    TEXT = "text"
    IMAGE = "image"


class TitleCategory(Enum):
    COVER = "cover"
    TITLE_PAGE = "title-page"
    COLOR_INSERTS = "color-inserts"
    COPYRIGHTS_AND_CREDITS = "copyrights-and-credits"
    TABLE_OF_CONTENTS = "table-of-contents"
    TOC_IMAGE = "toc-image"
    CAST_OF_CHARACTERS = "cast-of-characters"
    DEDICATION = "dedication"
    AFTERWORD = "afterword"
    EXTRA_CHAPTER = "extra-chapter"
    NUMBERED = "numbered"
    NAMED = "named"
    GENERIC = "generic"


@dataclass
class EntryInformation:
    type: EntryType
    title: str
    first_line: str = ""
    second_line: str | None = None
    img_type: ImgType = ImgType.INSERT
    category: TitleCategory = TitleCategory.GENERIC
    chapter_number: int | None = None

    def same_entry(self, other: "EntryInformation | None") -> bool:
        """Whether two entries describe the same logical page (title, image type, type)."""
        if other is None:
            return False
        return self.title == other.title and self.img_type is other.img_type and self.type is other.type


def preprocess_title(title: str) -> str:
    return re.sub(r"\s", "", title.lower())


def _keys(*titles: str) -> frozenset[str]:
    return frozenset(preprocess_title(title) for title in titles)


# (keys, category, implied image type, entry type)
_CATEGORY_TABLE: tuple[tuple[frozenset[str], TitleCategory, ImgType, EntryType], ...] = (
    (_keys("Cover", "Cover Page"), TitleCategory.COVER, ImgType.COVER, EntryType.TEXT),
    (_keys("Title Page"), TitleCategory.TITLE_PAGE, ImgType.FRONTMATTER, EntryType.TEXT),
    (_keys("Color Inserts", "Color Gallery"), TitleCategory.COLOR_INSERTS, ImgType.FRONTMATTER, EntryType.TEXT),
    (
        _keys("Copyrights and Credits", "Copyright"),
        TitleCategory.COPYRIGHTS_AND_CREDITS,
        ImgType.FRONTMATTER,
        EntryType.TEXT,
    ),
    (_keys("Table of Contents Page"), TitleCategory.TOC_IMAGE, ImgType.FRONTMATTER, EntryType.TEXT),
    (_keys("Table of Contents", "Contents"), TitleCategory.TABLE_OF_CONTENTS, ImgType.INSERT, EntryType.IGNORE),
    (_keys("Cast of Characters"), TitleCategory.CAST_OF_CHARACTERS, ImgType.FRONTMATTER, EntryType.TEXT),
    (_keys("Dedication"), TitleCategory.DEDICATION, ImgType.FRONTMATTER, EntryType.TEXT),
    (_keys("Afterword"), TitleCategory.AFTERWORD, ImgType.BACKMATTER, EntryType.TEXT),
    (_keys("Extra Chapter"), TitleCategory.EXTRA_CHAPTER, ImgType.BACKMATTER, EntryType.TEXT),
    (
        _keys(
            "Chapter",
            "Prologue",
            "Epilogue",
            "Interlude",
            "Interludes",
            "Side Story",
            "Bonus Story",
            "Short Story",
        ),
        TitleCategory.NUMBERED,
        ImgType.INSERT,
        EntryType.TEXT,
    ),
)

GetTitleHook = Callable[[EntryInformation, str, "str | None", "str | None", str], None]


def classify(
    raw_title: str,
    *,
    named_patterns: Iterable[re.Pattern[str]] = (),
    hook: GetTitleHook | None = None,
) -> EntryInformation:
    """Parse ``raw_title`` into an :class:`EntryInformation`.

    ``named_patterns`` match recurring, publisher specific feature names that
    should be treated as their own entries. ``hook`` may adjust the result
    before the category lookup; it receives the entry, the type, number and
    subtitle groups and the raw title.
    """
    match = GENERIC_TITLE_REGEX.match(raw_title)
    if match is None:
        raise TitleParseError(f'Failed to get matches for title "{raw_title}"')
    type_text = match.group("type")
    if not type_text:
        raise TitleParseError(f'Expected regex group "type" for title "{raw_title}"')
    num_text = match.group("num")
    subtitle = match.group("title")

    first_line = f"{type_text} {num_text}" if num_text is not None else type_text
    second_line = None
    if subtitle is not None:
        first_line += ":"
        second_line = subtitle

    entry = EntryInformation(
        type=EntryType.TEXT,
        title="",
        first_line=first_line,
        second_line=second_line,
        chapter_number=int(num_text) if num_text is not None else None,
    )
    if hook is not None:
        hook(entry, type_text, num_text, subtitle, raw_title)

    key = preprocess_title(type_text)
    for keys, category, img_type, entry_type in _CATEGORY_TABLE:
        if key in keys:
            entry.category = category
            entry.img_type = img_type
            if entry_type is EntryType.IGNORE:
                entry.type = EntryType.IGNORE
            break
    else:
        if any(pattern.search(type_text) for pattern in named_patterns):
            entry.category = TitleCategory.NAMED
        else:
            debug_log(f'Title type "{type_text}" is not a known category, handling it generically')

    entry.title = f"{entry.first_line} {entry.second_line}" if entry.second_line is not None else entry.first_line
    return entry


def is_cover_title(title: str) -> bool:
    return preprocess_title(title) in _CATEGORY_TABLE[0][0]


__all__ = [
    "EntryInformation",
    "EntryType",
    "GENERIC_TITLE_REGEX",
    "GetTitleHook",
    "TitleCategory",
    "TitleParseError",
    "classify",
    "is_cover_title",
    "preprocess_title",
]
