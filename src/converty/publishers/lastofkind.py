"""Reincarnated as the Last of My Kind.

The head titles of this series are plain names ("Copyright", "Character Page
2"), so entries are classified from the body instead of the title pattern.
"""

from __future__ import annotations

import re
from pathlib import Path

from bs4 import Tag

from ..config import ConverterOptions
from ..diagnostics import debug_log
from ..entries import EntryInformation, EntryType
from ..input import SourceDocument
from ..output import ImgType
from ..segment import ImageIdData, ProcessingState, title_header_content
from ..strings import xml_to_string
from ..xhtml import element_children
from .. import sevenseas

TITLES = re.compile(r"Reincarnated as the Last of My Kind", re.IGNORECASE)
TITLES_TO_FILTER_OUT_REGEX = re.compile(r"other series", re.IGNORECASE)
# nothing is filtered by file name
FILES_TO_FILTER_OUT_REGEX = re.compile(r"(?!)")
CHARACTER_PAGE_RE = re.compile(r"character page \d+", re.IGNORECASE)
TITLE_FONT_RATIO = 1.5
TITLE_CHECK_NUMBER = 10
STYLES_TO_IGNORE = ("font-style", "font-weight", "vertical-align", "color", "text-align")

matcher = sevenseas.matcher(TITLES)


def determine_type(document: SourceDocument, config: sevenseas.SevenSeasConfig) -> EntryInformation:
    title = document.title
    lowered = title.lower()
    entry_type = EntryType.TEXT

    for h2 in document.body.find_all("h2", recursive=False):
        if h2.get_text().strip().lower() == "table of contents":
            entry_type = EntryType.IGNORE
            break

    if lowered == "copyright":
        entry_type = EntryType.TEXT
    elif lowered == "table of contents":
        entry_type = EntryType.IGNORE
    else:
        imgs = len(document.body.find_all("img"))
        ps = len(document.body.find_all("p"))
        if imgs > 0:
            if ps == imgs or ps == 0:
                entry_type = EntryType.IMAGE
            else:
                debug_log(f"Found images, but p count did not match, imgs: {imgs}, ps: {ps}")

    return EntryInformation(type=entry_type, title=title, first_line=title)


def is_title(document: SourceDocument, elem: Tag, entry: EntryInformation, state: ProcessingState) -> bool | str:
    processed = xml_to_string(elem.get_text())
    if entry.title and (processed == entry.title or entry.title in processed):
        return processed

    # headings are set at 150% of the body text
    if state.title_cache is not None:
        body_px = state.title_cache.body_font_size_px
    else:
        body_px = document.styles.body_font_size_px()
    inner = element_children(elem)
    use_elem = inner[0] if inner else elem
    if document.styles.computed(use_elem).font_size_px >= body_px * TITLE_FONT_RATIO:
        return xml_to_string(use_elem.get_text()) or False
    return False


def determine_reset(document: SourceDocument, entry: EntryInformation, state: ProcessingState) -> bool:
    """Group consecutive "Character Page N" documents under the first one."""
    last = state.last_entry
    if last is not None and CHARACTER_PAGE_RE.search(entry.title) and CHARACTER_PAGE_RE.search(last.title):
        return False
    return True


def gen_img_id_data(state: ProcessingState, source: Path, img: Tag, entry: EntryInformation) -> ImageIdData:
    # only one cover; images after it are frontmatter
    if state.img_type is ImgType.COVER:
        state.img_type = ImgType.FRONTMATTER
    alt = img.get("alt")
    alt_text = (alt if isinstance(alt, str) and alt else entry.title).strip()
    if alt_text.lower() == "cover":
        state.img_type = ImgType.COVER
    elif "cover" in alt_text.lower():
        entry.title = alt_text
    return sevenseas.image_id_data_for(state, source.suffix)


def build_config() -> sevenseas.SevenSeasConfig:
    return sevenseas.SevenSeasConfig(
        files_to_filter=FILES_TO_FILTER_OUT_REGEX,
        titles_to_filter=TITLES_TO_FILTER_OUT_REGEX,
        get_title=determine_type,
        is_title=is_title,
        title_font_ratio=TITLE_FONT_RATIO,
        gen_img_id_data=gen_img_id_data,
        gen_chapter_header_content=title_header_content,
        determine_reset=determine_reset,
        header_search_count=TITLE_CHECK_NUMBER,
        element_hook=None,
        combine_paragraphs=False,
        warn_classes=False,
        styles_to_ignore=STYLES_TO_IGNORE,
    )


def process(options: ConverterOptions) -> Path:
    return sevenseas.process(options, build_config())
