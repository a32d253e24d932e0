"""Didn't I Say to Make My Abilities Average in the Next Life?!

Adds the recurring "Lenny Recaps" pages as their own named entries and numbers
interludes separately from chapters.
"""

from __future__ import annotations

import re
from pathlib import Path

from ..config import ConverterOptions
from ..entries import EntryInformation
from ..output import ImgType, Tracker
from ..segment import ProcessingState, TextIdData, TextIdExtra
from .. import sevenseas

TITLES = re.compile(r"Didn.t I Say to Make My Abilities Average", re.IGNORECASE)
NAMED_PATTERNS = (re.compile(r"lenny recaps", re.IGNORECASE),)
INTERLUDE_TRACKER = "Interlude"

_INTERLUDE_RE = re.compile(r"^\s*interludes?\b", re.IGNORECASE)

matcher = sevenseas.matcher(TITLES)


def get_title_hook(
    entry: EntryInformation,
    type_text: str,
    num_text: str | None,
    subtitle: str | None,
    raw_title: str,
) -> None:
    if type_text.strip().lower() == "about the author and illustrator":
        entry.img_type = ImgType.BACKMATTER


def is_interlude(entry: EntryInformation) -> bool:
    return bool(_INTERLUDE_RE.match(entry.first_line or entry.title))


def gen_text_id_data(state: ProcessingState, entry: EntryInformation, extra: TextIdExtra) -> TextIdData:
    if not is_interlude(entry):
        return sevenseas.gen_text_id_data(state, entry, extra)

    trackers = state.trackers
    # a continuation document of the same interlude keeps its number
    if extra.first_page and not entry.same_entry(state.last_entry):
        trackers.increment(INTERLUDE_TRACKER)
    # interludes do not count as chapters
    if extra.increased_chapter_with_title:
        trackers.decrement(Tracker.CHAPTER)
    section_id = f"interlude{trackers[INTERLUDE_TRACKER]}"
    sub = trackers[Tracker.CURRENT_SUB_CHAPTER]
    if sub > 0:
        section_id += f"_{sub}"
    return TextIdData(section_id=section_id)


def build_config() -> sevenseas.SevenSeasConfig:
    return sevenseas.SevenSeasConfig(
        named_patterns=NAMED_PATTERNS,
        get_title_hook=get_title_hook,
        gen_text_id_data=gen_text_id_data,
        extra_trackers=(INTERLUDE_TRACKER,),
    )


def process(options: ConverterOptions) -> Path:
    return sevenseas.process(options, build_config())
