"""Reincarnated as a Sword."""

from __future__ import annotations

import re
from pathlib import Path

from ..config import ConverterOptions
from .. import sevenseas

TITLES = re.compile(r"Reincarnated as a Sword", re.IGNORECASE)

matcher = sevenseas.matcher(TITLES)


def build_config() -> sevenseas.SevenSeasConfig:
    return sevenseas.SevenSeasConfig(
        files_to_filter=sevenseas.DEFAULT_FILES_TO_FILTER_OUT_REGEX,
        titles_to_filter=sevenseas.DEFAULT_TITLES_TO_FILTER_OUT_REGEX,
    )


def process(options: ConverterOptions) -> Path:
    return sevenseas.process(options, build_config())
