"""Seven Seas series that need nothing beyond the shared pipeline."""

from __future__ import annotations

import re
from pathlib import Path

from ..config import ConverterOptions
from .. import sevenseas

TITLES = re.compile(
    r"I.m the Evil Lord of an Intergalactic Empire!"
    r"|(?:Trapped in a Dating Sim. The )?World of Otome Games is Tough for Mobs"
    r"|Reborn as a Space Mercenary. I Woke Up Piloting the Strongest Starship!",
    re.IGNORECASE,
)

matcher = sevenseas.matcher(TITLES)


def process(options: ConverterOptions) -> Path:
    return sevenseas.process(options, sevenseas.SevenSeasConfig())
