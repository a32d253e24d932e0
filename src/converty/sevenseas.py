"""Shared conversion pipeline for Seven Seas light novels.

Every Seven Seas publisher module runs :func:`process` with a
:class:`SevenSeasConfig` that only carries its deltas: matcher titles, filter
regexes and the hooks it replaces.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

from bs4 import BeautifulSoup, Tag

from .config import ConverterOptions
from .diagnostics import debug_log, warn
from .entries import EntryInformation, EntryType, GetTitleHook, classify, is_cover_title
from .input import InputContext, InputXhtmlFile, SourceDocument
from .metadata import apply_series_metadata, copy_metadata, parse_series
from .output import (
    ContentOpfParts,
    ImgClass,
    ImgType,
    OutputContext,
    Tracker,
    XhtmlFile,
    XhtmlSubtype,
)
from .segment import (
    DetermineReset,
    GenChapterHeader,
    GenImageIdData,
    GenTextIdData,
    ImageIdData,
    IsTitle,
    ProcessingState,
    SegmentHooks,
    TextIdData,
    TextIdExtra,
    TitleCache,
    do_text_content,
)
from .strings import convert_title_compare, xml_to_string
from .styles import ComputedStyle, StyleResolver
from .transcribe import (
    HANDLED_STYLES,
    CombineHook,
    ElementHook,
    PElemTracker,
    TranscribeOptions,
    enclosing_block,
    provides_semantic,
)
from .xhtml import (
    CSS_MIMETYPE,
    HTML_EXTS,
    NCX_MIMETYPE,
    OPF_MIMETYPE,
    add_class,
    element_children,
)

DEFAULT_FILES_TO_FILTER_OUT_REGEX = re.compile(r"newsletter|sevenseaslogo", re.IGNORECASE)
DEFAULT_TITLES_TO_FILTER_OUT_REGEX = re.compile(r"newsletter", re.IGNORECASE)
COVER_XHTML_FILENAME = "cover"
DEFAULT_TITLE_FONT_RATIO = 1.1
BIG_LETTER_FONT_RATIO = 3.0
EXTRA_INDENT_CLASS = "extra-indent"

# Source classes whose formatting is either dropped or already covered by the
# computed style handling; anything else is reported.
CLASSES_TO_IGNORE = frozenset(
    {
        # default p formatting
        "P_Normal__And__Left_Indent__And__Spacing_After__And__Spacing_Before",
        "P_Prose_Formatting",
        "P_Normal",
        # default span formatting
        "C_Current__And__Times_New_Roman",
        # colored or black text
        "C_Current__And__Coloured_Text__And__Times_New_Roman",
        "C_Current__And__Black_Text__And__Times_New_Roman",
        "C_Current__And__Properties__And__Black_Text__And__Times_New_Roman",
        "C_Current__And__Properties__And__Black_Text__And__Times_New_Roman__And__Small_Capitals",
        # bold / italic / capitals, picked up through the computed style
        "C_Current__And__Black_Text__And__Times_New_Roman__And__Bold",
        "C_Current__And__Black_Text__And__Times_New_Roman__And__Italic",
        "C_Current__And__Properties__And__Black_Text__And__Times_New_Roman__And__Italic",
        "C_Current__And__Black_Text__And__Times_New_Roman__And__Bold__And__Italic",
        "C_Current__And__Black_Text__And__Times_New_Roman__And__Bold__And__Capitals",
        "C_Current__And__Times_New_Roman__And__Italic",
        "C_Current__And__Times_New_Roman__And__Bold__And__Italic",
        "C_Current__And__Properties__And__Times_New_Roman__And__Italic",
        # section markings, become "section-marking"
        "P__STAR__STAR__STAR__page_break",
        "P_Prose_Formatting__And__Centre_Alignment",
        "P__STAR__STAR__STAR__page_break__And__Page_Break",
        "P_TEXTBODY_CENTERALIGN_PAGEBREAK",
        "P_TEXTBODY_CENTERALIGN",
        "P_TEXTBODY_CENTERALIGN__And__Page_Break",
        "P_Chapter_Header",
        # letter-spacing after the big first letter of a chapter
        "C_Current__And__Properties__And__Times_New_Roman",
        # uppercase transforms on already uppercase text
        "C_Nanomachines__And__Times_New_Roman__And__Capitals",
        "C_Current__And__Times_New_Roman__And__Capitals",
        # author signatures, become "signature"
        "P_Normal__And__Right_Alignment__And__Left_Indent__And__Spacing_After__And__Spacing_Before",
        "P_Prose_Formatting__And__Right_Alignment",
        "P_TEXTBODY_CENTERALIGN__And__Right_Alignment",
        # extra indentation, becomes "extra-indent"
        "P_Prose_Formatting__And__Left_Indent",
        "P_Prose_Formatting__And__Left_Indent__OPENPAR_1_CLOSEPAR_",
        # follows a forced page break
        "P_Prose_Formatting__And__Page_Break",
        # smaller "About the Author" heading
        "C_Current__And__Small_Capitals",
        "C_No_Tail_Q__And__Times_New_Roman",
    }
)

STYLES_TO_IGNORE = HANDLED_STYLES + ("margin-left",)

ContentOpfHookFactory = Callable[[InputContext, OutputContext], Callable[[ContentOpfParts], None]]


def matcher(pattern: re.Pattern[str]) -> Callable[[str], bool]:
    def seven_seas_matcher(name: str) -> bool:
        return pattern.search(name) is not None

    return seven_seas_matcher


def seven_seas_element_hook(
    orig_elem: Tag,
    style: ComputedStyle,
    tracker: PElemTracker,
    parent_elem: Tag,
    doc_new: BeautifulSoup,
    styles: StyleResolver,
) -> None:
    if style.length_px("margin-left") > 0:
        add_class(enclosing_block(parent_elem), EXTRA_INDENT_CLASS)
    # the oversized first letter of a chapter
    if (
        not provides_semantic(tracker, parent_elem, "strong")
        and style.font_size_px >= styles.body_font_size_px() * BIG_LETTER_FONT_RATIO
    ):
        tracker.set_new_elem(doc_new.new_tag("strong"))


@dataclass
class SevenSeasConfig:
    """Deltas of one publisher module on top of the shared pipeline."""

    files_to_filter: re.Pattern[str] = DEFAULT_FILES_TO_FILTER_OUT_REGEX
    titles_to_filter: re.Pattern[str] = DEFAULT_TITLES_TO_FILTER_OUT_REGEX
    get_title: Callable[[SourceDocument, "SevenSeasConfig"], EntryInformation] | None = None
    get_title_hook: GetTitleHook | None = None
    named_patterns: tuple[re.Pattern[str], ...] = ()
    is_title: IsTitle | None = None
    title_font_ratio: float = DEFAULT_TITLE_FONT_RATIO
    gen_text_id_data: GenTextIdData | None = None
    gen_img_id_data: GenImageIdData | None = None
    gen_chapter_header_content: GenChapterHeader | None = None
    determine_reset: DetermineReset | None = None
    check_element: Callable[[Tag], bool] | None = None
    header_search_count: int | None = None
    element_hook: ElementHook | None = seven_seas_element_hook
    combine_hook: CombineHook | None = None
    combine_paragraphs: bool = True
    warn_classes: bool = True
    classes_to_ignore: frozenset[str] = CLASSES_TO_IGNORE
    styles_to_ignore: tuple[str, ...] = STYLES_TO_IGNORE
    extra_classes_to_ignore: tuple[str, ...] = ()
    extra_styles_to_ignore: tuple[str, ...] = ()
    extra_trackers: tuple[str, ...] = ()
    content_opf_hook: ContentOpfHookFactory | None = None


def get_title(document: SourceDocument, config: SevenSeasConfig) -> EntryInformation:
    return classify(document.title, named_patterns=config.named_patterns, hook=config.get_title_hook)


def cached_is_title_options(document: SourceDocument, state: ProcessingState) -> None:
    state.title_cache = TitleCache(body_font_size_px=document.styles.body_font_size_px())


def font_size_title(ratio: float) -> IsTitle:
    """A title predicate that also accepts text noticeably larger than the body text."""

    def is_title(
        document: SourceDocument,
        elem: Tag,
        entry: EntryInformation,
        state: ProcessingState,
    ) -> bool | str:
        processed = xml_to_string(elem.get_text())
        if not processed:
            return False
        if entry.title and (processed == entry.title or entry.title in processed):
            return processed
        if entry.title and convert_title_compare(entry.title) in convert_title_compare(processed):
            return True
        # Seven Seas headings carry an "auto_bookmark_toc_*" id in most books
        elem_id = elem.get("id")
        if isinstance(elem_id, str) and "auto_bookmark_toc_" in elem_id:
            return True

        if state.title_cache is not None:
            body_px = state.title_cache.body_font_size_px
        else:
            body_px = document.styles.body_font_size_px()
        # headings wrap their text in a span that carries the font-size
        inner = element_children(elem)
        use_elem = inner[0] if inner else elem
        if document.styles.computed(use_elem).font_size_px >= body_px * ratio:
            return xml_to_string(use_elem.get_text()) or False
        return False

    return is_title


is_title = font_size_title(DEFAULT_TITLE_FONT_RATIO)


def determine_reset(document: SourceDocument, entry: EntryInformation, state: ProcessingState) -> bool:
    # galleries split over several files stay one entry
    if entry.img_type in (ImgType.FRONTMATTER, ImgType.BACKMATTER) and entry.same_entry(state.last_entry):
        return False
    return True


def gen_text_id_data(state: ProcessingState, entry: EntryInformation, extra: TextIdExtra) -> TextIdData:
    trackers = state.trackers
    sub = trackers[Tracker.CURRENT_SUB_CHAPTER]
    base = f"chapter{trackers[Tracker.CHAPTER]}"
    subtype = XhtmlSubtype.text()
    dec_chapter = False

    lowered = entry.title.lower()
    # copyright pages sit between the cover and the frontmatter, they are no chapter
    if "copyright" in lowered:
        state.img_type = ImgType.FRONTMATTER
        dec_chapter = True
        base = "copyright"
        subtype = XhtmlSubtype.credits()
    if "afterword" in lowered:
        state.img_type = ImgType.BACKMATTER
        dec_chapter = True
        base = "afterword"

    if sub > 0:
        base += f"_{sub}"
    if extra.increased_chapter_with_title and dec_chapter:
        trackers.decrement(Tracker.CHAPTER)

    return TextIdData(section_id=base, subtype=subtype)


def gen_chapter_header_content(doc_new: BeautifulSoup, entry: EntryInformation, h1: Tag) -> None:
    h1.append(entry.first_line or entry.title)
    if entry.second_line is not None:
        h1.append(doc_new.new_tag("br"))
        h1.append(entry.second_line)


def image_id_data_for(state: ProcessingState, ext: str) -> ImageIdData:
    """Number an image by the current implicit image type."""
    trackers = state.trackers
    if state.img_type is ImgType.FRONTMATTER:
        num = trackers.increment(Tracker.FRONTMATTER)
        return ImageIdData(
            section_id=f"frontmatter{num}{ext}",
            img_filename=f"Frontmatter{num}{ext}",
            xhtml_filename=f"frontmatter{num}",
            img_type=ImgType.FRONTMATTER,
        )
    if state.img_type is ImgType.BACKMATTER:
        num = trackers.increment(Tracker.BACKMATTER)
        return ImageIdData(
            section_id=f"backmatter{num}{ext}",
            img_filename=f"Backmatter{num}{ext}",
            xhtml_filename=f"backmatter{num}",
            img_type=ImgType.BACKMATTER,
        )
    if state.img_type is ImgType.COVER:
        return ImageIdData(
            section_id=f"cover{ext}",
            img_filename=f"Cover{ext}",
            xhtml_filename=COVER_XHTML_FILENAME,
            img_class=ImgClass.COVER,
            img_type=ImgType.COVER,
        )
    num = trackers.increment(Tracker.INSERT)
    return ImageIdData(
        section_id=f"insert{num}{ext}",
        img_filename=f"Insert{num}{ext}",
        xhtml_filename=f"insert{num}",
    )


def gen_img_id_data(state: ProcessingState, source: Path, img: Tag, entry: EntryInformation) -> ImageIdData:
    # only one cover; later images of a cover entry are frontmatter
    if state.img_type is ImgType.COVER:
        state.img_type = ImgType.FRONTMATTER
    if is_cover_title(entry.title):
        state.img_type = ImgType.COVER
    return image_id_data_for(state, source.suffix)


def build_hooks(config: SevenSeasConfig) -> SegmentHooks:
    options = TranscribeOptions(
        classes_to_ignore=config.classes_to_ignore,
        styles_to_ignore=config.styles_to_ignore,
        warn_classes=config.warn_classes,
        element_hook=config.element_hook,
        combine_hook=config.combine_hook,
    ).extended(config.extra_classes_to_ignore, config.extra_styles_to_ignore)
    return SegmentHooks(
        gen_text_id_data=config.gen_text_id_data or gen_text_id_data,
        gen_image_id_data=config.gen_img_id_data or gen_img_id_data,
        gen_chapter_header_content=config.gen_chapter_header_content or gen_chapter_header_content,
        transcribe_options=options,
        combine_paragraphs=config.combine_paragraphs,
        is_title=config.is_title or font_size_title(config.title_font_ratio),
        cached_is_title_options=cached_is_title_options,
        check_element=config.check_element,
        determine_reset=config.determine_reset or determine_reset,
        header_search_count=config.header_search_count,
    )


def process_html_file(
    path: Path,
    ctx: OutputContext,
    state: ProcessingState,
    config: SevenSeasConfig,
    hooks: SegmentHooks,
) -> list[XhtmlFile]:
    document = SourceDocument.load(path)
    entry = (config.get_title or get_title)(document, config)

    if entry.type is EntryType.IGNORE:
        debug_log(f'Ignoring "{path.name}" ("{entry.title}")')
        return []
    # "Insert" is the default, it is only set through an in-body title
    if entry.img_type is not ImgType.INSERT:
        state.img_type = entry.img_type
    if config.titles_to_filter.search(entry.first_line or entry.title):
        debug_log(f'Skipping "{path.name}" because its title is in the filter regex')
        return []

    emitted = do_text_content(document, entry, ctx, state, hooks)
    state.last_entry = entry
    return emitted


def default_content_opf_hook(input_ctx: InputContext, ctx: OutputContext) -> Callable[[ContentOpfParts], None]:
    def content_opf_hook(parts: ContentOpfParts) -> None:
        copy_metadata(parts, input_ctx.metadata, ctx, input_ctx.unique_identifier)
        series = parse_series(ctx.title)
        if series is None:
            warn(f'Found no series captures for "{ctx.title}"')
            return
        apply_series_metadata(parts, series)

    return content_opf_hook


def _relative_name(path: Path, root: Path) -> str:
    return Path(os.path.relpath(path, root)).as_posix()


def _is_skipped_package_file(path: Path, media_type: str, input_ctx: InputContext) -> bool:
    if path == input_ctx.content_opf_path or media_type == OPF_MIMETYPE:
        return True
    return path.suffix.lower() == ".ncx" or media_type == NCX_MIMETYPE


def process(options: ConverterOptions, config: SevenSeasConfig) -> Path:
    """Convert ``options.input_path`` and return the written EPUB (or debug directory)."""
    with InputContext.load(options.input_path) as input_ctx, OutputContext(
        input_ctx.title,
        pretty=options.debug_output,
        uid=input_ctx.unique_identifier_value,
        extra_trackers=config.extra_trackers,
    ) as ctx:
        state = ProcessingState(trackers=ctx.trackers)
        hooks = build_hooks(config)
        ctx.write_stylesheet()

        for file in input_ctx.files:
            relative = _relative_name(file.file_path, input_ctx.root_dir)
            if config.files_to_filter.search(relative):
                debug_log(f'Skipping file "{file.id}" because it is in the filter regex')
                continue
            if _is_skipped_package_file(file.file_path, file.media_type, input_ctx):
                continue

            media_type = file.media_type
            debug_log(f'Processing file "{file.id}", {media_type}')
            # images are copied when a page references them, our own stylesheet replaces the source ones
            if "image" in media_type.lower() or media_type == CSS_MIMETYPE:
                continue
            if isinstance(file, InputXhtmlFile):
                process_html_file(file.file_path, ctx, state, config, hooks)
                continue
            if file.file_path.suffix.lower() in HTML_EXTS:
                debug_log(f'Skipping "{file.id}" because it is not in the spine')
                continue

            warn(f'Unhandled mimetype "{media_type}" of "{relative}"')

        hook_factory = config.content_opf_hook or default_content_opf_hook
        return ctx.finish(options.output_path, hook_factory(input_ctx, ctx))


__all__ = [
    "BIG_LETTER_FONT_RATIO",
    "CLASSES_TO_IGNORE",
    "COVER_XHTML_FILENAME",
    "DEFAULT_FILES_TO_FILTER_OUT_REGEX",
    "DEFAULT_TITLES_TO_FILTER_OUT_REGEX",
    "DEFAULT_TITLE_FONT_RATIO",
    "STYLES_TO_IGNORE",
    "SevenSeasConfig",
    "build_hooks",
    "cached_is_title_options",
    "default_content_opf_hook",
    "determine_reset",
    "font_size_title",
    "gen_chapter_header_content",
    "gen_img_id_data",
    "gen_text_id_data",
    "get_title",
    "image_id_data_for",
    "is_title",
    "matcher",
    "process",
    "process_html_file",
    "seven_seas_element_hook",
]
