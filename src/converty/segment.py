"""Split one source document into output XHTML pages.

:func:`do_text_content` walks the direct children of a source ``<body>`` and
regroups them into text pages and one-image pages, numbering them through the
trackers of the output context. Publisher behavior is injected through
:class:`SegmentHooks`; the mutable run state lives in :class:`ProcessingState`.
"""

from __future__ import annotations

import html
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Callable
from urllib.parse import unquote

from bs4 import BeautifulSoup, Tag

from .diagnostics import debug_log, warn
from .entries import EntryInformation
from .input import SourceDocument
from .output import (
    FileDir,
    ImgClass,
    ImgType,
    OutputContext,
    Tracker,
    Trackers,
    XhtmlFile,
    XhtmlSubtype,
    copy_image,
    finish_dom_to_file,
)
from .strings import xml_to_string
from .templates import apply_template, get_template
from .transcribe import TranscribeOptions, combine_with_last_node, transcribe
from .xhtml import add_class, class_list, defined_element, element_children, normalize_id, parse_xml

DEFAULT_HEADER_SEARCH_COUNT = 5
DEFAULT_SKIP_ELEMENTS = 0
EPUB_TYPE_BODYMATTER_CHAPTER = "bodymatter chapter"
STYLESHEET_HREF = f"../{FileDir.STYLES.value}/stylesheet.css"

P_LIKE_TAGS = frozenset({"p", "h1", "h2", "h3", "h4", "h5", "h6"})


class LastProcessedKind(Enum):
    NONE = "none"
    IMAGE = "image"


@dataclass
class TitleCache:
    body_font_size_px: float


@dataclass
class ProcessingState:
    """Mutable state of one conversion run.

    Shared by every document of the run and mutated in place by the engine and
    the publisher hooks; never share one instance between runs.
    """

    trackers: Trackers
    img_type: ImgType = ImgType.FRONTMATTER
    last_kind: LastProcessedKind = LastProcessedKind.NONE
    last_entry: EntryInformation | None = None
    title_cache: TitleCache | None = None


@dataclass(frozen=True)
class TextIdExtra:
    # both only set for the first page of a document
    first_page: bool = False
    increased_chapter_with_title: bool = False


@dataclass
class TextIdData:
    section_id: str
    subtype: XhtmlSubtype = field(default_factory=XhtmlSubtype.text)


@dataclass
class ImageIdData:
    section_id: str
    img_filename: str
    xhtml_filename: str
    img_class: ImgClass = ImgClass.INSERT
    img_type: ImgType = ImgType.INSERT


IsTitle = Callable[[SourceDocument, Tag, EntryInformation, ProcessingState], "bool | str"]
GenTextIdData = Callable[[ProcessingState, EntryInformation, TextIdExtra], TextIdData]
GenImageIdData = Callable[[ProcessingState, Path, Tag, EntryInformation], ImageIdData]
GenChapterHeader = Callable[[BeautifulSoup, EntryInformation, Tag], None]
DetermineReset = Callable[[SourceDocument, EntryInformation, ProcessingState], bool]


def is_h1_title(
    document: SourceDocument,
    elem: Tag,
    entry: EntryInformation,
    state: ProcessingState,
) -> bool | str:
    """Title predicate: the text contains the known title, or the element is an ``<h1>``."""
    processed = xml_to_string(elem.get_text())
    if entry.title and (processed == entry.title or entry.title in processed):
        return processed
    if elem.name == "h1":
        return processed or True
    return False


def always_reset(document: SourceDocument, entry: EntryInformation, state: ProcessingState) -> bool:
    return True


def title_header_content(doc_new: BeautifulSoup, entry: EntryInformation, h1: Tag) -> None:
    h1.append(entry.title)


@dataclass
class SegmentHooks:
    """Publisher specific behavior of :func:`do_text_content`.

    ``gen_text_id_data`` and ``gen_image_id_data`` are required; every other
    field is optional and falls back to the defaults of this module.
    """

    gen_text_id_data: GenTextIdData
    gen_image_id_data: GenImageIdData
    gen_chapter_header_content: GenChapterHeader | None = None
    transcribe_options: TranscribeOptions = field(default_factory=TranscribeOptions)
    combine_paragraphs: bool = True
    is_title: IsTitle | None = None
    cached_is_title_options: Callable[[SourceDocument, ProcessingState], None] | None = None
    check_element: Callable[[Tag], bool] | None = None
    determine_reset: DetermineReset | None = None
    skip_elements: int | None = None
    header_search_count: int | None = None


def create_xhtml_dom(entry: EntryInformation, section_id: str) -> tuple[BeautifulSoup, Tag]:
    text = apply_template(
        get_template("xhtml-ln.xhtml"),
        {
            "TITLE": html.escape(entry.title),
            "SECTIONID": html.escape(section_id),
            "EPUBTYPE": EPUB_TYPE_BODYMATTER_CHAPTER,
            "CSSPATH": STYLESHEET_HREF,
        },
    )
    soup = parse_xml(text)
    main = defined_element(soup.find("div", attrs={"class": "main"}), "div.main")
    return soup, main


def create_img_dom(entry: EntryInformation, section_id: str, img_class: ImgClass, img_src: str) -> BeautifulSoup:
    text = apply_template(
        get_template("img-ln.xhtml"),
        {
            "TITLE": html.escape(entry.title),
            "SECTIONID": html.escape(section_id),
            "EPUBTYPE": EPUB_TYPE_BODYMATTER_CHAPTER,
            "IMGALT": html.escape(section_id),
            "IMGCLASS": img_class.value,
            "IMGSRC": html.escape(img_src),
            "CSSPATH": STYLESHEET_HREF,
        },
    )
    return parse_xml(text)


def find_image(elem: Tag) -> tuple[Tag, str] | None:
    """The first image of ``elem`` (itself included) and its source reference."""
    candidates = [elem] if elem.name in ("img", "image") else []
    candidates.extend(elem.find_all(["img", "image"]))
    for candidate in candidates:
        if candidate.name == "img":
            src = candidate.get("src")
        else:
            src = candidate.get("xlink:href") or candidate.get("href")
        if isinstance(src, str) and src:
            return candidate, src
    return None


def _is_empty(main: Tag) -> bool:
    return len(main.contents) == 0


def _only_header(main: Tag) -> bool:
    children = element_children(main)
    return len(children) == 1 and children[0].name == "h1"


def _gen_text_id(
    hooks: SegmentHooks,
    state: ProcessingState,
    entry: EntryInformation,
    extra: TextIdExtra,
) -> TextIdData:
    data = hooks.gen_text_id_data(state, entry, extra)
    return replace(data, section_id=normalize_id(data.section_id))


def _append_paragraph(
    elem: Tag,
    document: SourceDocument,
    doc_new: BeautifulSoup,
    main: Tag,
    hooks: SegmentHooks,
) -> None:
    p = doc_new.new_tag("p")
    nodes = transcribe(elem, doc_new, p, document.styles, hooks.transcribe_options)
    if hooks.combine_paragraphs:
        merged = combine_with_last_node(main, nodes, hooks.transcribe_options)
        if merged is not None:
            # marks like extra-indent belong to the whole paragraph
            classes = class_list(p)
            if classes:
                add_class(merged, *classes)
            return
    for node in nodes:
        p.append(node)
    if p.contents:
        main.append(p)


def do_text_content(
    document: SourceDocument,
    entry: EntryInformation,
    ctx: OutputContext,
    state: ProcessingState,
    hooks: SegmentHooks,
) -> list[XhtmlFile]:
    """Segment ``document`` into output pages registered on ``ctx``.

    Returns the XHTML files emitted for this document, in emission order.
    """
    is_title = hooks.is_title or is_h1_title
    determine_reset = hooks.determine_reset or always_reset
    gen_chapter_header_content = hooks.gen_chapter_header_content or title_header_content
    header_search_count = hooks.header_search_count
    if header_search_count is None or header_search_count < 0:
        header_search_count = DEFAULT_HEADER_SEARCH_COUNT
    trackers = state.trackers
    emitted: list[XhtmlFile] = []

    if state.last_kind is LastProcessedKind.IMAGE:
        state.last_kind = LastProcessedKind.NONE
        # an image inside running text; the text after it is a new sub-chapter
        if state.img_type is ImgType.INSERT:
            trackers.increment(Tracker.CURRENT_SUB_CHAPTER)

    if hooks.cached_is_title_options is not None:
        hooks.cached_is_title_options(document, state)

    children = element_children(document.body)
    has_title = False
    for elem in children[:header_search_count]:
        found = is_title(document, elem, entry, state)
        if found:
            has_title = True
            # the in-body heading wins over the head title
            if isinstance(found, str):
                entry.title = found
            break

    increased_chapter = False
    if (state.img_type is not ImgType.INSERT or has_title) and determine_reset(document, entry, state):
        trackers.reset(Tracker.CURRENT_SEQ)
        trackers.reset(Tracker.CURRENT_SUB_CHAPTER)
        if has_title:
            state.img_type = ImgType.INSERT
            trackers.increment(Tracker.CHAPTER)
            increased_chapter = True

    first_extra = TextIdExtra(first_page=True, increased_chapter_with_title=increased_chapter)
    text_id = _gen_text_id(hooks, state, entry, first_extra)
    global_index = trackers.increment(Tracker.GLOBAL)

    doc_new, main = create_xhtml_dom(entry, text_id.section_id)
    if trackers[Tracker.CURRENT_SUB_CHAPTER] == 0:
        h1 = doc_new.new_tag("h1")
        gen_chapter_header_content(doc_new, entry, h1)
        main.append(h1)

    def flush_text() -> XhtmlFile:
        return finish_dom_to_file(
            ctx,
            doc_new,
            f"{text_id.section_id}.xhtml",
            FileDir.TEXT,
            title=entry.title,
            seq_index=trackers[Tracker.CURRENT_SEQ],
            global_seq_index=global_index,
            subtype=text_id.subtype,
        )

    to_skip = hooks.skip_elements
    if to_skip is None or to_skip < 0:
        to_skip = DEFAULT_SKIP_ELEMENTS
    for index, elem in enumerate(children):
        if to_skip > 0:
            to_skip -= 1
            continue
        if hooks.check_element is not None and hooks.check_element(elem):
            continue

        image = find_image(elem)
        if elem.name not in P_LIKE_TAGS and image is None:
            if elem.name == "div" and not elem.contents:
                continue
            warn(f'Unhandled element <{elem.name}> in "{document.path.name}"')
            continue

        skip_saving = _is_empty(main) or _only_header(main)

        if image is not None:
            if not skip_saving:
                emitted.append(flush_text())
                trackers.increment(Tracker.CURRENT_SUB_CHAPTER)
                trackers.increment(Tracker.CURRENT_SEQ)

            img_tag, src = image
            source = (document.path.parent / unquote(src)).resolve()
            img_data = hooks.gen_image_id_data(state, source, img_tag, entry)
            image_file = copy_image(ctx, source, img_data.img_filename, img_data.section_id)
            img_doc = create_img_dom(
                entry,
                img_data.section_id,
                img_data.img_class,
                f"../{FileDir.IMAGES.value}/{image_file.file_path.name}",
            )
            emitted.append(
                finish_dom_to_file(
                    ctx,
                    img_doc,
                    f"{img_data.xhtml_filename}.xhtml",
                    FileDir.TEXT,
                    title=entry.title,
                    seq_index=trackers[Tracker.CURRENT_SEQ],
                    global_seq_index=global_index,
                    subtype=XhtmlSubtype.img(img_data.img_class, img_data.img_type),
                )
            )
            trackers.increment(Tracker.CURRENT_SEQ)
            state.last_kind = LastProcessedKind.IMAGE

            # an untouched page keeps collecting text
            if not skip_saving:
                text_id = _gen_text_id(hooks, state, entry, TextIdExtra())
                doc_new, main = create_xhtml_dom(entry, text_id.section_id)
            continue

        if skip_saving and not xml_to_string(elem.get_text()):
            continue

        # the heading line itself must not end up in the body
        check_title = trackers[Tracker.CURRENT_SUB_CHAPTER] == 0 and index < header_search_count
        if check_title and is_title(document, elem, entry, state):
            continue

        _append_paragraph(elem, document, doc_new, main, hooks)

    if not _is_empty(main) and not _only_header(main):
        emitted.append(flush_text())
        trackers.increment(Tracker.CURRENT_SEQ)
    else:
        debug_log("Not saving final DOM, because main element is empty")

    return emitted


__all__ = [
    "DEFAULT_HEADER_SEARCH_COUNT",
    "DEFAULT_SKIP_ELEMENTS",
    "ImageIdData",
    "LastProcessedKind",
    "P_LIKE_TAGS",
    "ProcessingState",
    "SegmentHooks",
    "TextIdData",
    "TextIdExtra",
    "TitleCache",
    "always_reset",
    "create_img_dom",
    "create_xhtml_dom",
    "do_text_content",
    "find_image",
    "is_h1_title",
    "title_header_content",
]
