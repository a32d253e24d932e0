from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Iterable

from bs4 import BeautifulSoup, CData, Comment, Declaration, Doctype, NavigableString, PageElement, ProcessingInstruction, Tag

from .diagnostics import debug_log, warn
from .styles import ComputedStyle, StyleResolver
from .xhtml import add_class, class_list, parent_has, traverse_parent

# Inline style properties that transcription handles (or deliberately drops)
HANDLED_STYLES = (
    "font-style",
    "font-weight",
    "color",
    "font-size",
    "text-transform",
    "vertical-align",
    "letter-spacing",
    "text-decoration",
    "text-align",
)

SECTION_MARKING_CLASS = "section-marking"
SIGNATURE_CLASS = "signature"

_SKIPPED_NODE_TYPES = (Comment, CData, ProcessingInstruction, Declaration, Doctype)
_COMBINE_END_RE = re.compile(r"\w\s$")


@dataclass
class PElemTracker:
    """The chain of wrapper elements created for one source element."""

    top: Tag | None = None
    current: Tag | None = None

    def set_new_elem(self, elem: Tag) -> None:
        if self.current is None:
            self.top = elem
        else:
            self.current.append(elem)
        self.current = elem


ElementHook = Callable[[Tag, ComputedStyle, PElemTracker, Tag, BeautifulSoup, StyleResolver], None]
CombineHook = Callable[[Tag, list[PageElement]], bool]


@dataclass
class TranscribeOptions:
    """Per-publisher knobs for :func:`transcribe`.

    ``element_hook`` runs after the common style handling and may add wrappers
    to the tracker or classes to the output parent. ``combine_hook`` returns
    True to veto merging a paragraph into the previous one.
    """

    classes_to_ignore: frozenset[str] = frozenset()
    styles_to_ignore: tuple[str, ...] = HANDLED_STYLES
    warn_classes: bool = True
    element_hook: ElementHook | None = None
    combine_hook: CombineHook | None = None
    _style_re: re.Pattern[str] | None = field(default=None, init=False, repr=False)

    def extended(self, classes: Iterable[str] = (), styles: Iterable[str] = ()) -> "TranscribeOptions":
        return TranscribeOptions(
            classes_to_ignore=self.classes_to_ignore | frozenset(classes),
            styles_to_ignore=self.styles_to_ignore + tuple(styles),
            warn_classes=self.warn_classes,
            element_hook=self.element_hook,
            combine_hook=self.combine_hook,
        )

    def style_is_handled(self, declaration: str) -> bool:
        if self._style_re is None:
            pattern = "|".join(re.escape(style) for style in self.styles_to_ignore) or r"(?!)"
            self._style_re = re.compile(pattern, re.IGNORECASE)
        return bool(self._style_re.search(declaration))


def provides_semantic(tracker: PElemTracker, parent_elem: Tag, name: str) -> bool:
    if parent_has(parent_elem, name):
        return True
    return tracker.current is not None and parent_has(tracker.current, name)


def enclosing_block(elem: Tag, stop_tag: str = "p") -> Tag:
    """The nearest ``stop_tag`` ancestor of ``elem`` (or the outermost reachable one)."""
    last = elem
    for node in traverse_parent(elem, stop_tag):
        last = node
    return last


def process_common_style(
    tracker: PElemTracker,
    parent_elem: Tag,
    doc_new: BeautifulSoup,
    orig_elem: Tag,
    style: ComputedStyle,
) -> None:
    """Wrap for bold/italic/sup/sub/underline/strike and mark paragraph alignment."""
    if style.is_bold and not provides_semantic(tracker, parent_elem, "strong"):
        tracker.set_new_elem(doc_new.new_tag("strong"))
    if style.is_italic and not provides_semantic(tracker, parent_elem, "em"):
        tracker.set_new_elem(doc_new.new_tag("em"))
    vertical = style.vertical_align
    if vertical in ("super", "top", "text-top") and not provides_semantic(tracker, parent_elem, "sup"):
        tracker.set_new_elem(doc_new.new_tag("sup"))
    elif vertical in ("sub", "bottom", "text-bottom") and not provides_semantic(tracker, parent_elem, "sub"):
        tracker.set_new_elem(doc_new.new_tag("sub"))
    decorations = style.text_decorations
    if "underline" in decorations and not provides_semantic(tracker, parent_elem, "u"):
        tracker.set_new_elem(doc_new.new_tag("u"))
    if "line-through" in decorations and not provides_semantic(tracker, parent_elem, "s"):
        tracker.set_new_elem(doc_new.new_tag("s"))

    if not orig_elem.get_text().strip():
        return
    alignment = style.text_align
    if alignment == "center":
        add_class(enclosing_block(parent_elem), SECTION_MARKING_CLASS)
    elif alignment == "right":
        add_class(enclosing_block(parent_elem), SIGNATURE_CLASS)


def _report_unhandled(orig_elem: Tag, options: TranscribeOptions) -> None:
    style_attr = orig_elem.get("style")
    if isinstance(style_attr, str):
        for declaration in (part.strip() for part in style_attr.split(";")):
            if declaration and not options.style_is_handled(declaration):
                warn(f'Unhandled style found: "{declaration}"')
    if options.warn_classes:
        for name in class_list(orig_elem):
            if name not in options.classes_to_ignore:
                warn(f'Encountered unknown class "{name}" on <{orig_elem.name}>')


def transcribe(
    orig_node: PageElement,
    doc_new: BeautifulSoup,
    parent_elem: Tag,
    styles: StyleResolver,
    options: TranscribeOptions,
) -> list[PageElement]:
    """Transform a source node into nodes for ``parent_elem`` of ``doc_new``.

    The returned nodes are not attached; the caller appends them in order.
    """
    if isinstance(orig_node, _SKIPPED_NODE_TYPES):
        return []
    if isinstance(orig_node, NavigableString):
        return [NavigableString(str(orig_node))]
    if not isinstance(orig_node, Tag):
        warn(f"Encountered unhandled node type {type(orig_node).__name__}")
        return []

    if orig_node.name == "br":
        return [doc_new.new_tag("br")]

    tracker = PElemTracker()
    style = styles.computed(orig_node)
    process_common_style(tracker, parent_elem, doc_new, orig_node, style)
    if options.element_hook is not None:
        options.element_hook(orig_node, style, tracker, parent_elem, doc_new, styles)
    _report_unhandled(orig_node, options)

    if tracker.top is None or tracker.current is None:
        nodes: list[PageElement] = []
        for child in list(orig_node.children):
            nodes.extend(transcribe(child, doc_new, parent_elem, styles, options))
        return nodes

    # attached while the children are transcribed so ancestor checks see the whole chain
    parent_elem.append(tracker.top)
    current = tracker.current
    for child in list(orig_node.children):
        for node in transcribe(child, doc_new, current, styles, options):
            current.append(node)
    return [tracker.top.extract()]


def combine_with_last_node(main_elem: Tag, nodes: list[PageElement], options: TranscribeOptions) -> Tag | None:
    """Append ``nodes`` into the previous paragraph when it ends mid-sentence.

    Returns that paragraph when the nodes were consumed, else None.
    """
    if not nodes:
        return None
    last = None
    for child in reversed(main_elem.contents):
        if isinstance(child, Tag):
            last = child
            break
        if str(child).strip():
            break
    if last is None or last.name != "p":
        return None
    text = last.get_text()
    if len(text) <= 5 or not _COMBINE_END_RE.search(text):
        return None
    if options.combine_hook is not None and options.combine_hook(last, nodes):
        debug_log("Previous paragraph did not end correctly, but the combine hook prevented merging")
        return None
    debug_log("Previous paragraph did not end correctly, combining with the current one")
    for node in nodes:
        if isinstance(node, Tag) and node.name == "br":
            continue
        last.append(node)
    return last


__all__ = [
    "HANDLED_STYLES",
    "PElemTracker",
    "SECTION_MARKING_CLASS",
    "SIGNATURE_CLASS",
    "TranscribeOptions",
    "combine_with_last_node",
    "enclosing_block",
    "process_common_style",
    "provides_semantic",
    "transcribe",
]
