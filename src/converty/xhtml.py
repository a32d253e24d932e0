from __future__ import annotations

import re
from typing import Iterator

from bs4 import BeautifulSoup, FeatureNotFound, Tag

XHTML_MIMETYPE = "application/xhtml+xml"
CSS_MIMETYPE = "text/css"
NCX_MIMETYPE = "application/x-dtbncx+xml"
OPF_MIMETYPE = "application/oebps-package+xml"
EPUB_MIMETYPE = "application/epub+zip"

XHTML_NS = "http://www.w3.org/1999/xhtml"
OPF_NS = "http://www.idpf.org/2007/opf"
DC_NS = "http://purl.org/dc/elements/1.1/"
CONTAINER_NS = "urn:oasis:names:tc:opendocument:xmlns:container"

HTML_EXTS = (".xhtml", ".html", ".htm")


class StructureError(RuntimeError):
    """Raised when a document does not have the shape a converter expects."""


def parse_xml(text: str | bytes) -> BeautifulSoup:
    """Parse XHTML/OPF/NCX text; falls back to the builtin parser when lxml is missing."""
    for parser in ("lxml-xml", "xml"):
        try:
            return BeautifulSoup(text, parser)
        except FeatureNotFound:
            continue
    return BeautifulSoup(text, "html.parser")


def defined_element(elem: Tag | None, name: str) -> Tag:
    if elem is None:
        raise StructureError(f'Expected Node "{name}" to be defined')
    return elem


def query_defined(node: BeautifulSoup | Tag, selector: str) -> Tag:
    return defined_element(node.select_one(selector), selector)


def class_list(tag: Tag) -> list[str]:
    # XML parsers keep "class" as one string, HTML parsers split it
    value = tag.get("class")
    if value is None:
        return []
    if isinstance(value, str):
        return value.split()
    return list(value)


def add_class(tag: Tag, *names: str) -> None:
    classes = class_list(tag)
    for name in names:
        if name not in classes:
            classes.append(name)
    tag["class"] = " ".join(classes)


def traverse_parent(elem: Tag | None, stop_tag: str | None = None) -> Iterator[Tag]:
    """Yield ``elem`` and its ancestors, ending after ``stop_tag`` (inclusive) or at the document."""
    current = elem
    while isinstance(current, Tag) and not isinstance(current, BeautifulSoup):
        yield current
        if stop_tag is not None and current.name == stop_tag:
            return
        current = current.parent


def parent_has(elem: Tag | None, name: str, stop_tag: str | None = "p") -> bool:
    return any(node.name == name for node in traverse_parent(elem, stop_tag))


def element_children(tag: Tag) -> list[Tag]:
    return [child for child in tag.children if isinstance(child, Tag)]


def serialize(soup: BeautifulSoup, pretty: bool = False) -> str:
    if pretty:
        return soup.prettify()
    return str(soup)


_ID_INVALID_RE = re.compile(r"^[^a-zA-Z]+|[^a-zA-Z0-9\-_.]")


def normalize_id(value: str) -> str:
    """Turn a file name into an XML-safe manifest id."""
    normalized = _ID_INVALID_RE.sub("", value)
    if not normalized:
        raise StructureError(f'Normalized id for "{value}" is empty')
    return normalized


__all__ = [
    "CONTAINER_NS",
    "CSS_MIMETYPE",
    "DC_NS",
    "EPUB_MIMETYPE",
    "HTML_EXTS",
    "NCX_MIMETYPE",
    "OPF_MIMETYPE",
    "OPF_NS",
    "StructureError",
    "XHTML_MIMETYPE",
    "XHTML_NS",
    "add_class",
    "class_list",
    "defined_element",
    "element_children",
    "normalize_id",
    "parent_has",
    "parse_xml",
    "query_defined",
    "serialize",
    "traverse_parent",
]
