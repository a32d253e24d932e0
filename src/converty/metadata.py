from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass

from .diagnostics import debug_log
from .output import ContentOpfParts, OutputContext
from .xhtml import DC_NS, StructureError

SERIES_MATCH_REGEX = re.compile(r"^(?P<series>.+?)(?: (?:Vol\.|Volume) (?P<num>\d+))?$", re.IGNORECASE)

# Dublin Core elements carried over from the source package, "title" is generated
COPIED_DC_ELEMENTS = (
    "publisher",
    "language",
    "creator",
    "contributor",
    "date",
    "rights",
    "description",
    "subject",
    "identifier",
)
_REFINABLE_DC_ELEMENTS = {"creator", "contributor"}


@dataclass(frozen=True)
class SeriesInfo:
    name: str
    volume: str


def _strip_tag(tag: str) -> str:
    return tag.split("}", 1)[-1] if "}" in tag else tag


def _namespace(tag: str) -> str:
    return tag[1:].split("}", 1)[0] if tag.startswith("{") else ""


def parse_series(title: str) -> SeriesInfo | None:
    match = SERIES_MATCH_REGEX.match(title.strip())
    if match is None:
        return None
    series = match.group("series")
    if not series:
        raise StructureError(f'Expected regex group "series" for title "{title}"')
    return SeriesInfo(name=series, volume=match.group("num") or "1")


def copy_metadata(
    parts: ContentOpfParts,
    source_metadata: list[ET.Element],
    ctx: OutputContext,
    unique_identifier: str | None = None,
) -> None:
    """Copy a subset of the source package metadata into the generated content.opf."""
    soup = parts.document
    renamed_ids: dict[str, str] = {}

    for elem in source_metadata:
        if _namespace(elem.tag) != DC_NS:
            continue
        name = _strip_tag(elem.tag)
        if name not in COPIED_DC_ELEMENTS:
            continue
        text = (elem.text or "").strip()
        if not text:
            continue
        source_id = elem.attrib.get("id")
        if name == "identifier" and unique_identifier is not None and source_id == unique_identifier:
            # already written as the package's pub-id
            continue
        attrs: dict[str, str] = {}
        if name in _REFINABLE_DC_ELEMENTS or name == "identifier":
            new_id = parts.id_counter.next_id()
            attrs["id"] = new_id
            if source_id:
                renamed_ids[source_id] = new_id
        for attr, value in elem.attrib.items():
            local = _strip_tag(attr)
            # EPUB2 style opf:role / opf:file-as / opf:scheme stay as attributes
            if _namespace(attr) and local in ("role", "file-as", "scheme"):
                attrs[f"opf:{local}"] = value
        new_elem = soup.new_tag(name, namespace=DC_NS, nsprefix="dc", attrs=attrs)
        new_elem.string = text
        parts.metadata.append(new_elem)

    cover = ctx.cover_image()
    for elem in source_metadata:
        if _strip_tag(elem.tag) != "meta":
            continue
        refines = elem.attrib.get("refines")
        if refines:
            target = renamed_ids.get(refines.lstrip("#"))
            if target is None:
                continue
            meta = soup.new_tag(
                "meta",
                attrs={key: value for key, value in elem.attrib.items() if key != "refines"} | {"refines": f"#{target}"},
            )
            meta.string = (elem.text or "").strip()
            parts.metadata.append(meta)
        elif elem.attrib.get("name") == "cover":
            if cover is None:
                debug_log("Source declares a cover, but no cover image was generated")
                continue
            parts.metadata.append(soup.new_tag("meta", attrs={"name": "cover", "content": cover.id}))


def apply_series_metadata(parts: ContentOpfParts, series: SeriesInfo) -> None:
    soup = parts.document
    collection_id = parts.id_counter.next_id()
    collection = soup.new_tag("meta", attrs={"id": collection_id, "property": "belongs-to-collection"})
    collection.string = series.name
    parts.metadata.append(collection)
    collection_type = soup.new_tag("meta", attrs={"property": "collection-type", "refines": f"#{collection_id}"})
    collection_type.string = "series"
    parts.metadata.append(collection_type)
    position = soup.new_tag("meta", attrs={"property": "group-position", "refines": f"#{collection_id}"})
    position.string = series.volume
    parts.metadata.append(position)


__all__ = [
    "COPIED_DC_ELEMENTS",
    "SERIES_MATCH_REGEX",
    "SeriesInfo",
    "apply_series_metadata",
    "copy_metadata",
    "parse_series",
]
