from __future__ import annotations

import tempfile
import xml.etree.ElementTree as ET
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import unquote

from bs4 import BeautifulSoup, Tag

from .diagnostics import debug_log
from .strings import fix_spaces
from .styles import StyleResolver
from .xhtml import CONTAINER_NS, DC_NS, HTML_EXTS, XHTML_MIMETYPE, StructureError, parse_xml, query_defined


@dataclass(frozen=True)
class InputFile:
    id: str
    file_path: Path
    media_type: str


@dataclass(frozen=True)
class InputXhtmlFile(InputFile):
    """A spine document; ``spine_index`` is its position in reading order."""

    spine_index: int = 0


def _find_opf_path(root_dir: Path) -> Path:
    container_path = root_dir / "META-INF" / "container.xml"
    if container_path.is_file():
        root = ET.fromstring(container_path.read_bytes())
        for rootfile in root.findall(".//c:rootfile", {"c": CONTAINER_NS}):
            full = rootfile.attrib.get("full-path")
            if full:
                return root_dir / unquote(full)
    for candidate in sorted(root_dir.rglob("*.opf")):
        return candidate
    raise FileNotFoundError(f"OPF file not found in {root_dir}")


@dataclass
class InputContext:
    """The package (manifest, spine, metadata) of one source EPUB."""

    root_dir: Path
    content_opf_path: Path
    title: str
    files: list[InputFile]
    metadata: list[ET.Element] = field(default_factory=list)
    unique_identifier: str | None = None
    unique_identifier_value: str | None = None
    _scratch: tempfile.TemporaryDirectory | None = field(default=None, repr=False)

    @classmethod
    def load(cls, input_path: Path) -> "InputContext":
        """Read an ``.epub`` (extracted to a scratch directory) or an already extracted tree."""
        scratch: tempfile.TemporaryDirectory | None = None
        if input_path.is_dir():
            root_dir = input_path.resolve()
        else:
            scratch = tempfile.TemporaryDirectory(prefix="converty-in-")
            root_dir = Path(scratch.name).resolve()
            try:
                with zipfile.ZipFile(input_path) as zf:
                    zf.extractall(root_dir)
            except BaseException:
                scratch.cleanup()
                raise
        try:
            ctx = cls._from_root(root_dir)
        except BaseException:
            if scratch is not None:
                scratch.cleanup()
            raise
        ctx._scratch = scratch
        return ctx

    @classmethod
    def _from_root(cls, root_dir: Path) -> "InputContext":
        opf_path = _find_opf_path(root_dir)
        root = ET.fromstring(opf_path.read_bytes())
        # Resolve namespaces loosely
        nsmap = {"opf": root.tag.split("}")[0].strip("{")} if root.tag.startswith("{") else {"opf": ""}
        opf_dir = opf_path.parent

        metadata_elem = root.find("opf:metadata", nsmap)
        metadata = list(metadata_elem) if metadata_elem is not None else []
        title = ""
        for elem in metadata:
            if elem.tag == f"{{{DC_NS}}}title" and elem.text:
                title = fix_spaces(elem.text)
                break
        if not title:
            raise StructureError(f'Expected "dc:title" in "{opf_path}"')

        unique_identifier = root.attrib.get("unique-identifier")
        unique_value = None
        for elem in metadata:
            if elem.tag == f"{{{DC_NS}}}identifier" and unique_identifier and elem.attrib.get("id") == unique_identifier:
                unique_value = (elem.text or "").strip() or None

        manifest: dict[str, InputFile] = {}
        manifest_order: list[str] = []
        for item in root.findall(".//opf:manifest/opf:item", nsmap):
            item_id = item.attrib.get("id")
            href = item.attrib.get("href")
            if not item_id or not href:
                continue
            media_type = item.attrib.get("media-type") or ""
            manifest[item_id] = InputFile(
                id=item_id,
                file_path=(opf_dir / unquote(href.split("#", 1)[0])).resolve(),
                media_type=media_type,
            )
            manifest_order.append(item_id)

        files: list[InputFile] = []
        in_spine: set[str] = set()
        for index, itemref in enumerate(root.findall(".//opf:spine/opf:itemref", nsmap)):
            idref = itemref.attrib.get("idref")
            base = manifest.get(idref or "")
            if base is None or idref in in_spine:
                continue
            in_spine.add(base.id)
            files.append(
                InputXhtmlFile(
                    id=base.id,
                    file_path=base.file_path,
                    media_type=base.media_type or XHTML_MIMETYPE,
                    spine_index=index,
                )
            )
        if not files:
            # Spine-less packages: fall back to every HTML document in manifest order
            for item_id in manifest_order:
                base = manifest[item_id]
                if base.file_path.suffix.lower() in HTML_EXTS:
                    in_spine.add(item_id)
                    files.append(InputXhtmlFile(base.id, base.file_path, base.media_type, len(files)))
        for item_id in manifest_order:
            if item_id not in in_spine:
                files.append(manifest[item_id])

        debug_log(f'Loaded input "{title}" with {len(files)} files ({len(in_spine)} in spine)')
        return cls(
            root_dir=root_dir,
            content_opf_path=opf_path,
            title=title,
            files=files,
            metadata=metadata,
            unique_identifier=unique_identifier,
            unique_identifier_value=unique_value,
        )

    def close(self) -> None:
        if self._scratch is not None:
            self._scratch.cleanup()
            self._scratch = None

    def __enter__(self) -> "InputContext":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


@dataclass
class SourceDocument:
    """A parsed source XHTML document and the styles that apply to it."""

    path: Path
    soup: BeautifulSoup
    styles: StyleResolver

    @classmethod
    def load(cls, path: Path) -> "SourceDocument":
        soup = parse_xml(path.read_bytes())
        stylesheets: list[str] = []
        head = soup.find("head")
        if isinstance(head, Tag):
            for link in head.find_all("link"):
                rel = link.get("rel")
                rels = rel.split() if isinstance(rel, str) else list(rel or [])
                href = link.get("href")
                if "stylesheet" not in [value.lower() for value in rels] or not href:
                    continue
                css_path = (path.parent / unquote(href)).resolve()
                if not css_path.is_file():
                    raise StructureError(f'Linked stylesheet "{href}" of "{path.name}" does not exist')
                stylesheets.append(css_path.read_text(encoding="utf-8", errors="replace"))
        for style_elem in soup.find_all("style"):
            stylesheets.append(style_elem.get_text())
        return cls(path=path, soup=soup, styles=StyleResolver(soup, stylesheets))

    @property
    def title(self) -> str:
        title_elem = query_defined(self.soup, "head > title")
        return fix_spaces(title_elem.get_text())

    @property
    def body(self) -> Tag:
        return query_defined(self.soup, "body")


__all__ = ["InputContext", "InputFile", "InputXhtmlFile", "SourceDocument"]
