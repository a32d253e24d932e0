from __future__ import annotations

import html
import mimetypes
import os
import shutil
import tempfile
import uuid
import zipfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Union

from bs4 import BeautifulSoup, Tag

from .diagnostics import debug_log, warn
from .strings import string_to_filename
from .templates import apply_template, get_template
from .xhtml import (
    CSS_MIMETYPE,
    DC_NS,
    EPUB_MIMETYPE,
    NCX_MIMETYPE,
    XHTML_MIMETYPE,
    StructureError,
    normalize_id,
    parse_xml,
    query_defined,
    serialize,
)

ROOT_DIRNAME = "OEBPS"
CONTENT_OPF_FILENAME = "content.opf"
TOC_XHTML_FILENAME = "toc.xhtml"
TOC_NCX_FILENAME = "toc.ncx"
TOC_TITLE = "Table Of Contents"
STYLESHEET_ID = "stylesheet"


class FileDir(str, Enum):
    TEXT = "Text"
    IMAGES = "Images"
    STYLES = "Styles"


class ImgClass(str, Enum):
    COVER = "cover"
    INSERT = "insert"


class ImgType(Enum):
    COVER = "cover"
    FRONTMATTER = "frontmatter"
    BACKMATTER = "backmatter"
    INSERT = "insert"


class XhtmlKind(Enum):
    TEXT = "text"
    CREDITS = "credits"
    TOC = "toc"
    IMG = "img"


@dataclass(frozen=True)
class XhtmlSubtype:
    kind: XhtmlKind
    img_class: ImgClass | None = None
    img_type: ImgType | None = None

    @classmethod
    def text(cls) -> "XhtmlSubtype":
        return cls(XhtmlKind.TEXT)

    @classmethod
    def credits(cls) -> "XhtmlSubtype":
        return cls(XhtmlKind.CREDITS)

    @classmethod
    def toc(cls) -> "XhtmlSubtype":
        return cls(XhtmlKind.TOC)

    @classmethod
    def img(cls, img_class: ImgClass, img_type: ImgType) -> "XhtmlSubtype":
        return cls(XhtmlKind.IMG, img_class, img_type)

    @property
    def is_img(self) -> bool:
        return self.kind is XhtmlKind.IMG

    @property
    def is_cover(self) -> bool:
        return self.kind is XhtmlKind.IMG and self.img_type is ImgType.COVER


@dataclass(frozen=True)
class PlainFile:
    id: str
    file_path: Path
    media_type: str


@dataclass(frozen=True)
class XhtmlFile(PlainFile):
    title: str = ""
    seq_index: int = 0
    global_seq_index: int = 0
    subtype: XhtmlSubtype = field(default_factory=XhtmlSubtype.text)

    def __post_init__(self) -> None:
        if self.seq_index < 0 or self.global_seq_index < 0:
            raise ValueError(
                f'Sequence indexes of "{self.id}" must not be negative '
                f"(seq {self.seq_index}, global {self.global_seq_index})"
            )

    @property
    def is_main(self) -> bool:
        return self.seq_index == 0


OutputFile = Union[PlainFile, XhtmlFile]


class Tracker(str, Enum):
    GLOBAL = "Global"
    CHAPTER = "Chapter"
    CURRENT_SUB_CHAPTER = "CurrentSubChapter"
    CURRENT_SEQ = "CurrentSeq"
    INSERT = "Insert"
    FRONTMATTER = "Frontmatter"
    BACKMATTER = "Backmatter"


class Trackers:
    """Named counters of one conversion run.

    Mutated in place by the segmentation engine and its hooks; not safe to share
    between runs.
    """

    def __init__(self, extra: Iterable[str] = ()) -> None:
        self._values: dict[str, int] = {tracker.value: 0 for tracker in Tracker}
        for name in extra:
            self._values.setdefault(name, 0)

    @staticmethod
    def _key(name: Tracker | str) -> str:
        return name.value if isinstance(name, Tracker) else name

    def __getitem__(self, name: Tracker | str) -> int:
        return self._values[self._key(name)]

    def increment(self, name: Tracker | str) -> int:
        key = self._key(name)
        self._values[key] += 1
        return self._values[key]

    def decrement(self, name: Tracker | str) -> int:
        key = self._key(name)
        if self._values[key] == 0:
            warn(f'Tracker "{key}" is already 0, not decrementing')
            return 0
        self._values[key] -= 1
        return self._values[key]

    def reset(self, name: Tracker | str) -> None:
        self._values[self._key(name)] = 0

    def as_dict(self) -> dict[str, int]:
        return dict(self._values)


@dataclass
class IdCounter:
    c: int = 0

    def next_id(self) -> str:
        self.c += 1
        return f"id-{self.c}"


@dataclass
class ContentOpfParts:
    """Handed to a content.opf hook so it can append custom metadata."""

    document: BeautifulSoup
    id_counter: IdCounter
    metadata: Tag
    manifest: Tag
    spine: Tag


ContentOpfHook = Callable[[ContentOpfParts], None]


def _spine_group(file: OutputFile) -> tuple:
    if not isinstance(file, XhtmlFile):
        return (0,)
    subtype = file.subtype
    if subtype.is_cover:
        return (1,)
    if subtype.kind is XhtmlKind.TOC:
        return (2,)
    if subtype.kind is XhtmlKind.CREDITS:
        return (6,)
    if subtype.is_img and subtype.img_type is ImgType.FRONTMATTER:
        return (3, file.global_seq_index, file.seq_index)
    if subtype.is_img and subtype.img_type is ImgType.BACKMATTER:
        return (5, file.global_seq_index, file.seq_index)
    return (4, file.global_seq_index, file.seq_index)


def sort_files_for_spine(files: Iterable[OutputFile]) -> list[OutputFile]:
    """Stable spine order: plain files, cover, toc, frontmatter, body, backmatter, credits."""
    return sorted(files, key=_spine_group)


class OutputContext:
    """Accumulates the files of the EPUB being generated in a scratch directory."""

    def __init__(
        self,
        title: str,
        *,
        pretty: bool = False,
        uid: str | None = None,
        extra_trackers: Iterable[str] = (),
    ) -> None:
        self.title = title
        self.pretty = pretty
        self.uid = uid or f"urn:uuid:{uuid.uuid4()}"
        self.trackers = Trackers(extra_trackers)
        self._files: list[OutputFile] = []
        self._scratch = tempfile.TemporaryDirectory(prefix="converty-out-")
        self.root_dir = Path(self._scratch.name)
        self.content_dir = self.root_dir / ROOT_DIRNAME
        self.content_dir.mkdir(parents=True, exist_ok=True)

    @property
    def content_opf_path(self) -> Path:
        return self.content_dir / CONTENT_OPF_FILENAME

    @property
    def files(self) -> list[OutputFile]:
        return list(self._files)

    def dir_for(self, subdir: FileDir) -> Path:
        path = self.content_dir / subdir.value
        path.mkdir(parents=True, exist_ok=True)
        return path

    def href(self, path: Path, start: Path | None = None) -> str:
        base = start if start is not None else self.content_dir
        return Path(os.path.relpath(path, base)).as_posix()

    def has_path(self, path: Path) -> bool:
        return any(existing.file_path == path for existing in self._files)

    def has_id(self, file_id: str) -> bool:
        return any(existing.id == file_id for existing in self._files)

    def add_file(self, file: OutputFile) -> None:
        if self.has_id(file.id):
            raise StructureError(f'Output file id "{file.id}" is already registered')
        self._files.append(file)

    def remove_files(self, predicate: Callable[[OutputFile], bool]) -> None:
        self._files = [file for file in self._files if not predicate(file)]

    def sort_files_for_spine(self) -> None:
        self._files = sort_files_for_spine(self._files)

    def write_stylesheet(self, template: str = "text-ln.css") -> PlainFile:
        path = self.dir_for(FileDir.STYLES) / "stylesheet.css"
        path.write_text(get_template(template), encoding="utf-8")
        stylesheet = PlainFile(id=STYLESHEET_ID, file_path=path, media_type=CSS_MIMETYPE)
        self.add_file(stylesheet)
        return stylesheet

    def unique_path(self, subdir: FileDir, filename: str) -> Path:
        """Path for ``filename`` in ``subdir``; a taken name gets a numeric suffix."""
        directory = self.dir_for(subdir)
        candidate = directory / filename
        if not self.has_path(candidate):
            return candidate
        stem, dot, suffix = filename.partition(".")
        counter = 1
        while True:
            renamed = f"{stem}-{counter}{dot}{suffix}"
            candidate = directory / renamed
            if not self.has_path(candidate):
                warn(f'Output file "{filename}" already exists, writing "{renamed}" instead')
                return candidate
            counter += 1

    def serialize(self, soup: BeautifulSoup) -> str:
        return serialize(soup, pretty=self.pretty)

    def main_xhtml_files(self) -> list[XhtmlFile]:
        return [file for file in self._files if isinstance(file, XhtmlFile) and file.is_main]

    def generate_toc_xhtml(self) -> XhtmlFile:
        self.remove_files(lambda file: isinstance(file, XhtmlFile) and file.subtype.kind is XhtmlKind.TOC)
        toc_path = self.content_dir / TOC_XHTML_FILENAME
        text = apply_template(
            get_template("toc.xhtml"),
            {"TITLE": TOC_TITLE, "CSSPATH": f"{FileDir.STYLES.value}/stylesheet.css"},
        )
        soup = parse_xml(text)
        ol = query_defined(soup, "body > nav > ol")
        for file in self.main_xhtml_files():
            li = soup.new_tag("li")
            anchor = soup.new_tag("a", attrs={"href": self.href(file.file_path)})
            anchor.string = file.title
            li.append(anchor)
            ol.append(li)
        toc_path.write_text(self.serialize(soup), encoding="utf-8")
        toc_file = XhtmlFile(
            id=normalize_id(TOC_XHTML_FILENAME),
            file_path=toc_path,
            media_type=XHTML_MIMETYPE,
            title=TOC_TITLE,
            subtype=XhtmlSubtype.toc(),
        )
        self.add_file(toc_file)
        return toc_file

    def generate_toc_ncx(self) -> PlainFile:
        self.remove_files(lambda file: file.id == normalize_id(TOC_NCX_FILENAME))
        ncx_path = self.content_dir / TOC_NCX_FILENAME
        text = apply_template(
            get_template("toc.ncx"),
            {"TITLE": html.escape(self.title), "UID": html.escape(self.uid)},
        )
        soup = parse_xml(text)
        nav_map = query_defined(soup, "navMap")
        for order, file in enumerate(self.main_xhtml_files(), start=1):
            nav_point = soup.new_tag("navPoint", attrs={"id": f"navPoint{order}", "playOrder": str(order)})
            nav_label = soup.new_tag("navLabel")
            label_text = soup.new_tag("text")
            label_text.string = file.title
            nav_label.append(label_text)
            nav_point.append(nav_label)
            nav_point.append(soup.new_tag("content", attrs={"src": self.href(file.file_path)}))
            nav_map.append(nav_point)
        ncx_path.write_text(self.serialize(soup), encoding="utf-8")
        ncx_file = PlainFile(id=normalize_id(TOC_NCX_FILENAME), file_path=ncx_path, media_type=NCX_MIMETYPE)
        self.add_file(ncx_file)
        return ncx_file

    def cover_image(self) -> PlainFile | None:
        for file in self._files:
            if isinstance(file, XhtmlFile):
                continue
            if file.media_type.startswith("image/") and file.id.lower().startswith("cover"):
                return file
        return None

    def generate_content_opf(self, hook: ContentOpfHook | None = None) -> Path:
        text = apply_template(get_template("content.opf"), {"NCXID": normalize_id(TOC_NCX_FILENAME)})
        soup = parse_xml(text)
        metadata = query_defined(soup, "metadata")
        manifest = query_defined(soup, "manifest")
        spine = query_defined(soup, "spine")

        title = soup.new_tag("title", namespace=DC_NS, nsprefix="dc")
        title.string = self.title
        metadata.append(title)
        identifier = soup.new_tag("identifier", namespace=DC_NS, nsprefix="dc", attrs={"id": "pub-id"})
        identifier.string = self.uid
        metadata.append(identifier)
        modified = soup.new_tag("meta", attrs={"property": "dcterms:modified"})
        modified.string = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        metadata.append(modified)

        cover = self.cover_image()
        for file in self._files:
            attrs = {"href": self.href(file.file_path), "id": file.id, "media-type": file.media_type}
            if isinstance(file, XhtmlFile) and file.subtype.kind is XhtmlKind.TOC:
                attrs["properties"] = "nav"
            elif cover is not None and file is cover:
                attrs["properties"] = "cover-image"
            manifest.append(soup.new_tag("item", attrs=attrs))
            if isinstance(file, XhtmlFile):
                spine.append(soup.new_tag("itemref", attrs={"idref": file.id}))

        if hook is not None:
            hook(ContentOpfParts(soup, IdCounter(), metadata, manifest, spine))

        self.content_opf_path.write_text(self.serialize(soup), encoding="utf-8")
        return self.content_opf_path

    def output_name(self) -> str:
        return string_to_filename(self.title)

    def finish(self, output_dir: Path, hook: ContentOpfHook | None = None) -> Path:
        """Write toc, ncx and content.opf, then package into ``output_dir``.

        In pretty (debug output) mode the staged tree is copied to a directory
        named after the book instead of being zipped.
        """
        self.sort_files_for_spine()
        self.generate_toc_xhtml()
        # the toc page was appended last, the ncx follows the spine
        self.sort_files_for_spine()
        self.generate_toc_ncx()
        self.sort_files_for_spine()
        self.generate_content_opf(hook)

        container = apply_template(
            get_template("container.xml"),
            {"OPFPATH": f"{ROOT_DIRNAME}/{CONTENT_OPF_FILENAME}"},
        )
        output_dir.mkdir(parents=True, exist_ok=True)
        if self.pretty:
            target = output_dir / self.output_name()
            self._write_directory(target, container)
        else:
            target = output_dir / f"{self.output_name()}.epub"
            self._write_epub(target, container)
        debug_log(f'Finished "{self.title}" -> {target}')
        return target

    def _archive_entries(self) -> list[tuple[Path, str]]:
        entries = [(self.content_opf_path, f"{ROOT_DIRNAME}/{CONTENT_OPF_FILENAME}")]
        for file in self._files:
            entries.append((file.file_path, f"{ROOT_DIRNAME}/{self.href(file.file_path)}"))
        return entries

    def _write_epub(self, target: Path, container: str) -> None:
        partial = target.with_name(target.name + ".part")
        try:
            with zipfile.ZipFile(partial, "w") as zf:
                zf.writestr(zipfile.ZipInfo("mimetype"), EPUB_MIMETYPE, compress_type=zipfile.ZIP_STORED)
                zf.writestr("META-INF/container.xml", container, compress_type=zipfile.ZIP_DEFLATED)
                for source, arcname in self._archive_entries():
                    zf.write(source, arcname, compress_type=zipfile.ZIP_DEFLATED)
        except BaseException:
            partial.unlink(missing_ok=True)
            raise
        partial.replace(target)

    def _write_directory(self, target: Path, container: str) -> None:
        if target.exists():
            shutil.rmtree(target)
        (target / "META-INF").mkdir(parents=True)
        (target / "mimetype").write_text(EPUB_MIMETYPE, encoding="utf-8")
        (target / "META-INF" / "container.xml").write_text(container, encoding="utf-8")
        for source, arcname in self._archive_entries():
            destination = target / arcname
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, destination)

    def close(self) -> None:
        self._scratch.cleanup()

    def __enter__(self) -> "OutputContext":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def finish_dom_to_file(
    ctx: OutputContext,
    soup: BeautifulSoup,
    filename: str,
    subdir: FileDir,
    *,
    title: str,
    seq_index: int,
    global_seq_index: int,
    subtype: XhtmlSubtype,
) -> XhtmlFile:
    """Serialize an output DOM and register it as an XHTML file."""
    path = ctx.unique_path(subdir, filename)
    path.write_text(ctx.serialize(soup), encoding="utf-8")
    file = XhtmlFile(
        id=normalize_id(path.name),
        file_path=path,
        media_type=XHTML_MIMETYPE,
        title=title,
        seq_index=seq_index,
        global_seq_index=global_seq_index,
        subtype=subtype,
    )
    ctx.add_file(file)
    debug_log(f'Wrote "{path.name}" (global {global_seq_index}, seq {seq_index}, {subtype.kind.value})')
    return file


def copy_image(ctx: OutputContext, source: Path, filename: str, file_id: str) -> PlainFile:
    if not source.is_file():
        raise StructureError(f'Image "{source}" does not exist')
    media_type, _encoding = mimetypes.guess_type(filename)
    if media_type is None:
        raise StructureError(f'Could not determine the media type of "{filename}"')
    path = ctx.unique_path(FileDir.IMAGES, filename)
    shutil.copyfile(source, path)
    image = PlainFile(id=normalize_id(file_id if path.name == filename else path.name), file_path=path, media_type=media_type)
    ctx.add_file(image)
    return image


__all__ = [
    "ContentOpfHook",
    "ContentOpfParts",
    "FileDir",
    "IdCounter",
    "ImgClass",
    "ImgType",
    "OutputContext",
    "OutputFile",
    "PlainFile",
    "Tracker",
    "Trackers",
    "XhtmlFile",
    "XhtmlKind",
    "XhtmlSubtype",
    "copy_image",
    "finish_dom_to_file",
    "sort_files_for_spine",
]
