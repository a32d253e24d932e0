from __future__ import annotations

import zipfile
from pathlib import Path

import pytest

from converty.output import (
    FileDir,
    ImgClass,
    ImgType,
    OutputContext,
    PlainFile,
    Tracker,
    Trackers,
    XhtmlFile,
    XhtmlSubtype,
    sort_files_for_spine,
)
from converty.xhtml import StructureError, normalize_id, parse_xml


def _xhtml(name: str, subtype: XhtmlSubtype, seq: int = 0, global_seq: int = 0) -> XhtmlFile:
    return XhtmlFile(
        id=name,
        file_path=Path(f"/tmp/{name}.xhtml"),
        media_type="application/xhtml+xml",
        title=name,
        seq_index=seq,
        global_seq_index=global_seq,
        subtype=subtype,
    )


def test_trackers_start_at_zero_and_count() -> None:
    trackers = Trackers(extra=["Interlude"])

    assert trackers[Tracker.CHAPTER] == 0
    assert trackers["Interlude"] == 0
    assert trackers.increment(Tracker.CHAPTER) == 1
    assert trackers.increment("Interlude") == 1
    trackers.reset(Tracker.CHAPTER)
    assert trackers.as_dict()["Chapter"] == 0


def test_trackers_decrement_at_zero_warns(capsys) -> None:
    trackers = Trackers()

    assert trackers.decrement(Tracker.CHAPTER) == 0
    assert trackers[Tracker.CHAPTER] == 0
    assert 'Tracker "Chapter" is already 0' in capsys.readouterr().err


def test_xhtml_file_rejects_negative_indexes() -> None:
    with pytest.raises(ValueError):
        _xhtml("broken", XhtmlSubtype.text(), seq=-1)


def test_spine_sort_orders_by_kind() -> None:
    credits = _xhtml("credits", XhtmlSubtype.credits(), global_seq=1)
    cover = _xhtml("cover", XhtmlSubtype.img(ImgClass.COVER, ImgType.COVER), global_seq=2)
    toc = _xhtml("toc", XhtmlSubtype.toc())
    text0 = _xhtml("text0", XhtmlSubtype.text(), seq=0, global_seq=3)
    text1 = _xhtml("text1", XhtmlSubtype.text(), seq=1, global_seq=3)

    ordered = sort_files_for_spine([credits, text1, toc, text0, cover])

    assert [file.id for file in ordered] == ["cover", "toc", "text0", "text1", "credits"]
    assert sort_files_for_spine(ordered) == ordered


def test_spine_sort_places_plain_files_first_and_gallery_images_around_body() -> None:
    stylesheet = PlainFile(id="stylesheet", file_path=Path("/tmp/s.css"), media_type="text/css")
    front = _xhtml("front", XhtmlSubtype.img(ImgClass.INSERT, ImgType.FRONTMATTER), global_seq=5)
    back = _xhtml("back", XhtmlSubtype.img(ImgClass.INSERT, ImgType.BACKMATTER), global_seq=1)
    body = _xhtml("body", XhtmlSubtype.text(), global_seq=2)

    ordered = sort_files_for_spine([back, body, front, stylesheet])

    assert [file.id for file in ordered] == ["stylesheet", "front", "body", "back"]


def test_normalize_id() -> None:
    assert normalize_id("chapter1.xhtml") == "chapter1.xhtml"
    assert normalize_id("1-Cover Image.jpg") == "CoverImage.jpg"
    with pytest.raises(StructureError):
        normalize_id("123")


def test_unique_path_suffixes_taken_names(output_ctx: OutputContext, capsys) -> None:
    first = output_ctx.unique_path(FileDir.TEXT, "chapter1.xhtml")
    output_ctx.add_file(XhtmlFile(id="chapter1.xhtml", file_path=first, media_type="application/xhtml+xml"))

    second = output_ctx.unique_path(FileDir.TEXT, "chapter1.xhtml")

    assert second.name == "chapter1-1.xhtml"
    assert "already exists" in capsys.readouterr().err


def test_add_file_rejects_duplicate_ids(output_ctx: OutputContext) -> None:
    output_ctx.add_file(PlainFile(id="dup", file_path=Path("/tmp/a"), media_type="text/css"))
    with pytest.raises(StructureError):
        output_ctx.add_file(PlainFile(id="dup", file_path=Path("/tmp/b"), media_type="text/css"))


def _register_text(ctx: OutputContext, name: str, title: str, seq: int, global_seq: int) -> None:
    path = ctx.unique_path(FileDir.TEXT, f"{name}.xhtml")
    path.write_text("<html/>", encoding="utf-8")
    ctx.add_file(
        XhtmlFile(
            id=f"{name}.xhtml",
            file_path=path,
            media_type="application/xhtml+xml",
            title=title,
            seq_index=seq,
            global_seq_index=global_seq,
        )
    )


def test_finish_writes_epub_with_mimetype_first(tmp_path: Path) -> None:
    with OutputContext("Some Series Vol. 3", uid="urn:uuid:abc") as ctx:
        ctx.write_stylesheet()
        _register_text(ctx, "chapter1", "Chapter 1", 0, 1)
        _register_text(ctx, "chapter1_1", "Chapter 1", 1, 1)
        _register_text(ctx, "chapter2", "Chapter 2", 0, 2)
        target = ctx.finish(tmp_path / "out")

    assert target == tmp_path / "out" / "Some Series Vol. 3.epub"
    with zipfile.ZipFile(target) as zf:
        names = zf.namelist()
        assert names[0] == "mimetype"
        assert zf.getinfo("mimetype").compress_type == zipfile.ZIP_STORED
        assert zf.read("mimetype") == b"application/epub+zip"
        assert "META-INF/container.xml" in names
        assert "OEBPS/content.opf" in names
        assert "OEBPS/toc.xhtml" in names
        assert "OEBPS/toc.ncx" in names
        assert "OEBPS/Text/chapter1_1.xhtml" in names

        toc = parse_xml(zf.read("OEBPS/toc.xhtml"))
        links = [(a["href"], a.get_text()) for a in toc.find_all("a")]
        assert links == [("Text/chapter1.xhtml", "Chapter 1"), ("Text/chapter2.xhtml", "Chapter 2")]

        ncx = parse_xml(zf.read("OEBPS/toc.ncx"))
        points = ncx.find_all("navPoint")
        # the ncx lists every main page in reading order, the toc page included
        assert [point.find("content")["src"] for point in points] == [
            "toc.xhtml",
            "Text/chapter1.xhtml",
            "Text/chapter2.xhtml",
        ]
        assert [point["playOrder"] for point in points] == ["1", "2", "3"]

        opf = parse_xml(zf.read("OEBPS/content.opf"))
        spine = [item["idref"] for item in opf.find_all("itemref")]
        assert spine == ["toc.xhtml", "chapter1.xhtml", "chapter1_1.xhtml", "chapter2.xhtml"]
        nav = opf.find("item", attrs={"id": "toc.xhtml"})
        assert nav["properties"] == "nav"
        assert opf.find("identifier").get_text() == "urn:uuid:abc"
    assert not (tmp_path / "out" / "Some Series Vol. 3.epub.part").exists()


def test_finish_in_pretty_mode_writes_directory(tmp_path: Path) -> None:
    with OutputContext("A/B Book", pretty=True) as ctx:
        _register_text(ctx, "chapter1", "Chapter 1", 0, 1)
        target = ctx.finish(tmp_path)

    assert target.is_dir()
    assert target.name == "A⁄B Book"
    assert (target / "mimetype").read_text(encoding="utf-8") == "application/epub+zip"
    assert (target / "OEBPS" / "Text" / "chapter1.xhtml").is_file()
    assert (target / "OEBPS" / "content.opf").is_file()


def test_failed_packaging_leaves_no_partial_archive(tmp_path: Path) -> None:
    with OutputContext("Broken Book") as ctx:
        _register_text(ctx, "chapter1", "Chapter 1", 0, 1)
        ctx.files[-1].file_path.unlink()

        with pytest.raises(FileNotFoundError):
            ctx.finish(tmp_path)

    assert not (tmp_path / "Broken Book.epub.part").exists()
    assert not (tmp_path / "Broken Book.epub").exists()
