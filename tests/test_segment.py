from __future__ import annotations

from dataclasses import replace
from pathlib import Path

from converty import sevenseas
from converty.entries import EntryType, classify
from converty.output import ImgClass, ImgType, OutputContext, Tracker, XhtmlKind
from converty.publishers import lastofkind
from converty.segment import (
    ImageIdData,
    LastProcessedKind,
    ProcessingState,
    SegmentHooks,
    TextIdData,
    do_text_content,
    find_image,
)
from converty.xhtml import parse_xml

from conftest import load_document, write_document, write_image


def _seven_seas_hooks() -> SegmentHooks:
    return sevenseas.build_hooks(sevenseas.SevenSeasConfig())


def _names(files) -> list[str]:
    return [file.file_path.name for file in files]


def test_single_image_document_emits_only_the_image_page(
    tmp_path: Path, output_ctx: OutputContext, state: ProcessingState
) -> None:
    write_image(tmp_path, "cover.jpg")
    document = load_document(tmp_path, "cover.xhtml", "Cover", '<div><img alt="cover" src="../Images/cover.jpg"/></div>')
    entry = classify(document.title)
    state.img_type = entry.img_type

    emitted = do_text_content(document, entry, output_ctx, state, _seven_seas_hooks())

    assert _names(emitted) == ["cover.xhtml"]
    page = emitted[0]
    assert page.subtype.is_cover
    assert page.is_main
    image = output_ctx.cover_image()
    assert image is not None
    assert image.file_path.name == "Cover.jpg"
    assert image.media_type == "image/jpeg"
    assert state.last_kind is LastProcessedKind.IMAGE

    soup = parse_xml(page.file_path.read_text(encoding="utf-8"))
    img = soup.find("img")
    assert img["src"] == "../Images/Cover.jpg"
    assert img["class"] == ImgClass.COVER.value


def test_in_body_title_wins_over_head_title(
    tmp_path: Path, output_ctx: OutputContext, state: ProcessingState
) -> None:
    document = load_document(
        tmp_path,
        "ch1.xhtml",
        "Chapter 1",
        "<p>Chapter 1: The Beginning</p><p>It was a dark night.</p>",
    )
    entry = classify(document.title)

    emitted = do_text_content(document, entry, output_ctx, state, _seven_seas_hooks())

    assert _names(emitted) == ["chapter1.xhtml"]
    assert emitted[0].title == "Chapter 1: The Beginning"
    assert entry.title == "Chapter 1: The Beginning"
    assert state.img_type is ImgType.INSERT
    assert state.trackers[Tracker.CHAPTER] == 1

    soup = parse_xml(emitted[0].file_path.read_text(encoding="utf-8"))
    main = soup.find("div", attrs={"class": "main"})
    assert main.find("h1").get_text() == "Chapter 1"
    assert [p.get_text() for p in main.find_all("p")] == ["It was a dark night."]
    assert soup.find("title").get_text() == "Chapter 1: The Beginning"


def test_copyright_page_keeps_chapter_counter(
    tmp_path: Path, output_ctx: OutputContext, state: ProcessingState
) -> None:
    state.trackers.increment(Tracker.CHAPTER)
    state.trackers.increment(Tracker.CHAPTER)
    document = load_document(
        tmp_path,
        "copyright.xhtml",
        "Copyrights and Credits",
        "<p>Copyrights and Credits</p><p>All rights reserved.</p>",
    )
    entry = classify(document.title)
    state.img_type = entry.img_type

    emitted = do_text_content(document, entry, output_ctx, state, _seven_seas_hooks())

    assert _names(emitted) == ["copyright.xhtml"]
    assert emitted[0].subtype.kind is XhtmlKind.CREDITS
    assert state.trackers[Tracker.CHAPTER] == 2
    assert state.img_type is ImgType.FRONTMATTER


def test_image_mid_chapter_splits_the_text(
    tmp_path: Path, output_ctx: OutputContext, state: ProcessingState
) -> None:
    write_image(tmp_path, "i.jpg")
    document = load_document(
        tmp_path,
        "ch1.xhtml",
        "Chapter 1",
        "<p>Chapter 1</p>"
        "<p>First part of the text.</p>"
        '<p><img src="../Images/i.jpg"/></p>'
        "<p>Second part of the text.</p>",
    )
    entry = classify(document.title)

    emitted = do_text_content(document, entry, output_ctx, state, _seven_seas_hooks())

    assert _names(emitted) == ["chapter1.xhtml", "insert1.xhtml", "chapter1_1.xhtml"]
    assert [file.seq_index for file in emitted] == [0, 1, 2]
    assert [file.is_main for file in emitted] == [True, False, False]
    assert len({file.global_seq_index for file in emitted}) == 1
    assert emitted[1].subtype.is_img and emitted[1].subtype.img_type is ImgType.INSERT

    continuation = parse_xml(emitted[2].file_path.read_text(encoding="utf-8"))
    assert continuation.find("h1") is None
    assert continuation.find("p").get_text() == "Second part of the text."


def test_text_after_an_image_document_continues_as_sub_chapter(
    tmp_path: Path, output_ctx: OutputContext, state: ProcessingState
) -> None:
    write_image(tmp_path, "i.jpg")
    hooks = _seven_seas_hooks()
    first = load_document(
        tmp_path,
        "ch1.xhtml",
        "Chapter 1",
        '<p>Chapter 1</p><p>Some text of the chapter.</p><p><img src="../Images/i.jpg"/></p>',
    )
    entry = classify(first.title)
    do_text_content(first, entry, output_ctx, state, hooks)
    state.last_entry = entry

    second = load_document(tmp_path, "ch1b.xhtml", "Chapter 1", "<p>More text after the picture.</p>")
    emitted = do_text_content(second, classify(second.title), output_ctx, state, hooks)

    assert state.last_kind is LastProcessedKind.NONE
    assert _names(emitted) == ["chapter1_2.xhtml"]
    assert not emitted[0].is_main


def test_character_pages_share_one_entry(tmp_path: Path) -> None:
    config = lastofkind.build_config()
    hooks = sevenseas.build_hooks(config)
    write_image(tmp_path, "c1.jpg")
    write_image(tmp_path, "c2.jpg")
    first = write_document(tmp_path, "c1.xhtml", "Character Page 1", '<div><img src="../Images/c1.jpg"/></div>')
    second = write_document(tmp_path, "c2.xhtml", "Character Page 2", '<div><img src="../Images/c2.jpg"/></div>')

    with OutputContext("Reincarnated as the Last of My Kind Vol. 1") as ctx:
        state = ProcessingState(trackers=ctx.trackers)
        emitted = sevenseas.process_html_file(first, ctx, state, config, hooks)
        emitted += sevenseas.process_html_file(second, ctx, state, config, hooks)

        assert _names(emitted) == ["frontmatter1.xhtml", "frontmatter2.xhtml"]
        assert [file.is_main for file in emitted] == [True, False]
        assert [file.title for file in ctx.main_xhtml_files()] == ["Character Page 1"]


def test_lastofkind_classifies_from_the_body(tmp_path: Path) -> None:
    config = lastofkind.build_config()
    toc = load_document(tmp_path, "toc.xhtml", "Contents", "<h2>Table of Contents</h2><p>Chapter 1</p>")
    gallery = load_document(tmp_path, "g.xhtml", "Gallery", '<p><img src="x.jpg"/></p>')
    copyright_page = load_document(tmp_path, "c.xhtml", "Copyright", '<p><img src="x.jpg"/></p><p>text</p>')

    assert lastofkind.determine_type(toc, config).type is EntryType.IGNORE
    assert lastofkind.determine_type(gallery, config).type is EntryType.IMAGE
    assert lastofkind.determine_type(copyright_page, config).type is EntryType.TEXT


def test_custom_id_hooks_are_used(tmp_path: Path, output_ctx: OutputContext, state: ProcessingState) -> None:
    write_image(tmp_path, "pic.jpg")
    document = load_document(
        tmp_path,
        "side.xhtml",
        "Side Story",
        '<h1>Side Story</h1><p>Once upon a time.</p><p><img src="../Images/pic.jpg"/></p>',
    )
    hooks = SegmentHooks(
        gen_text_id_data=lambda st, entry, extra: TextIdData(section_id=f"side{st.trackers[Tracker.CURRENT_SUB_CHAPTER]}"),
        gen_image_id_data=lambda st, source, img, entry: ImageIdData(
            section_id="pic", img_filename="Pic.jpg", xhtml_filename="pic"
        ),
    )

    emitted = do_text_content(document, classify(document.title), output_ctx, state, hooks)

    assert _names(emitted) == ["side0.xhtml", "pic.xhtml"]


def test_unhandled_elements_are_reported(
    tmp_path: Path, output_ctx: OutputContext, state: ProcessingState, capsys
) -> None:
    document = load_document(
        tmp_path,
        "odd.xhtml",
        "Chapter 1",
        "<p>Chapter 1</p><table><tr><td>x</td></tr></table><div></div><p>Body text here.</p>",
    )

    emitted = do_text_content(document, classify(document.title), output_ctx, state, _seven_seas_hooks())

    assert _names(emitted) == ["chapter1.xhtml"]
    err = capsys.readouterr().err
    assert 'Unhandled element <table> in "odd.xhtml"' in err
    assert "<div>" not in err


def test_find_image_handles_svg_images() -> None:
    soup = parse_xml(
        '<div xmlns:xlink="http://www.w3.org/1999/xlink"><svg><image xlink:href="../Images/a.jpg"/></svg></div>'
    )

    found = find_image(soup.find("div"))

    assert found is not None
    assert found[1] == "../Images/a.jpg"


def test_afterword_gives_back_the_chapter_number(
    tmp_path: Path, output_ctx: OutputContext, state: ProcessingState
) -> None:
    state.trackers.increment(Tracker.CHAPTER)
    state.trackers.increment(Tracker.CHAPTER)
    write_image(tmp_path, "a.jpg")
    document = load_document(
        tmp_path,
        "afterword.xhtml",
        "Afterword",
        '<p>Afterword</p><p>Thanks for reading.</p><p><img src="../Images/a.jpg"/></p>',
    )
    entry = classify(document.title)
    state.img_type = entry.img_type

    emitted = do_text_content(document, entry, output_ctx, state, _seven_seas_hooks())

    assert _names(emitted) == ["afterword.xhtml", "backmatter1.xhtml"]
    assert emitted[1].subtype.img_type is ImgType.BACKMATTER
    assert state.img_type is ImgType.BACKMATTER
    assert state.trackers[Tracker.CHAPTER] == 2


def test_title_text_after_the_search_range_stays_in_the_body(
    tmp_path: Path, output_ctx: OutputContext, state: ProcessingState
) -> None:
    document = load_document(
        tmp_path,
        "ch1.xhtml",
        "Chapter 1",
        "<p>Chapter 1</p><p>Text.</p><p>Chapter 1</p>",
    )
    hooks = replace(_seven_seas_hooks(), header_search_count=1)

    emitted = do_text_content(document, classify(document.title), output_ctx, state, hooks)

    soup = parse_xml(emitted[0].file_path.read_text(encoding="utf-8"))
    assert [p.get_text() for p in soup.find_all("p")] == ["Text.", "Chapter 1"]


def test_skipped_and_excluded_elements_are_not_transcribed(
    tmp_path: Path, output_ctx: OutputContext, state: ProcessingState, capsys
) -> None:
    document = load_document(
        tmp_path,
        "ch1.xhtml",
        "Chapter 1",
        '<p>Running head</p><p>Chapter 1</p><p class="Nav">Next page</p><p>Body text.</p>',
    )
    hooks = replace(
        _seven_seas_hooks(),
        skip_elements=1,
        check_element=lambda elem: "Nav" in (elem.get("class") or ""),
    )

    emitted = do_text_content(document, classify(document.title), output_ctx, state, hooks)

    soup = parse_xml(emitted[0].file_path.read_text(encoding="utf-8"))
    assert [p.get_text() for p in soup.find_all("p")] == ["Body text."]
    assert "Nav" not in capsys.readouterr().err


def test_merged_paragraph_keeps_the_classes_of_its_continuation(
    tmp_path: Path, output_ctx: OutputContext, state: ProcessingState
) -> None:
    document = load_document(
        tmp_path,
        "ch1.xhtml",
        "Chapter 1",
        '<p>Chapter 1</p><p>He walked into the </p><p style="margin-left: 2em">room.</p>',
    )

    emitted = do_text_content(document, classify(document.title), output_ctx, state, _seven_seas_hooks())

    soup = parse_xml(emitted[0].file_path.read_text(encoding="utf-8"))
    paragraphs = soup.find_all("p")
    assert [p.get_text() for p in paragraphs] == ["He walked into the room."]
    assert "extra-indent" in paragraphs[0]["class"].split()


def test_cover_is_not_repeated_on_following_image_pages(tmp_path: Path, capsys) -> None:
    config = lastofkind.build_config()
    hooks = sevenseas.build_hooks(config)
    write_image(tmp_path, "cover.jpg")
    write_image(tmp_path, "c1.jpg")
    cover = write_document(tmp_path, "cover.xhtml", "Cover", '<div><img alt="cover" src="../Images/cover.jpg"/></div>')
    character = write_document(tmp_path, "c1.xhtml", "Character Page 1", '<div><img src="../Images/c1.jpg"/></div>')

    with OutputContext("Reincarnated as the Last of My Kind Vol. 1") as ctx:
        state = ProcessingState(trackers=ctx.trackers)
        emitted = sevenseas.process_html_file(cover, ctx, state, config, hooks)
        emitted += sevenseas.process_html_file(character, ctx, state, config, hooks)

        assert _names(emitted) == ["cover.xhtml", "frontmatter1.xhtml"]
        assert [file.subtype.img_type for file in emitted] == [ImgType.COVER, ImgType.FRONTMATTER]
    assert "already exists" not in capsys.readouterr().err
