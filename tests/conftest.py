from __future__ import annotations

import zipfile
from pathlib import Path

import pytest

from converty.diagnostics import set_debug_logging
from converty.input import SourceDocument
from converty.output import OutputContext
from converty.segment import ProcessingState

# smallest valid JPEG header, enough for copying and media type detection
JPEG_BYTES = b"\xff\xd8\xff\xe0"

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""


def xhtml_page(title: str, body: str, css_href: str | None = None, style: str | None = None) -> str:
    head = f"<title>{title}</title>"
    if css_href is not None:
        head += f'<link href="{css_href}" rel="stylesheet" type="text/css"/>'
    if style is not None:
        head += f"<style>{style}</style>"
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        '<html xmlns="http://www.w3.org/1999/xhtml">\n'
        f"<head>{head}</head>\n"
        f"<body>{body}</body>\n"
        "</html>\n"
    )


def write_document(root: Path, name: str, title: str, body: str, style: str | None = None) -> Path:
    path = root / "OEBPS" / "Text" / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(xhtml_page(title, body, style=style), encoding="utf-8")
    return path


def write_image(root: Path, name: str) -> Path:
    path = root / "OEBPS" / "Images" / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(JPEG_BYTES)
    return path


def load_document(root: Path, name: str, title: str, body: str, style: str | None = None) -> SourceDocument:
    return SourceDocument.load(write_document(root, name, title, body, style=style))


def build_epub(
    target: Path,
    title: str,
    documents: list[tuple[str, str, str]],
    images: tuple[str, ...] = (),
    extra_metadata: str = "",
    stylesheet: str | None = None,
) -> Path:
    """Zip a minimal EPUB; ``documents`` are (file name, head title, body) in spine order."""
    manifest = []
    spine = []
    for index, (name, _title, _body) in enumerate(documents):
        manifest.append(f'<item id="doc{index}" href="Text/{name}" media-type="application/xhtml+xml"/>')
        spine.append(f'<itemref idref="doc{index}"/>')
    for index, name in enumerate(images):
        manifest.append(f'<item id="img{index}" href="Images/{name}" media-type="image/jpeg"/>')
    if stylesheet is not None:
        manifest.append('<item id="css" href="Styles/book.css" media-type="text/css"/>')
    opf = f"""<?xml version="1.0" encoding="UTF-8"?>
<package version="3.0" unique-identifier="BookId" xmlns="http://www.idpf.org/2007/opf">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/" xmlns:opf="http://www.idpf.org/2007/opf">
    <dc:title>{title}</dc:title>
    <dc:identifier id="BookId">urn:isbn:9781234567890</dc:identifier>
    <dc:language>en</dc:language>
    {extra_metadata}
  </metadata>
  <manifest>
    {"".join(manifest)}
  </manifest>
  <spine>
    {"".join(spine)}
  </spine>
</package>
"""
    css_href = "../Styles/book.css" if stylesheet is not None else None
    with zipfile.ZipFile(target, "w") as zf:
        zf.writestr("mimetype", "application/epub+zip")
        zf.writestr("META-INF/container.xml", CONTAINER_XML)
        zf.writestr("OEBPS/content.opf", opf)
        for name, doc_title, body in documents:
            zf.writestr(f"OEBPS/Text/{name}", xhtml_page(doc_title, body, css_href=css_href))
        for name in images:
            zf.writestr(f"OEBPS/Images/{name}", JPEG_BYTES)
        if stylesheet is not None:
            zf.writestr("OEBPS/Styles/book.css", stylesheet)
    return target


@pytest.fixture(autouse=True)
def _reset_debug_logging():
    yield
    set_debug_logging(False)


@pytest.fixture
def output_ctx():
    ctx = OutputContext("Test Book Vol. 2", uid="urn:uuid:test")
    yield ctx
    ctx.close()


@pytest.fixture
def state(output_ctx: OutputContext) -> ProcessingState:
    return ProcessingState(trackers=output_ctx.trackers)
