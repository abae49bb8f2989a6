# Print surface rendered to PDF with reportlab + pypdf.
# Each page image becomes an A4 background page; the print-surface nodes are
# drawn on an overlay canvas and stamped on top with merge_page.

import base64
import logging
from io import BytesIO
from typing import List, Optional, Sequence

from pypdf import PdfReader, PdfWriter
from reportlab.lib.colors import HexColor, black
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.cidfonts import UnicodeCIDFont
from reportlab.pdfgen import canvas

from .markup import HEADER_BACKGROUND, HEADER_COLOR
from .renderer import ImageNode, Node, TableNode, TextNode
from .transform import CANONICAL_WIDTH, SurfaceBox

log = logging.getLogger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = A4
# canonical raster px -> PDF points
PDF_SCALE = PAGE_WIDTH / CANONICAL_WIDTH
FONT_NAME = "HYGothic-Medium"

_font_registered = False


def _ensure_font():
    global _font_registered
    if not _font_registered:
        pdfmetrics.registerFont(UnicodeCIDFont(FONT_NAME))
        _font_registered = True


def _decode_data_uri(src: str) -> bytes:
    payload = src.split(",", 1)[1] if "," in src else src
    return base64.b64decode(payload)


def _image_reader(data: Optional[bytes], what: str) -> Optional[ImageReader]:
    if not data:
        return None
    try:
        return ImageReader(BytesIO(data))
    except OSError as exc:
        log.warning("could not read %s: %s", what, exc)
        return None


def _flip(box: SurfaceBox):
    # reportlab's origin is bottom-left
    return box.left, PAGE_HEIGHT - box.top - box.height


def _draw_text(c: canvas.Canvas, node: TextNode):
    x, y = _flip(node.box)
    lines = node.text.splitlines() or [""]
    size = node.font_size
    c.setFont(FONT_NAME, size)
    c.setFillColor(black)
    leading = size * 1.2
    first = y + node.box.height / 2 + (len(lines) - 1) * leading / 2 - size * 0.35
    for i, line in enumerate(lines):
        c.drawCentredString(x + node.box.width / 2, first - i * leading, line)


def _draw_image(c: canvas.Canvas, node: ImageNode):
    try:
        data = _decode_data_uri(node.src)
    except ValueError:
        log.warning("signature %s is not valid base64", node.field_id)
        return
    img = _image_reader(data, f"signature {node.field_id}")
    if img is None:
        return
    x, y = _flip(node.box)
    c.drawImage(img, x, y, width=node.box.width, height=node.box.height,
                mask="auto", preserveAspectRatio=True, anchor="c")


def _draw_table(c: canvas.Canvas, node: TableNode):
    x0, y0 = _flip(node.box)
    top = y0 + node.box.height
    c.setStrokeColor(black)
    c.setLineWidth(0.5)
    for cell in node.layout.header:
        cy = top - cell.top - cell.height
        c.setFillColor(HexColor(HEADER_BACKGROUND))
        c.rect(x0 + cell.left, cy, cell.width, cell.height, stroke=1, fill=1)
        c.setFillColor(HexColor(HEADER_COLOR))
        c.setFont(FONT_NAME, node.header_font_size)
        c.drawCentredString(x0 + cell.left + cell.width / 2, cy + cell.height / 2 - node.header_font_size * 0.35, cell.text)
    c.setFont(FONT_NAME, node.font_size)
    for line in node.layout.body:
        for cell in line:
            cy = top - cell.top - cell.height
            c.rect(x0 + cell.left, cy, cell.width, cell.height, stroke=1, fill=0)
            if cell.text:
                c.setFillColor(black)
                c.drawCentredString(x0 + cell.left + cell.width / 2, cy + cell.height / 2 - node.font_size * 0.35, cell.text)


def _overlay_page(nodes: Sequence[Node]) -> bytes:
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    for node in nodes:
        if isinstance(node, TableNode):
            _draw_table(c, node)
        elif isinstance(node, ImageNode):
            _draw_image(c, node)
        elif isinstance(node, TextNode):
            _draw_text(c, node)
    c.showPage(); c.save()
    return buf.getvalue()


def _background_pages(backgrounds: Sequence[Optional[bytes]]) -> bytes:
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    for i, data in enumerate(backgrounds):
        img = _image_reader(data, f"page {i + 1} background")
        if img is not None:
            c.drawImage(img, 0, 0, width=PAGE_WIDTH, height=PAGE_HEIGHT)
        c.showPage()
    c.save()
    return buf.getvalue()


def stamp_pages(pages: Sequence[Sequence[Node]], backgrounds: Sequence[Optional[bytes]], title: str = "") -> bytes:
    """Build the print PDF.

    ``pages[i]`` are nodes rendered at :data:`PDF_SCALE` for page ``i + 1``;
    ``backgrounds[i]`` is that page's image bytes, or ``None`` when it could
    not be loaded, in which case the overlays are drawn on a blank page.
    """
    _ensure_font()
    count = max(len(pages), len(backgrounds), 1)
    padded: List[Optional[bytes]] = list(backgrounds) + [None] * (count - len(backgrounds))
    reader = PdfReader(BytesIO(_background_pages(padded)))
    writer = PdfWriter()
    for p in reader.pages:
        writer.add_page(p)
    for pidx, nodes in enumerate(pages):
        if not nodes:
            continue
        overlay_reader = PdfReader(BytesIO(_overlay_page(nodes)))
        writer.pages[pidx].merge_page(overlay_reader.pages[0])
    if title:
        writer.add_metadata({"/Title": title})
    out = BytesIO(); writer.write(out)
    return out.getvalue()
