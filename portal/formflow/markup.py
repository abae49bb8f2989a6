"""HTML for the rendered surfaces."""
import json
from dataclasses import dataclass, field
from html import escape
from typing import List, Optional, Sequence

from .models import Field, FieldType
from .renderer import ImageNode, Node, SignaturePlaceholder, TableNode, TextNode
from .tables import cell_text, table_value_for
from .transform import SurfaceBox, page_size

PRINT_PAGE_WIDTH = 794
PRINT_PAGE_HEIGHT = 1123
HEADER_BACKGROUND = "#e9d5ff"
HEADER_COLOR = "#6b21a8"
POPUP_BLOCKED_MESSAGE = "팝업이 차단되었습니다. 브라우저 설정에서 팝업을 허용해주세요."
MISSING_IMAGE_TEXT = "PDF 이미지가 없습니다"


@dataclass
class PageView:
    number: int
    image_url: Optional[str]
    nodes: List[Node] = field(default_factory=list)


def _px(v: float) -> str:
    return f"{round(v, 2):g}px"


def _box_style(box: SurfaceBox) -> str:
    return f"left:{_px(box.left)};top:{_px(box.top)};width:{_px(box.width)};height:{_px(box.height)};"


def _attr(name: str, value: Optional[str]) -> str:
    if value is None:
        return ""
    return f' {name}="{escape(value)}"'


def _text_html(node: TextNode) -> str:
    classes = "field-overlay"
    if node.placeholder:
        classes += " placeholder"
    if node.multiline:
        classes += " multiline"
    text = escape(node.text)
    if node.placeholder and node.required:
        text += '<span class="required">*</span>'
    style = _box_style(node.box) + f"font-size:{_px(node.font_size)};font-family:'{escape(node.font_family)}',sans-serif;"
    return (
        f'<div class="{classes}" style="{style}" data-field="{escape(node.field_id)}"'
        f'{_attr("data-focus", node.focus_target)}>{text}</div>'
    )


def _image_html(node: ImageNode) -> str:
    return (
        f'<div class="signature-overlay" style="{_box_style(node.box)}" data-field="{escape(node.field_id)}">'
        f'<img class="signature-img" src="{escape(node.src)}" alt="{escape(node.alt)}" '
        f'style="object-fit:{node.fit}" /></div>'
    )


def _placeholder_html(node: SignaturePlaceholder) -> str:
    classes = "signature-placeholder"
    if node.is_viewer:
        classes += " mine"
    return (
        f'<div class="{classes}" style="{_box_style(node.box)}" data-field="{escape(node.field_id)}"'
        f'{_attr("data-focus", node.focus_target)}>{escape(node.text)}</div>'
    )


def _table_html(node: TableNode) -> str:
    layout = node.layout
    rows = []
    if layout.has_header:
        cells = "".join(
            f'<th style="width:{_px(c.width)};height:{_px(c.height)};font-size:{_px(node.header_font_size)};'
            f'background:{HEADER_BACKGROUND};color:{HEADER_COLOR}">{escape(c.text)}</th>'
            for c in layout.header
        )
        rows.append(f"<tr>{cells}</tr>")
    for line in layout.body:
        cells = "".join(
            f'<td style="width:{_px(c.width)};height:{_px(c.height)}"'
            f'{_attr("data-focus", node.cell_target(c.row, c.col))}>{escape(c.text)}</td>'
            for c in line
        )
        rows.append(f"<tr>{cells}</tr>")
    style = _box_style(node.box) + f"font-size:{_px(node.font_size)};font-family:'{escape(node.font_family)}',sans-serif;"
    return (
        f'<div class="table-overlay" style="{style}" data-field="{escape(node.field_id)}">'
        f'<table class="field-table">{"".join(rows)}</table></div>'
    )


def node_html(node: Node) -> str:
    if isinstance(node, TableNode):
        return _table_html(node)
    if isinstance(node, ImageNode):
        return _image_html(node)
    if isinstance(node, SignaturePlaceholder):
        return _placeholder_html(node)
    return _text_html(node)


def _background_html(image_url: Optional[str]) -> str:
    if not image_url:
        return f'<div class="no-background">{MISSING_IMAGE_TEXT}</div>'
    # a broken page image is hidden; the overlays stay in place
    return (
        f'<img class="pdf-background" src="{escape(image_url)}" alt="PDF Background" '
        "onerror=\"console.error('page image failed to load', this.src); this.style.display='none'\" />"
    )


def page_html(view: PageView, width: float, height: float) -> str:
    overlays = "".join(node_html(n) for n in view.nodes)
    return (
        f'<div class="page" data-page="{view.number}" style="width:{_px(width)};height:{_px(height)}">'
        f"{_background_html(view.image_url)}{overlays}</div>"
    )


BASE_CSS = """
  body { margin: 0; font-family: Arial, sans-serif; background: #f3f4f6; }
  .page { position: relative; background: white; margin: 16px auto; overflow: hidden; box-shadow: 0 4px 6px rgba(0,0,0,0.1); }
  .pdf-background { position: absolute; top: 0; left: 0; width: 100%; height: 100%; object-fit: fill; }
  .no-background { width: 100%; height: 100%; background: #f9f9f9; display: flex; align-items: center; justify-content: center; }
  .field-overlay, .signature-placeholder { position: absolute; display: flex; align-items: center; justify-content: center;
    text-align: center; line-height: 1.2; overflow: hidden; z-index: 10; box-sizing: border-box; }
  .field-overlay.multiline { white-space: pre-wrap; }
  .field-overlay.placeholder { color: #6b7280; border: 1px dashed #93c5fd; }
  .required { color: #dc2626; margin-left: 2px; }
  .signature-placeholder { border: 2px solid #ef4444; background: rgba(254,226,226,0.3); color: #b91c1c; font-size: 12px; }
  .signature-placeholder.mine { font-weight: 600; }
  .signature-overlay, .table-overlay { position: absolute; z-index: 10; }
  .signature-img { width: 100%; height: 100%; }
  .field-table { width: 100%; height: 100%; border-collapse: collapse; table-layout: fixed; border: 1px solid black; }
  .field-table td, .field-table th { border: 1px solid black; text-align: center; vertical-align: middle;
    padding: 0 2px; overflow: hidden; box-sizing: border-box; }
  [data-focus] { cursor: pointer; }
  [data-focus].focused { outline: 2px solid #2563eb; }
  .banner { max-width: 960px; margin: 12px auto; padding: 8px 12px; border-radius: 6px; }
  .banner.error { background: #fee2e2; color: #991b1b; }
"""


def _shell(title: str, body: str, extra_css: str = "", script: str = "") -> str:
    return f"""<!DOCTYPE html>
<html lang="ko">
<head>
  <meta charset="utf-8" />
  <title>{escape(title)}</title>
  <style>{BASE_CSS}{extra_css}</style>
</head>
<body>
{body}
{f"<script>{script}</script>" if script else ""}
</body>
</html>"""


def preview_html(title: str, pages: Sequence[PageView], scale: float, status_text: str = "") -> str:
    width, height = page_size(scale)
    header = f'<header class="banner"><strong>{escape(title)}</strong> {escape(status_text)}</header>'
    body = header + "".join(page_html(p, width, height) for p in pages)
    return _shell(title, body)


def print_html(title: str, pages: Sequence[PageView]) -> str:
    """Self-contained print document; opens the print dialog once loaded."""
    css = """
  body { background: white; }
  .page { margin: 0 auto; box-shadow: none; page-break-after: always; }
  @media print { body { margin: 0; padding: 0; } @page { size: A4; margin: 0; } }
"""
    body = "".join(page_html(p, PRINT_PAGE_WIDTH, PRINT_PAGE_HEIGHT) for p in pages)
    script = "window.addEventListener('load', function () { setTimeout(function () { window.print(); }, 500); });"
    return _shell(title, body, css, script)


def _input_html(f: Field) -> str:
    name = escape(f.id)
    label = escape(f.label or f.id)
    marker = '<span class="required">*</span>' if f.required else ""
    value = f.value or ""
    value_obj = table_value_for(f)
    if value_obj is not None:
        grid = []
        for r in range(value_obj.rows):
            cells = []
            for c in range(value_obj.cols):
                text = cell_text(value_obj.cells, r, c)
                cells.append(
                    f'<td><input data-input="{name}:{r}:{c}" data-field="{name}" data-row="{r}" data-col="{c}" '
                    f'value="{escape(text)}" /></td>'
                )
            grid.append(f"<tr>{''.join(cells)}</tr>")
        return f'<fieldset><legend>{label}{marker}</legend><table>{"".join(grid)}</table></fieldset>'
    if f.type == FieldType.TEXTAREA:
        control = f'<textarea data-input="{name}" data-field="{name}">{escape(value)}</textarea>'
    else:
        kind = {FieldType.DATE: "date", FieldType.NUMBER: "number"}.get(f.type, "text")
        control = f'<input type="{kind}" data-input="{name}" data-field="{name}" value="{escape(value)}" />'
    return f"<label>{label}{marker} {control}</label>"


EDITOR_SCRIPT = """
const cfg = JSON.parse(document.getElementById('editor-config').textContent);
const statusEl = document.getElementById('save-status');
function setStatus(text) { statusEl.textContent = text; }
async function send(method, url, body) {
  const res = await fetch(url, {method, headers: {'Content-Type': 'application/json'}, body: body ? JSON.stringify(body) : undefined});
  if (!res.ok) {
    const detail = await res.json().catch(() => ({detail: res.statusText}));
    document.getElementById('error-banner').textContent = detail.detail || res.statusText;
    throw new Error(detail.detail || res.statusText);
  }
  return res.json();
}
document.querySelectorAll('[data-focus]').forEach(function (el) {
  el.addEventListener('click', function () {
    const input = document.querySelector('[data-input="' + el.dataset.focus + '"]');
    document.querySelectorAll('.focused').forEach(function (o) { o.classList.remove('focused'); });
    el.classList.add('focused');
    if (input) { input.focus(); if (input.select) input.select(); }
  });
});
document.querySelectorAll('[data-input]').forEach(function (input) {
  input.addEventListener('input', function () {
    const fieldId = encodeURIComponent(input.dataset.field);
    const base = cfg.documentUrl + '/fields/' + fieldId;
    const req = input.dataset.row !== undefined
      ? send('PUT', base + '/cells', {row: Number(input.dataset.row), col: Number(input.dataset.col), value: input.value})
      : send('PUT', base, {value: input.value});
    req.then(function (r) { setStatus(r.saveState); });
  });
});
document.getElementById('save-now').addEventListener('click', function () {
  send('POST', cfg.documentUrl + '/save').then(function (r) { setStatus(r.saveState); });
});
document.getElementById('print').addEventListener('click', function () {
  const win = window.open(cfg.printUrl, '_blank', 'width=800,height=600');
  if (!win) { alert(cfg.popupBlocked); }
});
window.addEventListener('beforeunload', function () {
  navigator.sendBeacon(cfg.documentUrl + '/leave');
});
"""


def editor_html(
    title: str,
    document_url: str,
    pages: Sequence[PageView],
    fields: Sequence[Field],
    scale: float,
    status_text: str = "",
    notice: str = "",
) -> str:
    width, height = page_size(scale)
    config = {
        "documentUrl": document_url,
        "printUrl": f"{document_url}/print",
        "popupBlocked": POPUP_BLOCKED_MESSAGE,
    }
    inputs = "".join(_input_html(f) for f in fields if not f.is_signature)
    notice_html = f'<div class="banner">{escape(notice)}</div>' if notice else ""
    # "</" must not close the script element
    config_json = json.dumps(config, ensure_ascii=False).replace("</", "<\\/")
    body = f"""<header class="banner"><strong>{escape(title)}</strong> {escape(status_text)}
  <button id="save-now" type="button">저장</button>
  <button id="print" type="button">인쇄</button>
  <span id="save-status"></span></header>
<div id="error-banner" class="banner error"></div>
{notice_html}
<form class="banner" onsubmit="return false">{inputs}</form>
{"".join(page_html(p, width, height) for p in pages)}
<script type="application/json" id="editor-config">{config_json}</script>"""
    return _shell(title, body, script=EDITOR_SCRIPT)
