"""One renderer for every surface.

:func:`render_page` turns merged fields and signature slots into positioned
nodes for the interactive editor, the read-only preview and the print
document. The nodes carry surface coordinates only; :mod:`formflow.markup`
and :mod:`formflow.stamping` turn them into HTML and PDF.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .models import IMAGE_DATA_PREFIX, Field, FieldType, SignatureField
from .tables import TableLayout, layout_table, table_value_for
from .transform import SurfaceBox, to_surface

log = logging.getLogger(__name__)

PRINT_MIN_FONT_PX = 8
HEADER_FONT_RATIO = 0.85

_SIGNER_DEFAULT_NAMES = {
    FieldType.EDITOR_SIGNATURE: "작성자",
    FieldType.SIGNER_SIGNATURE: "서명자",
    FieldType.REVIEWER_SIGNATURE: "검토자",
}
_SLOT_DEFAULT_NAME = "검토자"


class Surface(str, Enum):
    INTERACTIVE = "interactive"
    READONLY = "readonly"
    PRINT = "print"


@dataclass(frozen=True)
class TextNode:
    field_id: str
    box: SurfaceBox
    text: str
    font_size: float
    font_family: str
    placeholder: bool = False
    required: bool = False
    multiline: bool = False
    focus_target: Optional[str] = None


@dataclass(frozen=True)
class ImageNode:
    field_id: str
    box: SurfaceBox
    src: str
    alt: str = ""
    fit: str = "contain"


@dataclass(frozen=True)
class SignaturePlaceholder:
    field_id: str
    box: SurfaceBox
    text: str
    is_viewer: bool = False
    focus_target: Optional[str] = None


@dataclass(frozen=True)
class TableNode:
    field_id: str
    box: SurfaceBox
    layout: TableLayout
    font_size: float
    font_family: str
    interactive: bool = False

    @property
    def header_font_size(self) -> float:
        return self.font_size * HEADER_FONT_RATIO

    def cell_target(self, row: int, col: int) -> Optional[str]:
        if not self.interactive:
            return None
        return cell_focus_target(self.field_id, row, col)


Node = Union[TextNode, ImageNode, SignaturePlaceholder, TableNode]


@dataclass
class MergeResult:
    fields: List[Field]
    # (template field id, document field id) pairs joined through the label
    label_matches: List[Tuple[str, str]] = field(default_factory=list)


def cell_focus_target(field_id: str, row: int, col: int) -> str:
    return f"{field_id}:{row}:{col}"


def parse_focus_target(target: str) -> Tuple[str, Optional[Tuple[int, int]]]:
    head, sep, rest = target.rpartition(":")
    if sep:
        field_id, sep2, row = head.rpartition(":")
        if sep2 and row.isdigit() and rest.isdigit():
            return field_id, (int(row), int(rest))
    return target, None


def merge_fields(
    template_fields: Sequence[Field],
    document_fields: Sequence[Field],
    allow_label_fallback: bool = True,
) -> MergeResult:
    """Overlay a document's field copies on the template's fields.

    Matching is by id. Legacy documents whose ids were regenerated can still be
    joined by label; every such join is logged and reported so the data can be
    repaired, and ``allow_label_fallback=False`` turns it off.
    Document fields with no template counterpart are appended in their order.
    """
    by_id = {f.id: f for f in document_fields}
    template_ids = {f.id for f in template_fields}
    used = set()
    merged = []
    label_matches = []

    for tf in template_fields:
        match = by_id.get(tf.id)
        if match is None and allow_label_fallback and tf.label:
            for df in document_fields:
                if df.id in used or df.id in template_ids:
                    continue
                if df.label == tf.label:
                    match = df
                    label_matches.append((tf.id, df.id))
                    log.warning(
                        "field %r matched document field %r by label %r; ids disagree",
                        tf.id, df.id, tf.label,
                    )
                    break
        if match is None:
            merged.append(tf)
            continue
        used.add(match.id)
        if match.table_shape is None and tf.table_shape is not None:
            match = match.model_copy(update={"table_shape": tf.table_shape})
        merged.append(match)

    for df in document_fields:
        if df.id not in used and df.id not in template_ids:
            merged.append(df)
    return MergeResult(merged, label_matches)


def is_image_data(value: Optional[str]) -> bool:
    return bool(value) and value.startswith(IMAGE_DATA_PREFIX)


def _font_px(size: float, scale: float, surface: Surface) -> float:
    px = size * scale
    if surface == Surface.PRINT:
        return max(px, PRINT_MIN_FONT_PX)
    return px


def _signature_image(
    f: Field,
    slots_by_id: Mapping[str, SignatureField],
    signatures: Mapping[str, str],
) -> Optional[str]:
    if is_image_data(f.value):
        return f.value
    slot = slots_by_id.get(f.id)
    if slot is not None and is_image_data(slot.image_data):
        return slot.image_data
    if f.assignee_email and is_image_data(signatures.get(f.assignee_email)):
        return signatures[f.assignee_email]
    return None


def _placeholder_text(name: str, is_viewer: bool) -> str:
    text = f"{name} 서명"
    if is_viewer:
        text += " (본인)"
    return text


def _render_signature_field(
    f: Field,
    box: SurfaceBox,
    surface: Surface,
    slots_by_id: Mapping[str, SignatureField],
    signatures: Mapping[str, str],
    viewer_email: Optional[str],
) -> Optional[Node]:
    image = _signature_image(f, slots_by_id, signatures)
    if image:
        return ImageNode(f.id, box, image, alt=f"{_SIGNER_DEFAULT_NAMES[f.type]} 서명")
    if surface == Surface.PRINT:
        return None
    name = f.assignee_name or f.assignee_email or _SIGNER_DEFAULT_NAMES[f.type]
    is_viewer = bool(viewer_email) and f.assignee_email == viewer_email
    return SignaturePlaceholder(
        f.id, box, _placeholder_text(name, is_viewer), is_viewer,
        focus_target=f.id if surface == Surface.INTERACTIVE else None,
    )


def _render_slot(
    slot: SignatureField,
    scale: float,
    surface: Surface,
    signatures: Mapping[str, str],
    viewer_email: Optional[str],
) -> Optional[Node]:
    box = to_surface(slot.box, scale)
    image = slot.image_data if is_image_data(slot.image_data) else signatures.get(slot.owner_email)
    if is_image_data(image):
        return ImageNode(slot.id, box, image, alt=f"{slot.owner_name or slot.owner_email} 서명")
    if surface == Surface.PRINT:
        return None
    name = slot.owner_name or slot.owner_email or _SLOT_DEFAULT_NAME
    is_viewer = bool(viewer_email) and slot.owner_email == viewer_email
    return SignaturePlaceholder(slot.id, box, _placeholder_text(name, is_viewer), is_viewer)


def render_field(
    f: Field,
    *,
    surface: Surface,
    scale: float,
    slots_by_id: Optional[Mapping[str, SignatureField]] = None,
    signatures: Optional[Mapping[str, str]] = None,
    viewer_email: Optional[str] = None,
) -> Optional[Node]:
    box = to_surface(f.box, scale)
    if f.is_signature:
        return _render_signature_field(f, box, surface, slots_by_id or {}, signatures or {}, viewer_email)

    font_size = _font_px(f.font.size, scale, surface)
    table_value = table_value_for(f)
    if table_value is not None:
        layout = layout_table(f, box.width, box.height, table_value)
        return TableNode(
            f.id, box, layout, font_size, f.font.family,
            interactive=surface == Surface.INTERACTIVE,
        )

    focus = f.id if surface == Surface.INTERACTIVE else None
    multiline = f.type in (FieldType.TEXTAREA, FieldType.TABLE)
    if f.value:
        return TextNode(f.id, box, f.value, font_size, f.font.family,
                        multiline=multiline, focus_target=focus)
    if surface == Surface.INTERACTIVE:
        return TextNode(f.id, box, f.label, font_size, f.font.family,
                        placeholder=True, required=f.required, multiline=multiline, focus_target=focus)
    return None


def render_page(
    fields: Iterable[Field],
    *,
    surface: Surface,
    scale: float,
    page: int = 1,
    signature_fields: Sequence[SignatureField] = (),
    signatures: Optional[Mapping[str, str]] = None,
    viewer_email: Optional[str] = None,
) -> List[Node]:
    """Positioned nodes for one page, fields first then signature slots."""
    signatures = signatures or {}
    slots_by_id: Dict[str, SignatureField] = {s.id: s for s in signature_fields}
    field_ids = set()
    nodes: List[Node] = []
    for f in fields:
        field_ids.add(f.id)
        if f.page != page:
            continue
        node = render_field(
            f, surface=surface, scale=scale, slots_by_id=slots_by_id,
            signatures=signatures, viewer_email=viewer_email,
        )
        if node is not None:
            nodes.append(node)
    for slot in signature_fields:
        # slots that back a signature field were drawn with that field
        if slot.page != page or slot.id in field_ids:
            continue
        node = _render_slot(slot, scale, surface, signatures, viewer_email)
        if node is not None:
            nodes.append(node)
    return nodes


def page_count(fields: Iterable[Field], signature_fields: Iterable[SignatureField] = (), images: int = 1) -> int:
    pages = [f.page for f in fields] + [s.page for s in signature_fields]
    return max([images, 1] + pages)
