import json
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field as SchemaField, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

log = logging.getLogger(__name__)

IMAGE_DATA_PREFIX = "data:image"


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class FieldType(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    DATE = "date"
    NUMBER = "number"
    TABLE = "table"
    EDITOR_SIGNATURE = "editor_signature"
    SIGNER_SIGNATURE = "signer_signature"
    REVIEWER_SIGNATURE = "reviewer_signature"


SIGNATURE_TYPES = frozenset(
    {FieldType.EDITOR_SIGNATURE, FieldType.SIGNER_SIGNATURE, FieldType.REVIEWER_SIGNATURE}
)

# wire key prefix carrying the assignee of each signature type
_ASSIGNEE_KEYS = {
    FieldType.EDITOR_SIGNATURE: "editor",
    FieldType.SIGNER_SIGNATURE: "signer",
    FieldType.REVIEWER_SIGNATURE: "reviewer",
}


class DocumentStatus(str, Enum):
    DRAFT = "DRAFT"
    EDITING = "EDITING"
    READY_FOR_REVIEW = "READY_FOR_REVIEW"
    REVIEWING = "REVIEWING"
    SIGNING = "SIGNING"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


class TaskRole(str, Enum):
    CREATOR = "CREATOR"
    EDITOR = "EDITOR"
    REVIEWER = "REVIEWER"
    SIGNER = "SIGNER"


class Box(BaseModel):
    x: float = SchemaField(ge=0)
    y: float = SchemaField(ge=0)
    width: float = SchemaField(gt=0)
    height: float = SchemaField(gt=0)


class FontSpec(BaseModel):
    size: float = 14
    family: str = "Arial"


class TableShape(WireModel):
    rows: int = SchemaField(gt=0)
    cols: int = SchemaField(gt=0)
    column_widths: Optional[List[float]] = None
    column_headers: Optional[List[str]] = None
    cells: Optional[List[List[Any]]] = None

    @model_validator(mode="before")
    @classmethod
    def _tolerate_gaps(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        out = dict(data)
        for key in ("columnHeaders", "column_headers"):
            if isinstance(out.get(key), list):
                out[key] = ["" if h is None else str(h) for h in out[key]]
        for key in ("columnWidths", "column_widths"):
            widths = out.get(key)
            if isinstance(widths, list) and not all(
                isinstance(w, (int, float)) and not isinstance(w, bool) for w in widths
            ):
                log.warning("dropping unusable column widths %.60r", widths)
                out[key] = None
        return out


def _non_negative(value: Any) -> Any:
    if isinstance(value, (int, float)) and value < 0:
        return 0
    return value


def parse_fields(model: type, raw: List[Any], owner: str) -> list:
    """Validate ``raw`` item by item, skipping the ones that do not parse."""
    parsed = []
    for item in raw:
        if isinstance(item, model):
            parsed.append(item)
            continue
        if not isinstance(item, dict):
            continue
        try:
            parsed.append(model.model_validate(item))
        except ValidationError as exc:
            log.warning("%s: skipping %s %r (%d errors): %s",
                        owner, model.__name__, item.get("id"), exc.error_count(), exc.errors()[0]["msg"])
    return parsed


def _id_text(value: Any) -> Any:
    # folder ids arrive as numbers or strings depending on the endpoint
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


def _normalise_type(raw: Any, has_table: bool) -> str:
    text = str(raw or "").strip().lower()
    if not text or text == "field":
        return FieldType.TABLE.value if has_table else FieldType.TEXT.value
    try:
        return FieldType(text).value
    except ValueError:
        log.warning("unknown field type %r, rendering as text", raw)
        return FieldType.TEXT.value


class Field(BaseModel):
    """A placed form element.

    The backend sends fields flat (``x``, ``y``, ``fontSize``, ``tableData``...);
    the model nests them into ``box``, ``font`` and ``table_shape`` and
    :meth:`to_wire` flattens them back.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    label: str = ""
    type: FieldType = FieldType.TEXT
    box: Box
    value: Optional[str] = None
    required: bool = False
    font: FontSpec = SchemaField(default_factory=FontSpec)
    page: int = SchemaField(default=1, ge=1)
    table_shape: Optional[TableShape] = None
    assignee_email: Optional[str] = None
    assignee_name: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _from_wire(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "box" in data:
            return data
        out = dict(data)
        out["id"] = str(data.get("id", ""))
        out["box"] = {
            "x": _non_negative(data.get("x", 0)),
            "y": _non_negative(data.get("y", 0)),
            "width": data.get("width") or 100,
            "height": data.get("height") or 30,
        }
        table_data = data.get("tableData")
        if table_data and "table_shape" not in data:
            out["table_shape"] = table_data
        field_type = _normalise_type(data.get("type") or data.get("fieldType"), bool(table_data))
        out["type"] = field_type
        if "font" not in data:
            out["font"] = {
                "size": data.get("fontSize") or 14,
                "family": data.get("fontFamily") or "Arial",
            }
        if data.get("page") is None:
            out["page"] = 1
        if out.get("value") is not None and not isinstance(out["value"], str):
            # some legacy rows store table values as objects
            out["value"] = json.dumps(out["value"], ensure_ascii=False)
        prefix = _ASSIGNEE_KEYS.get(FieldType(field_type))
        if prefix and "assignee_email" not in data:
            out["assignee_email"] = data.get(f"{prefix}Email")
            out["assignee_name"] = data.get(f"{prefix}Name")
        return out

    @property
    def is_signature(self) -> bool:
        return self.type in SIGNATURE_TYPES

    def to_wire(self) -> dict:
        data: Dict[str, Any] = {
            "id": self.id,
            "label": self.label,
            "x": self.box.x,
            "y": self.box.y,
            "width": self.box.width,
            "height": self.box.height,
            "type": self.type.value,
            "value": self.value,
            "required": self.required,
            "fontSize": self.font.size,
            "fontFamily": self.font.family,
            "page": self.page,
        }
        if self.table_shape is not None:
            data["tableData"] = self.table_shape.to_wire()
        prefix = _ASSIGNEE_KEYS.get(self.type)
        if prefix and self.assignee_email:
            data[f"{prefix}Email"] = self.assignee_email
            if self.assignee_name:
                data[f"{prefix}Name"] = self.assignee_name
        return data


class SignatureAlreadyPresent(Exception):
    pass


class SignatureField(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    owner_email: str
    owner_name: Optional[str] = None
    box: Box
    page: int = SchemaField(default=1, ge=1)
    image_data: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _from_wire(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "box" in data:
            return data
        return {
            "id": str(data.get("id", "")),
            "owner_email": data.get("reviewerEmail") or data.get("ownerEmail") or "",
            "owner_name": data.get("reviewerName") or data.get("ownerName"),
            "box": {
                "x": _non_negative(data.get("x", 0)),
                "y": _non_negative(data.get("y", 0)),
                "width": data.get("width") or 100,
                "height": data.get("height") or 30,
            },
            "page": data.get("page") or 1,
            "image_data": data.get("signatureData") or data.get("imageData"),
        }

    @property
    def signed(self) -> bool:
        return bool(self.image_data)

    def with_signature(self, image_data: str) -> "SignatureField":
        if self.signed:
            raise SignatureAlreadyPresent(f"signature slot {self.id} is already signed by {self.owner_email}")
        return self.model_copy(update={"image_data": image_data})

    def to_wire(self) -> dict:
        data = {
            "id": self.id,
            "reviewerEmail": self.owner_email,
            "x": self.box.x,
            "y": self.box.y,
            "width": self.box.width,
            "height": self.box.height,
            "page": self.page,
        }
        if self.owner_name:
            data["reviewerName"] = self.owner_name
        if self.image_data:
            data["signatureData"] = self.image_data
        return data


class DocumentData(WireModel):
    coordinate_fields: List[Field] = SchemaField(default_factory=list)
    signature_fields: List[SignatureField] = SchemaField(default_factory=list)
    signatures: Dict[str, str] = SchemaField(default_factory=dict)

    @field_validator("coordinate_fields", mode="before")
    @classmethod
    def _skip_bad_fields(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        return parse_fields(Field, value, "document data")

    @field_validator("signature_fields", mode="before")
    @classmethod
    def _skip_bad_slots(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        return parse_fields(SignatureField, value, "document data")

    def to_wire(self) -> dict:
        return {
            "coordinateFields": [f.to_wire() for f in self.coordinate_fields],
            "signatureFields": [s.to_wire() for s in self.signature_fields],
            "signatures": dict(self.signatures),
        }


class TaskInfo(WireModel):
    id: Optional[int] = None
    role: str
    assigned_user_email: Optional[str] = None
    assigned_user_name: Optional[str] = None
    status: Optional[str] = None
    created_at: Optional[str] = None


class TemplateInfo(WireModel):
    id: int
    name: str = ""
    description: Optional[str] = None
    pdf_file_path: Optional[str] = None
    pdf_image_path: Optional[str] = None
    pdf_image_paths: Optional[Any] = None
    coordinate_fields: Optional[Any] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def fields(self) -> List[Field]:
        raw = self.coordinate_fields
        if not raw:
            return []
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError:
                log.error("template %s has unreadable coordinateFields", self.id)
                return []
        if not isinstance(raw, list):
            return []
        return parse_fields(Field, raw, f"template {self.id}")

    def image_paths(self) -> List[str]:
        paths = self.pdf_image_paths
        if isinstance(paths, str):
            try:
                paths = json.loads(paths)
            except ValueError:
                paths = [paths]
        if isinstance(paths, list) and paths:
            return [str(p) for p in paths if p]
        if self.pdf_image_path:
            return [self.pdf_image_path]
        return []


class Document(WireModel):
    id: int
    template_id: Optional[int] = None
    title: str = ""
    template_name: Optional[str] = None
    status: DocumentStatus = DocumentStatus.DRAFT
    data: DocumentData = SchemaField(default_factory=DocumentData)
    tasks: List[TaskInfo] = SchemaField(default_factory=list)
    template: Optional[TemplateInfo] = None
    deadline: Optional[str] = None
    folder_id: Optional[str] = None
    folder_name: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @field_validator("folder_id", mode="before")
    @classmethod
    def _folder_id_text(cls, value: Any) -> Any:
        return _id_text(value)

    @model_validator(mode="before")
    @classmethod
    def _null_data(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("data") is None:
            data = {**data, "data": {}}
        return data

    @property
    def is_completed(self) -> bool:
        return self.status == DocumentStatus.COMPLETED

    @property
    def display_title(self) -> str:
        return self.title or self.template_name or "제목 없음"

    def holds_role(self, email: Optional[str], *roles: TaskRole) -> bool:
        if not email:
            return False
        wanted = {r.value for r in roles}
        return any(t.assigned_user_email == email and t.role in wanted for t in self.tasks)

    def assignee(self, role: TaskRole) -> Optional[TaskInfo]:
        for task in self.tasks:
            if task.role == role.value:
                return task
        return None


class Template(WireModel):
    id: int
    name: str = ""
    description: Optional[str] = None
    is_public: Optional[bool] = None
    pdf_file_path: Optional[str] = None
    pdf_image_path: Optional[str] = None
    created_by_name: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class Notification(WireModel):
    id: int
    title: str = ""
    message: str = ""
    type: str = "SYSTEM_NOTICE"
    is_read: bool = False
    action_url: Optional[str] = None
    created_at: Optional[str] = None
    read_at: Optional[str] = None


class StagingItem(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: Optional[int] = None
    row_number: Optional[int] = None
    title: Optional[str] = None
    status: Optional[str] = None
    errors: List[str] = SchemaField(default_factory=list)


class Folder(WireModel):
    id: str
    name: str = ""
    parent_id: Optional[str] = None
    parent_name: Optional[str] = None
    created_by: Optional[str] = None
    created_by_name: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    full_path: Optional[str] = None
    children_count: int = 0
    documents_count: int = 0
    children: List["Folder"] = SchemaField(default_factory=list)

    @field_validator("id", "parent_id", mode="before")
    @classmethod
    def _ids_text(cls, value: Any) -> Any:
        return _id_text(value)

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            for key in ("children", "childrenCount", "documentsCount"):
                if key in data and data[key] is None:
                    data = {k: v for k, v in data.items() if k != key}
        return data
