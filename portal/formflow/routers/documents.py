import dataclasses
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import HTMLResponse, RedirectResponse

from .. import config
from ..auth import ViewerContext, backend_client, resolve_viewer
from ..client import BackendClient
from ..markup import editor_html, preview_html, print_html
from ..renderer import Surface
from ..schemas import AssignPayload, DeadlineUpdate, FieldValueUpdate, RejectPayload, SignaturePayload, TableCellUpdate
from ..sessions import EditorSession, build_pages, load_document, print_pdf
from ..stores import DocumentStore
from ..transform import clamp_zoom, fit_width_scale
from ..workflow import PermissionDenied, is_overdue, require_editor, status_label, title_text

router = APIRouter()


def _scale(zoom: Optional[float], width: Optional[float]) -> float:
    if zoom:
        return clamp_zoom(zoom)
    if width:
        return fit_width_scale(width)
    return 1.0


def _serialize_document(doc):
    return {
        "id": doc.id,
        "title": title_text(doc),
        "status": doc.status.value,
        "statusLabel": status_label(doc.status),
        "templateId": doc.template_id,
        "deadline": doc.deadline,
        "overdue": is_overdue(doc),
        "folderId": doc.folder_id,
        "folderName": doc.folder_name,
        "updatedAt": doc.updated_at,
    }


def _node_payload(node):
    data = dataclasses.asdict(node)
    data["kind"] = type(node).__name__
    return data


def _session(request: Request, viewer: ViewerContext, document_id: int) -> EditorSession:
    factory = request.app.state.client_factory
    return request.app.state.sessions.open(viewer.email, document_id, lambda: factory(viewer.token))


def _edit_response(session: EditorSession, field):
    return {"field": field.to_wire(), "saveState": session.save_state.value}


@router.get("")
def list_documents(client: BackendClient = Depends(backend_client)):
    store = DocumentStore(client)
    docs = store.fetch_documents()
    return {"documents": [_serialize_document(d) for d in docs], "error": store.error}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_document(
    template_id: int,
    title: Optional[str] = None,
    deadline: Optional[datetime] = None,
    client: BackendClient = Depends(backend_client),
):
    doc = DocumentStore(client).create_document(template_id, title, deadline.isoformat() if deadline else None)
    return _serialize_document(doc)


@router.get("/{document_id}/editor", response_class=HTMLResponse)
def editor_page(
    document_id: int,
    request: Request,
    zoom: Optional[float] = None,
    width: Optional[float] = None,
    notice: str = "",
    viewer: ViewerContext = Depends(resolve_viewer),
):
    session = _session(request, viewer, document_id)
    doc = session.document
    if doc.is_completed:
        request.app.state.sessions.close(viewer.email, document_id)
        return RedirectResponse(f"/documents/{document_id}/preview", status_code=status.HTTP_303_SEE_OTHER)
    try:
        require_editor(doc, viewer.email)
    except PermissionDenied:
        request.app.state.sessions.close(viewer.email, document_id)
        raise
    scale = _scale(zoom, width)
    return editor_html(
        title_text(doc),
        f"/documents/{document_id}",
        session.pages(Surface.INTERACTIVE, scale),
        session.fields,
        scale,
        status_text=status_label(doc.status),
        notice=notice,
    )


@router.get("/{document_id}/preview", response_class=HTMLResponse)
def preview_page(
    document_id: int,
    zoom: Optional[float] = None,
    width: Optional[float] = None,
    viewer: ViewerContext = Depends(resolve_viewer),
    client: BackendClient = Depends(backend_client),
):
    doc, template, fields = load_document(client, document_id)
    scale = _scale(zoom, width)
    paths = template.image_paths() if template else []
    pages = build_pages(
        fields, doc.data.signature_fields, doc.data.signatures,
        [client.asset_url(p) for p in paths],
        surface=Surface.READONLY, scale=scale, viewer_email=viewer.email,
    )
    return preview_html(title_text(doc), pages, scale, status_text=status_label(doc.status))


@router.get("/{document_id}/print", response_class=HTMLResponse)
def print_page(document_id: int, client: BackendClient = Depends(backend_client)):
    doc, template, fields = load_document(client, document_id)
    paths = template.image_paths() if template else []
    pages = build_pages(
        fields, doc.data.signature_fields, doc.data.signatures,
        [client.asset_url(p) for p in paths],
        surface=Surface.PRINT, scale=config.PRINT_SCALE,
    )
    return print_html(doc.display_title, pages)


@router.get("/{document_id}/print.pdf")
def print_document_pdf(document_id: int, client: BackendClient = Depends(backend_client)):
    doc, template, fields = load_document(client, document_id)
    pdf_bytes = print_pdf(client, doc, template, fields)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="document_{document_id}.pdf"'},
    )


@router.get("/{document_id}/download")
def download_document(document_id: int, client: BackendClient = Depends(backend_client)):
    pdf_bytes = DocumentStore(client).download_pdf(document_id)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="document_{document_id}.pdf"'},
    )


@router.get("/{document_id}/layout")
def document_layout(
    document_id: int,
    surface: Surface = Surface.READONLY,
    scale: float = Query(default=1.0, gt=0),
    page: int = Query(default=1, ge=1),
    viewer: ViewerContext = Depends(resolve_viewer),
    client: BackendClient = Depends(backend_client),
):
    doc, template, fields = load_document(client, document_id)
    pages = build_pages(
        fields, doc.data.signature_fields, doc.data.signatures, [],
        surface=surface, scale=scale, viewer_email=viewer.email,
    )
    if page > len(pages):
        raise HTTPException(status.HTTP_404_NOT_FOUND, f"document has {len(pages)} page(s)")
    return {
        "page": page,
        "pageCount": len(pages),
        "surface": surface.value,
        "scale": scale,
        "nodes": [_node_payload(n) for n in pages[page - 1].nodes],
    }


@router.put("/{document_id}/fields/{field_id}")
def update_field(document_id: int, field_id: str, body: FieldValueUpdate, request: Request,
                 viewer: ViewerContext = Depends(resolve_viewer)):
    session = _session(request, viewer, document_id)
    try:
        field = session.set_field_value(field_id, body.value)
    except KeyError:
        raise HTTPException(status.HTTP_404_NOT_FOUND, f"field {field_id} not found")
    except ValueError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(exc))
    return _edit_response(session, field)


@router.put("/{document_id}/fields/{field_id}/cells")
def update_table_cell(document_id: int, field_id: str, body: TableCellUpdate, request: Request,
                      viewer: ViewerContext = Depends(resolve_viewer)):
    session = _session(request, viewer, document_id)
    try:
        field = session.set_table_cell(field_id, body.row, body.col, body.value)
    except KeyError:
        raise HTTPException(status.HTTP_404_NOT_FOUND, f"field {field_id} not found")
    except (ValueError, IndexError) as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(exc))
    return _edit_response(session, field)


@router.post("/{document_id}/save")
def save_document(document_id: int, request: Request, viewer: ViewerContext = Depends(resolve_viewer)):
    session = _session(request, viewer, document_id)
    session.save_now()
    return {"saveState": session.save_state.value}


@router.post("/{document_id}/leave")
def leave_document(document_id: int, request: Request, viewer: ViewerContext = Depends(resolve_viewer)):
    closed = request.app.state.sessions.close(viewer.email, document_id)
    return {"closed": closed}


def _action(request: Request, viewer: ViewerContext, document_id: int, action: str, *args):
    session = _session(request, viewer, document_id)
    doc = session.run_action(action, *args)
    return _serialize_document(doc)


@router.post("/{document_id}/start-editing")
def start_editing(document_id: int, request: Request, viewer: ViewerContext = Depends(resolve_viewer)):
    return _action(request, viewer, document_id, "start-editing")


@router.post("/{document_id}/complete-editing")
def complete_editing(document_id: int, request: Request, viewer: ViewerContext = Depends(resolve_viewer)):
    return _action(request, viewer, document_id, "complete-editing")


@router.post("/{document_id}/submit-for-review")
def submit_for_review(document_id: int, request: Request, viewer: ViewerContext = Depends(resolve_viewer)):
    return _action(request, viewer, document_id, "submit-for-review")


@router.post("/{document_id}/sign")
def sign_document(document_id: int, body: SignaturePayload, request: Request,
                  viewer: ViewerContext = Depends(resolve_viewer)):
    return _action(request, viewer, document_id, "sign", body.signature_data)


@router.post("/{document_id}/reject")
def reject_document(document_id: int, body: RejectPayload, request: Request,
                    viewer: ViewerContext = Depends(resolve_viewer)):
    return _action(request, viewer, document_id, "reject", body.reason)


@router.post("/{document_id}/assign-editor")
def assign_editor(document_id: int, body: AssignPayload, client: BackendClient = Depends(backend_client)):
    return _serialize_document(DocumentStore(client).assign_editor(document_id, body.email))


@router.post("/{document_id}/assign-reviewer")
def assign_reviewer(document_id: int, body: AssignPayload, client: BackendClient = Depends(backend_client)):
    return _serialize_document(DocumentStore(client).assign_reviewer(document_id, body.email))


@router.put("/{document_id}/deadline")
def update_deadline(document_id: int, body: DeadlineUpdate, client: BackendClient = Depends(backend_client)):
    store = DocumentStore(client)
    deadline = body.deadline.isoformat() if body.deadline else None
    doc = store.update_deadline(document_id, deadline) or store.fetch_document(document_id)
    if doc is None:
        raise store.failure
    return _serialize_document(doc)
