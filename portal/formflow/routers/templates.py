from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import HTMLResponse

from ..auth import ViewerContext, backend_client, resolve_viewer
from ..client import BackendClient
from ..markup import preview_html
from ..renderer import Surface
from ..sessions import build_pages
from ..stores import TemplateStore
from ..transform import clamp_zoom

router = APIRouter()


def _serialize_template(t):
    return {
        "id": t.id,
        "name": t.name,
        "description": t.description,
        "createdByName": t.created_by_name,
        "createdAt": t.created_at,
        "updatedAt": t.updated_at,
    }


@router.get("")
def list_templates(client: BackendClient = Depends(backend_client)):
    store = TemplateStore(client)
    templates = store.fetch_templates()
    return {"templates": [_serialize_template(t) for t in templates], "error": store.error}


@router.get("/{template_id}/preview", response_class=HTMLResponse)
def preview_template(
    template_id: int,
    zoom: float = Query(default=1.0, gt=0),
    viewer: ViewerContext = Depends(resolve_viewer),
    client: BackendClient = Depends(backend_client),
):
    store = TemplateStore(client)
    info = store.fetch_template(template_id)
    if info is None:
        raise store.failure
    scale = clamp_zoom(zoom)
    # a template has no values yet, so its labels stand in for them
    pages = build_pages(
        info.fields(), [], {}, [client.asset_url(p) for p in info.image_paths()],
        surface=Surface.INTERACTIVE, scale=scale, viewer_email=viewer.email,
    )
    return preview_html(info.name or f"template {template_id}", pages, scale)


@router.put("/{template_id}")
def update_template(template_id: int, changes: Dict[str, Any], client: BackendClient = Depends(backend_client)):
    return _serialize_template(TemplateStore(client).update_template(template_id, changes))


@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_template(template_id: int, client: BackendClient = Depends(backend_client)):
    TemplateStore(client).delete_template(template_id)


@router.post("/{template_id}/duplicate", status_code=status.HTTP_201_CREATED)
def duplicate_template(
    template_id: int,
    name: str,
    description: Optional[str] = None,
    client: BackendClient = Depends(backend_client),
):
    if not name.strip():
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "name is required")
    return _serialize_template(TemplateStore(client).duplicate_template(template_id, name.strip(), description))
