from fastapi import APIRouter, Depends, HTTPException, status

from ..auth import backend_client
from ..client import BackendClient
from ..schemas import DocumentMove, FolderCreate, FolderMove, FolderRename
from ..stores import FolderStore
from ..workflow import is_overdue, status_label, title_text

router = APIRouter()


def _serialize_folder(f):
    return {
        "id": f.id,
        "name": f.name,
        "parentId": f.parent_id,
        "fullPath": f.full_path,
        "childrenCount": f.children_count,
        "documentsCount": f.documents_count,
        "children": [_serialize_folder(c) for c in f.children],
    }


def _contents(store: FolderStore):
    return {
        "folder": _serialize_folder(store.current) if store.current else None,
        "path": [{"id": f.id, "name": f.name} for f in store.path],
        "folders": [_serialize_folder(f) for f in store.folders],
        "documents": [
            {
                "id": d.id,
                "title": title_text(d),
                "status": d.status.value,
                "statusLabel": status_label(d.status),
                "deadline": d.deadline,
                "overdue": is_overdue(d),
            }
            for d in store.documents
        ],
        "error": store.error,
    }


def _clean_name(name: str) -> str:
    name = name.strip()
    if not name:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "folder name is required")
    return name


@router.get("")
def root_contents(client: BackendClient = Depends(backend_client)):
    store = FolderStore(client)
    store.load_contents(None)
    return _contents(store)


@router.get("/access")
def folder_access(client: BackendClient = Depends(backend_client)):
    return {"access": FolderStore(client).check_access()}


@router.get("/tree")
def folder_tree(client: BackendClient = Depends(backend_client)):
    store = FolderStore(client)
    folders = store.fetch_tree()
    return {"folders": [_serialize_folder(f) for f in folders], "error": store.error}


@router.get("/{folder_id}")
def folder_contents(folder_id: str, client: BackendClient = Depends(backend_client)):
    store = FolderStore(client)
    if not store.load_contents(folder_id):
        raise store.failure
    return _contents(store)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_folder(body: FolderCreate, client: BackendClient = Depends(backend_client)):
    folder = FolderStore(client).create_folder(_clean_name(body.name), body.parent_id)
    return _serialize_folder(folder)


@router.put("/{folder_id}")
def rename_folder(folder_id: str, body: FolderRename, client: BackendClient = Depends(backend_client)):
    return _serialize_folder(FolderStore(client).rename_folder(folder_id, _clean_name(body.name)))


@router.post("/{folder_id}/move")
def move_folder(folder_id: str, body: FolderMove, client: BackendClient = Depends(backend_client)):
    try:
        folder = FolderStore(client).move_folder(folder_id, body.parent_id)
    except ValueError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(exc))
    return _serialize_folder(folder)


@router.delete("/{folder_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_folder(folder_id: str, client: BackendClient = Depends(backend_client)):
    FolderStore(client).delete_folder(folder_id)


@router.put("/documents/{document_id}/move", status_code=status.HTTP_204_NO_CONTENT)
def move_document(document_id: int, body: DocumentMove, client: BackendClient = Depends(backend_client)):
    FolderStore(client).move_document(document_id, body.target_folder_id)


@router.delete("/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_document(document_id: int, client: BackendClient = Depends(backend_client)):
    FolderStore(client).remove_document(document_id)
