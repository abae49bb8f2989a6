"""REST client for the document backend."""
import logging
from typing import Any, Dict, List, Optional

import httpx

from .config import BACKEND_API_URL, BACKEND_TIMEOUT_SECONDS, UPLOADS_BASE_URL
from .models import Document, DocumentData, Folder, Notification, StagingItem, Template, TemplateInfo

log = logging.getLogger(__name__)


class BackendError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body.get("detail") or response.reason_phrase)
    return response.reason_phrase


class BackendClient:
    """Thin wrapper over ``httpx.Client``.

    Every call raises :class:`BackendError` for transport failures and
    non-2xx answers, so callers only handle one exception type.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: str = BACKEND_API_URL,
        uploads_url: str = UPLOADS_BASE_URL,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = BACKEND_TIMEOUT_SECONDS,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = token if token.lower().startswith("bearer ") else f"Bearer {token}"
        self.uploads_url = uploads_url.rstrip("/")
        self._http = httpx.Client(base_url=base_url, headers=headers, transport=transport, timeout=timeout)

    def close(self):
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = self._http.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            log.error("%s %s failed: %s", method, path, exc)
            raise BackendError(502, f"backend unreachable: {exc}") from exc
        if response.is_error:
            message = _error_message(response)
            log.warning("%s %s -> %s %s", method, path, response.status_code, message)
            raise BackendError(response.status_code, message)
        return response

    def _json(self, method: str, path: str, **kwargs) -> Any:
        response = self._request(method, path, **kwargs)
        if not response.content:
            return None
        return response.json()

    # ---------- documents ----------
    def list_documents(self) -> List[Document]:
        return [Document.model_validate(d) for d in self._json("GET", "/documents") or []]

    def get_document(self, document_id: int) -> Document:
        return Document.model_validate(self._json("GET", f"/documents/{document_id}"))

    def create_document(self, template_id: int, title: Optional[str] = None, **extra) -> Document:
        body = {"templateId": template_id, **extra}
        if title:
            body["title"] = title
        return Document.model_validate(self._json("POST", "/documents", json=body))

    def update_document_data(self, document_id: int, data: DocumentData) -> Optional[Document]:
        body = self._json("PUT", f"/documents/{document_id}", json={"data": data.to_wire()})
        return Document.model_validate(body) if isinstance(body, dict) else None

    def save_field_value(self, document_id: int, field_id: str, value: Optional[str]):
        self._request("POST", f"/documents/{document_id}/field-values",
                      json={"templateFieldId": field_id, "value": value})

    def _action(self, document_id: int, action: str, body: Optional[dict] = None) -> Optional[Document]:
        payload = self._json("POST", f"/documents/{document_id}/{action}", json=body)
        return Document.model_validate(payload) if isinstance(payload, dict) else None

    def start_editing(self, document_id: int) -> Optional[Document]:
        return self._action(document_id, "start-editing")

    def complete_editing(self, document_id: int) -> Optional[Document]:
        return self._action(document_id, "complete-editing")

    def submit_for_review(self, document_id: int) -> Optional[Document]:
        return self._action(document_id, "submit-for-review")

    def sign(self, document_id: int, signature_data: str) -> Optional[Document]:
        return self._action(document_id, "sign", {"signatureData": signature_data})

    def reject(self, document_id: int, reason: str) -> Optional[Document]:
        return self._action(document_id, "reject", {"reason": reason})

    def assign_editor(self, document_id: int, editor_email: str) -> Document:
        return Document.model_validate(
            self._json("POST", f"/documents/{document_id}/assign-editor", json={"editorEmail": editor_email})
        )

    def assign_reviewer(self, document_id: int, reviewer_email: str) -> Document:
        return Document.model_validate(
            self._json("POST", f"/documents/{document_id}/assign-reviewer", json={"reviewerEmail": reviewer_email})
        )

    def download_pdf(self, document_id: int) -> bytes:
        return self._request("GET", f"/documents/{document_id}/download-pdf").content

    def update_deadline(self, document_id: int, deadline: Optional[str]) -> Optional[Document]:
        body = self._json("PUT", f"/documents/{document_id}/deadline", json={"deadline": deadline})
        return Document.model_validate(body) if isinstance(body, dict) else None

    # ---------- templates ----------
    def list_templates(self) -> List[Template]:
        return [Template.model_validate(t) for t in self._json("GET", "/templates") or []]

    def get_template(self, template_id: int) -> TemplateInfo:
        return TemplateInfo.model_validate(self._json("GET", f"/templates/{template_id}"))

    def update_template(self, template_id: int, changes: Dict[str, Any]) -> Template:
        return Template.model_validate(self._json("PUT", f"/templates/{template_id}", json=changes))

    def delete_template(self, template_id: int):
        self._request("DELETE", f"/templates/{template_id}")

    def duplicate_template(self, template_id: int, name: str, description: Optional[str] = None) -> Template:
        body = {"name": name}
        if description is not None:
            body["description"] = description
        return Template.model_validate(self._json("POST", f"/templates/{template_id}/duplicate", json=body))

    # ---------- notifications ----------
    def list_notifications(self, page: int = 0, size: int = 20) -> Dict[str, Any]:
        body = self._json("GET", "/notifications", params={"page": page, "size": size}) or {}
        return {
            "content": [Notification.model_validate(n) for n in body.get("content", [])],
            "total_elements": body.get("totalElements", 0),
        }

    def unread_count(self) -> int:
        body = self._json("GET", "/notifications/unread/count")
        if isinstance(body, dict):
            return int(body.get("count", 0))
        return int(body or 0)

    def mark_notification_read(self, notification_id: int):
        self._request("PUT", f"/notifications/{notification_id}/read")

    def mark_all_notifications_read(self):
        self._request("PUT", "/notifications/read-all")

    def delete_notification(self, notification_id: int):
        self._request("DELETE", f"/notifications/{notification_id}")

    def delete_all_notifications(self):
        self._request("DELETE", "/notifications/all")

    # ---------- folders ----------
    def folder_access(self) -> bool:
        return bool(self._json("GET", "/folders/access-check"))

    def root_folders(self) -> List[Folder]:
        return [Folder.model_validate(f) for f in self._json("GET", "/folders") or []]

    def folder_tree(self) -> List[Folder]:
        return [Folder.model_validate(f) for f in self._json("GET", "/folders/tree") or []]

    def get_folder(self, folder_id: str) -> Folder:
        return Folder.model_validate(self._json("GET", f"/folders/{folder_id}"))

    def folder_children(self, folder_id: str) -> List[Folder]:
        return [Folder.model_validate(f) for f in self._json("GET", f"/folders/{folder_id}/children") or []]

    def folder_documents(self, folder_id: str) -> List[Document]:
        return [Document.model_validate(d) for d in self._json("GET", f"/folders/{folder_id}/documents") or []]

    def unclassified_documents(self) -> List[Document]:
        return [Document.model_validate(d) for d in self._json("GET", "/folders/unclassified/documents") or []]

    def create_folder(self, name: str, parent_id: Optional[str] = None) -> Folder:
        return Folder.model_validate(self._json("POST", "/folders", json={"name": name, "parentId": parent_id}))

    def update_folder(self, folder_id: str, changes: Dict[str, Any]) -> Folder:
        return Folder.model_validate(self._json("PUT", f"/folders/{folder_id}", json=changes))

    def delete_folder(self, folder_id: str):
        self._request("DELETE", f"/folders/{folder_id}")

    def move_document(self, document_id: int, target_folder_id: Optional[str]):
        self._request("PUT", f"/folders/documents/{document_id}/move", json={"targetFolderId": target_folder_id})

    def remove_document_from_folder(self, document_id: int):
        self._request("DELETE", f"/folders/documents/{document_id}")

    # ---------- bulk creation ----------
    def staging_items(self, staging_id: str) -> List[StagingItem]:
        body = self._json("GET", f"/documents/bulk/staging/{staging_id}/items") or []
        if isinstance(body, dict):
            body = body.get("items", [])
        return [StagingItem.model_validate(i) for i in body]

    def commit_staging(self, staging_id: str) -> Any:
        return self._json("POST", "/documents/bulk/commit", json={"stagingId": staging_id})

    def cancel_staging(self, staging_id: str):
        self._request("POST", "/documents/bulk/cancel", json={"stagingId": staging_id})

    # ---------- static assets ----------
    def asset_url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        if not path.startswith("/"):
            path = f"/uploads/pdf-templates/{path}"
        return f"{self.uploads_url}{path}"

    def fetch_asset(self, path: str) -> bytes:
        url = self.asset_url(path)
        try:
            response = self._http.get(url)
        except httpx.HTTPError as exc:
            raise BackendError(502, f"could not fetch {url}: {exc}") from exc
        if response.is_error:
            raise BackendError(response.status_code, f"could not fetch {url}")
        return response.content
