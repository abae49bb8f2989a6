import logging
import threading
from typing import Callable, Dict, List, Optional, Sequence

from . import config
from .autosave import DebouncedSaver, SaveState
from .client import BackendClient, BackendError
from .markup import PageView
from .models import Document, DocumentData, Field, SignatureAlreadyPresent, SignatureField, TemplateInfo
from .renderer import MergeResult, Surface, merge_fields, page_count, render_page
from .stamping import PDF_SCALE, stamp_pages
from .stores import DocumentStore, TemplateStore
from .tables import set_cell, table_value_for
from .workflow import ensure_mutable, ensure_transition, has_signed, require_editor, require_signer

log = logging.getLogger(__name__)


def merged_fields(doc: Document, template: Optional[TemplateInfo]) -> MergeResult:
    template_fields = template.fields() if template else []
    return merge_fields(template_fields, doc.data.coordinate_fields)


def build_pages(
    fields: Sequence[Field],
    signature_fields: Sequence[SignatureField],
    signatures: Dict[str, str],
    image_urls: Sequence[str],
    *,
    surface: Surface,
    scale: float,
    viewer_email: Optional[str] = None,
) -> List[PageView]:
    total = page_count(fields, signature_fields, len(image_urls))
    pages = []
    for number in range(1, total + 1):
        nodes = render_page(
            fields, surface=surface, scale=scale, page=number,
            signature_fields=signature_fields, signatures=signatures, viewer_email=viewer_email,
        )
        url = image_urls[number - 1] if number <= len(image_urls) else None
        pages.append(PageView(number, url, nodes))
    return pages


def load_document(client: BackendClient, document_id: int):
    """Document, its template and the merged field list, for read-only views."""
    store = DocumentStore(client)
    doc = store.fetch_document(document_id)
    if doc is None:
        raise store.failure or BackendError(404, f"document {document_id} not found")
    template = doc.template
    if template is None and doc.template_id is not None:
        template = TemplateStore(client).fetch_template(doc.template_id)
    return doc, template, merged_fields(doc, template).fields


def print_pdf(client: BackendClient, doc: Document, template: Optional[TemplateInfo], fields: Sequence[Field]) -> bytes:
    paths = template.image_paths() if template else []
    backgrounds = []
    for path in paths:
        try:
            backgrounds.append(client.fetch_asset(path))
        except BackendError as exc:
            log.error("page image %s unavailable, printing without it: %s", path, exc.message)
            backgrounds.append(None)
    total = page_count(fields, doc.data.signature_fields, len(paths))
    pages = [
        render_page(
            fields, surface=Surface.PRINT, scale=PDF_SCALE, page=n,
            signature_fields=doc.data.signature_fields, signatures=doc.data.signatures,
        )
        for n in range(1, total + 1)
    ]
    return stamp_pages(pages, backgrounds, title=doc.display_title)


class EditorSession:
    """One viewer editing one document.

    Created when the viewer enters the editor and closed when they leave or
    open another document; closing flushes any pending save.
    """

    def __init__(self, client: BackendClient, document_id: int, viewer_email: str,
                 delay: float = config.SAVE_DEBOUNCE_SECONDS):
        self.client = client
        self.document_id = document_id
        self.viewer_email = viewer_email
        self.documents = DocumentStore(client)
        self.templates = TemplateStore(client)
        self.saver = DebouncedSaver(self._send, delay, name=f"document {document_id} autosave")
        self.template: Optional[TemplateInfo] = None
        self.label_matches: List[tuple] = []
        self._fields: List[Field] = []
        self._lock = threading.RLock()
        self.closed = False

    @property
    def document(self) -> Document:
        doc = self.documents.current
        if doc is None:
            raise RuntimeError(f"session for document {self.document_id} is not open")
        return doc

    def _fetch(self) -> Document:
        doc = self.documents.fetch_document(self.document_id)
        if doc is None:
            raise self.documents.failure or BackendError(404, f"document {self.document_id} not found")
        return doc

    def open(self) -> "EditorSession":
        doc = self._fetch()
        self.template = doc.template
        if self.template is None and doc.template_id is not None:
            self.template = self.templates.fetch_template(doc.template_id)
        self._remerge()
        log.info("%s opened document %s", self.viewer_email, self.document_id)
        return self

    def refresh(self) -> "EditorSession":
        """Re-read the document; local edits survive while a save is pending."""
        with self._lock:
            self._fetch()
            if self.saver.state == SaveState.IDLE:
                self._remerge()
        return self

    def _remerge(self):
        result = merged_fields(self.document, self.template)
        self._fields = result.fields
        self.label_matches = result.label_matches

    @property
    def fields(self) -> List[Field]:
        with self._lock:
            return list(self._fields)

    def field(self, field_id: str) -> Field:
        for f in self._fields:
            if f.id == field_id:
                return f
        raise KeyError(field_id)

    def _snapshot(self) -> DocumentData:
        data = self.document.data
        return DocumentData(
            coordinate_fields=list(self._fields),
            signature_fields=list(data.signature_fields),
            signatures=dict(data.signatures),
        )

    def _send(self, payload: DocumentData):
        # signatures belong to the server; never write back a stale copy
        doc = self._fetch()
        ensure_mutable(doc)
        payload = payload.model_copy(update={
            "signature_fields": list(doc.data.signature_fields),
            "signatures": dict(doc.data.signatures),
        })
        self.documents.update_document_data(self.document_id, payload)

    def set_field_value(self, field_id: str, value: Optional[str]) -> Field:
        with self._lock:
            doc = self.document
            ensure_mutable(doc)
            require_editor(doc, self.viewer_email)
            current = self.field(field_id)
            if current.is_signature:
                raise ValueError(f"field {field_id} is a signature; use the sign action")
            updated = current.model_copy(update={"value": value})
            self._fields = [updated if f.id == field_id else f for f in self._fields]
            self.saver.submit(self._snapshot())
            return updated

    def set_table_cell(self, field_id: str, row: int, col: int, text: str) -> Field:
        with self._lock:
            current = self.field(field_id)
            value = table_value_for(current)
            if value is None:
                raise ValueError(f"field {field_id} is not a table")
            return self.set_field_value(field_id, set_cell(value, row, col, text).to_json())

    @property
    def save_state(self) -> SaveState:
        return self.saver.state

    def save_now(self):
        if not self.saver.flush():
            raise self.saver.last_error

    def run_action(self, action: str, *args) -> Document:
        with self._lock:
            doc = self.document
            ensure_mutable(doc)
            ensure_transition(doc, action)
            if action in ("sign", "reject"):
                require_signer(doc, self.viewer_email)
            else:
                require_editor(doc, self.viewer_email)
            if action == "sign" and has_signed(doc, self.viewer_email):
                raise SignatureAlreadyPresent(f"{self.viewer_email} already signed document {doc.id}")
            self.save_now()
            self.documents.run_action(self.document_id, action, *args)
            if not self.saver.has_pending:
                self._remerge()
            return self.document

    def pages(self, surface: Surface, scale: float) -> List[PageView]:
        doc = self.document
        paths = self.template.image_paths() if self.template else []
        return build_pages(
            self.fields, doc.data.signature_fields, doc.data.signatures,
            [self.client.asset_url(p) for p in paths],
            surface=surface, scale=scale, viewer_email=self.viewer_email,
        )

    def close(self):
        if self.closed:
            return
        self.closed = True
        try:
            if not self.saver.close():
                log.error("document %s closed with an unsaved change: %s", self.document_id, self.saver.last_error)
        finally:
            self.documents.clear_current()
            self.client.close()
        log.info("%s left document %s", self.viewer_email, self.document_id)


class SessionRegistry:
    """Open editor sessions, at most one per viewer."""

    def __init__(self, delay: float = config.SAVE_DEBOUNCE_SECONDS):
        self.delay = delay
        self._sessions: Dict[str, EditorSession] = {}
        self._lock = threading.Lock()

    def get(self, viewer_email: str) -> Optional[EditorSession]:
        with self._lock:
            return self._sessions.get(viewer_email)

    def open(self, viewer_email: str, document_id: int, client_factory: Callable[[], BackendClient]) -> EditorSession:
        with self._lock:
            existing = self._sessions.get(viewer_email)
            reuse = existing is not None and existing.document_id == document_id and not existing.closed
            if not reuse:
                self._sessions.pop(viewer_email, None)
        if reuse:
            return existing.refresh()
        if existing is not None:
            # switching documents saves whatever the previous one still holds
            existing.close()
        session = EditorSession(client_factory(), document_id, viewer_email, self.delay)
        try:
            session.open()
        except Exception:
            session.client.close()
            raise
        with self._lock:
            self._sessions[viewer_email] = session
        return session

    def close(self, viewer_email: str, document_id: Optional[int] = None) -> bool:
        with self._lock:
            session = self._sessions.get(viewer_email)
            if session is None or (document_id is not None and session.document_id != document_id):
                return False
            del self._sessions[viewer_email]
        session.close()
        return True

    def close_all(self):
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()
