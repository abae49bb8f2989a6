"""Request-scoped caches over the backend client.

Stores are plain objects handed a :class:`BackendClient`; nothing here is a
module-level singleton. Fetches record failures in ``error`` and keep the
previous state. Mutations record the failure too and re-raise.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .client import BackendClient, BackendError
from .models import Document, DocumentData, Folder, Notification, StagingItem, Template, TemplateInfo

log = logging.getLogger(__name__)


class _Store:
    def __init__(self, client: BackendClient):
        self.client = client
        self.loading = False
        self.error: Optional[str] = None
        self.failure: Optional[BackendError] = None

    def _call(self, label: str, fn: Callable[[], Any], reraise: bool = True, record: bool = True) -> Any:
        self.loading = True
        self.error = None
        self.failure = None
        try:
            return fn()
        except BackendError as exc:
            log.warning("%s: %s", label, exc.message)
            if record:
                self.error = label
                self.failure = exc
            if reraise:
                raise
            return None
        finally:
            self.loading = False


def _replace(items: List[Any], item: Any) -> List[Any]:
    return [item if i.id == item.id else i for i in items]


class DocumentStore(_Store):
    def __init__(self, client: BackendClient):
        super().__init__(client)
        self.documents: List[Document] = []
        self.current: Optional[Document] = None
        self.active_id: Optional[int] = None

    def fetch_documents(self) -> List[Document]:
        docs = self._call("문서 목록을 불러오는데 실패했습니다.", self.client.list_documents, reraise=False)
        if docs is not None:
            self.documents = docs
        return self.documents

    def fetch_document(self, document_id: int) -> Optional[Document]:
        self.active_id = document_id
        doc = self._call("문서를 불러오는데 실패했습니다.",
                         lambda: self.client.get_document(document_id), reraise=False)
        if doc is None:
            return None
        if self.active_id != document_id:
            log.debug("dropping late response for document %s (active: %s)", document_id, self.active_id)
            return None
        self.current = doc
        return doc

    def clear_current(self):
        self.active_id = None
        self.current = None

    def _apply(self, doc: Optional[Document]) -> Optional[Document]:
        if doc is None:
            return None
        self.documents = _replace(self.documents, doc)
        if self.active_id == doc.id:
            self.current = doc
        return doc

    def create_document(self, template_id: int, title: Optional[str] = None, deadline: Optional[str] = None) -> Document:
        extra = {"deadline": deadline} if deadline else {}
        doc = self._call("문서 생성에 실패했습니다.", lambda: self.client.create_document(template_id, title, **extra))
        self.documents = [doc] + self.documents
        return doc

    def update_document_data(self, document_id: int, data: DocumentData) -> Optional[Document]:
        doc = self._call("문서 저장에 실패했습니다.", lambda: self.client.update_document_data(document_id, data))
        if doc is not None:
            return self._apply(doc)
        if self.current is not None and self.current.id == document_id:
            self.current = self.current.model_copy(update={"data": data})
        return self.current

    def save_field_value(self, document_id: int, field_id: str, value: Optional[str]):
        self._call("필드 저장에 실패했습니다.", lambda: self.client.save_field_value(document_id, field_id, value))

    def run_action(self, document_id: int, action: str, *args) -> Optional[Document]:
        method = getattr(self.client, action.replace("-", "_"))
        doc = self._call(f"{action} 요청에 실패했습니다.", lambda: method(document_id, *args))
        if doc is None:
            # some actions answer 204; reload to pick up the new status
            return self.fetch_document(document_id) if self.active_id == document_id else None
        return self._apply(doc)

    def assign_editor(self, document_id: int, email: str) -> Document:
        doc = self._call("편집자 할당에 실패했습니다.", lambda: self.client.assign_editor(document_id, email))
        return self._apply(doc)

    def assign_reviewer(self, document_id: int, email: str) -> Document:
        doc = self._call("검토자 할당에 실패했습니다.", lambda: self.client.assign_reviewer(document_id, email))
        return self._apply(doc)

    def update_deadline(self, document_id: int, deadline: Optional[str]) -> Optional[Document]:
        doc = self._call("마감일 변경에 실패했습니다.", lambda: self.client.update_deadline(document_id, deadline))
        if doc is not None:
            return self._apply(doc)
        self.documents = [
            d.model_copy(update={"deadline": deadline}) if d.id == document_id else d for d in self.documents
        ]
        if self.current is not None and self.current.id == document_id:
            self.current = self.current.model_copy(update={"deadline": deadline})
        return self.current if self.active_id == document_id else None

    def download_pdf(self, document_id: int) -> bytes:
        return self._call("PDF 다운로드에 실패했습니다.", lambda: self.client.download_pdf(document_id))


def _newest_first(templates: List[Template]) -> List[Template]:
    return sorted(templates, key=lambda t: t.created_at or "", reverse=True)


class TemplateStore(_Store):
    def __init__(self, client: BackendClient):
        super().__init__(client)
        self.templates: List[Template] = []
        self.current: Optional[TemplateInfo] = None

    def fetch_templates(self) -> List[Template]:
        templates = self._call("템플릿 목록을 불러오는데 실패했습니다.", self.client.list_templates, reraise=False)
        if templates is not None:
            self.templates = _newest_first(templates)
        return self.templates

    def fetch_template(self, template_id: int) -> Optional[TemplateInfo]:
        info = self._call("템플릿을 불러오는데 실패했습니다.",
                          lambda: self.client.get_template(template_id), reraise=False)
        if info is not None:
            self.current = info
        return info

    def update_template(self, template_id: int, changes: Dict[str, Any]) -> Template:
        updated = self._call("템플릿 수정에 실패했습니다.", lambda: self.client.update_template(template_id, changes))
        self.templates = [updated] + [t for t in self.templates if t.id != template_id]
        return updated

    def delete_template(self, template_id: int):
        # the caller shows its own message, so no error is recorded here
        self._call("템플릿 삭제에 실패했습니다.", lambda: self.client.delete_template(template_id), record=False)
        self.templates = [t for t in self.templates if t.id != template_id]
        if self.current is not None and self.current.id == template_id:
            self.current = None

    def duplicate_template(self, template_id: int, name: str, description: Optional[str] = None) -> Template:
        duplicate = self._call("템플릿 복제에 실패했습니다.",
                          lambda: self.client.duplicate_template(template_id, name, description))
        self.templates = [duplicate] + self.templates
        return duplicate


class NotificationStore(_Store):
    def __init__(self, client: BackendClient):
        super().__init__(client)
        self.notifications: List[Notification] = []
        self.total_elements = 0
        self.unread_count = 0

    def fetch_notifications(self, page: int = 0, size: int = 20) -> List[Notification]:
        body = self._call("알림을 불러오는데 실패했습니다.",
                          lambda: self.client.list_notifications(page, size), reraise=False)
        if body is not None:
            self.notifications = body["content"]
            self.total_elements = body["total_elements"]
        return self.notifications

    def fetch_unread_count(self) -> int:
        count = self._call("읽지 않은 알림 수를 불러오는데 실패했습니다.", self.client.unread_count, reraise=False)
        if count is not None:
            self.unread_count = max(0, count)
        return self.unread_count

    def mark_as_read(self, notification_id: int):
        self._call("알림 읽음 처리에 실패했습니다.", lambda: self.client.mark_notification_read(notification_id))
        now = datetime.now(timezone.utc).isoformat()
        updated = []
        for n in self.notifications:
            if n.id == notification_id and not n.is_read:
                n = n.model_copy(update={"is_read": True, "read_at": now})
                self.unread_count = max(0, self.unread_count - 1)
            updated.append(n)
        self.notifications = updated

    def mark_all_as_read(self):
        self._call("전체 읽음 처리에 실패했습니다.", self.client.mark_all_notifications_read)
        now = datetime.now(timezone.utc).isoformat()
        self.notifications = [
            n if n.is_read else n.model_copy(update={"is_read": True, "read_at": now})
            for n in self.notifications
        ]
        self.unread_count = 0

    def delete_notification(self, notification_id: int):
        self._call("알림 삭제에 실패했습니다.", lambda: self.client.delete_notification(notification_id))
        removed = [n for n in self.notifications if n.id == notification_id]
        self.notifications = [n for n in self.notifications if n.id != notification_id]
        if removed:
            self.total_elements = max(0, self.total_elements - 1)
            if not removed[0].is_read:
                self.unread_count = max(0, self.unread_count - 1)

    def delete_all(self):
        self._call("전체 알림 삭제에 실패했습니다.", self.client.delete_all_notifications)
        self.notifications = []
        self.total_elements = 0
        self.unread_count = 0

    def add_notification(self, notification: Notification):
        self.notifications = [notification] + self.notifications
        self.total_elements += 1
        if not notification.is_read:
            self.unread_count += 1


class BulkStagingStore(_Store):
    def __init__(self, client: BackendClient):
        super().__init__(client)
        self.staging_id: Optional[str] = None
        self.items: List[StagingItem] = []

    def fetch_items(self, staging_id: str) -> List[StagingItem]:
        self.staging_id = staging_id
        items = self._call("스테이징 항목을 불러오는데 실패했습니다.",
                           lambda: self.client.staging_items(staging_id), reraise=False)
        if items is not None:
            self.items = items
        return self.items

    def commit(self, staging_id: str) -> Any:
        result = self._call("일괄 생성에 실패했습니다.", lambda: self.client.commit_staging(staging_id))
        self._reset(staging_id)
        return result

    def cancel(self, staging_id: str):
        self._call("일괄 생성 취소에 실패했습니다.", lambda: self.client.cancel_staging(staging_id))
        self._reset(staging_id)

    def _reset(self, staging_id: str):
        if self.staging_id == staging_id:
            self.staging_id = None
            self.items = []


class FolderStore(_Store):
    """Folder browsing: the folders and documents of one level, plus its path.

    ``current`` is ``None`` at the root, where the documents listed are the
    unclassified ones.
    """

    def __init__(self, client: BackendClient):
        super().__init__(client)
        self.folders: List[Folder] = []
        self.documents: List[Document] = []
        self.current: Optional[Folder] = None
        self.path: List[Folder] = []

    def load_contents(self, folder_id: Optional[str] = None) -> bool:
        if folder_id is None:
            loaded = self._call("폴더 내용을 불러오는데 실패했습니다.", lambda: (
                self.client.root_folders(), self.client.unclassified_documents(), None, []
            ), reraise=False)
        else:
            loaded = self._call("폴더 내용을 불러오는데 실패했습니다.", lambda: (
                self.client.folder_children(folder_id),
                self.client.folder_documents(folder_id),
                self.client.get_folder(folder_id),
                self.folder_path(folder_id),
            ), reraise=False)
        if loaded is None:
            return False
        self.folders, self.documents, self.current, self.path = loaded
        return True

    def folder_path(self, folder_id: str) -> List[Folder]:
        """Folders from the root down to ``folder_id``; empty when the walk fails."""
        path: List[Folder] = []
        seen = set()
        next_id: Optional[str] = folder_id
        try:
            while next_id is not None and next_id not in seen:
                seen.add(next_id)
                folder = self.client.get_folder(next_id)
                path.insert(0, folder)
                next_id = folder.parent_id
        except BackendError as exc:
            log.warning("could not build the path of folder %s: %s", folder_id, exc.message)
            return []
        return path

    def fetch_tree(self) -> List[Folder]:
        tree = self._call("폴더 트리를 가져오는데 실패했습니다.", self.client.folder_tree, reraise=False)
        return tree if tree is not None else []

    def check_access(self) -> bool:
        try:
            return self.client.folder_access()
        except BackendError as exc:
            log.warning("folder access check failed: %s", exc.message)
            return False

    def create_folder(self, name: str, parent_id: Optional[str] = None) -> Folder:
        folder = self._call("폴더 생성에 실패했습니다.", lambda: self.client.create_folder(name, parent_id))
        self.folders = self.folders + [folder]
        return folder

    def rename_folder(self, folder_id: str, name: str) -> Folder:
        updated = self._call("폴더 수정에 실패했습니다.",
                             lambda: self.client.update_folder(folder_id, {"name": name}))
        self.folders = _replace(self.folders, updated)
        self.path = _replace(self.path, updated)
        if self.current is not None and self.current.id == folder_id:
            self.current = updated
        return updated

    def move_folder(self, folder_id: str, target_parent_id: Optional[str]) -> Folder:
        if folder_id == target_parent_id:
            raise ValueError("a folder cannot be moved into itself")

        def move():
            # the update endpoint wants the name alongside the new parent
            name = self.client.get_folder(folder_id).name
            return self.client.update_folder(folder_id, {"name": name, "parentId": target_parent_id})

        moved = self._call("폴더 이동에 실패했습니다.", move)
        self.folders = [f for f in self.folders if f.id != folder_id]
        return moved

    def delete_folder(self, folder_id: str):
        self._call("폴더 삭제에 실패했습니다.", lambda: self.client.delete_folder(folder_id))
        self.folders = [f for f in self.folders if f.id != folder_id]

    def move_document(self, document_id: int, target_folder_id: Optional[str]):
        self._call("문서 이동에 실패했습니다.", lambda: self.client.move_document(document_id, target_folder_id))
        self.documents = [d for d in self.documents if d.id != document_id]

    def remove_document(self, document_id: int):
        self._call("폴더에서 문서 제거에 실패했습니다.",
                   lambda: self.client.remove_document_from_folder(document_id))
        if self.current is not None:
            self.documents = [d for d in self.documents if d.id != document_id]

    def reset(self):
        self.folders = []
        self.documents = []
        self.current = None
        self.path = []
        self.loading = False
        self.error = None
        self.failure = None
