import copy
import json
import re
from typing import Any, Dict, List

import httpx
import pytest
from fastapi.testclient import TestClient

from formflow import autosave as autosave_module
from formflow.client import BackendClient
from formflow.main import app
from formflow.sessions import SessionRegistry

PNG_B64 = "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8/5+hHgAHggJ/Pf8icQAAAABJRU5ErkJggg=="
SIGNATURE_URI = f"data:image/png;base64,{PNG_B64}"

ALICE = {"X-User-Email": "alice@example.com", "Authorization": "Bearer alice-token"}
BOB = {"X-User-Email": "bob@example.com", "Authorization": "Bearer bob-token"}

TEMPLATE_FIELDS = [
    {"id": "f1", "label": "경비 내역", "x": 100, "y": 200, "width": 200, "height": 100,
     "type": "table", "tableData": {"rows": 2, "cols": 2}},
    {"id": "f2", "label": "이름", "x": 100, "y": 400, "width": 300, "height": 40,
     "type": "text", "required": True, "fontSize": 16},
    {"id": "f3", "label": "서명", "x": 800, "y": 1500, "width": 200, "height": 80,
     "type": "signer_signature", "signerEmail": "bob@example.com", "signerName": "Bob"},
]


def make_template(template_id=7, **extra) -> Dict[str, Any]:
    data = {
        "id": template_id,
        "name": "출장 신청서",
        "pdfImagePath": "/uploads/pdf-templates/trip.png",
        "coordinateFields": json.dumps(TEMPLATE_FIELDS, ensure_ascii=False),
        "createdAt": "2024-03-01T09:00:00",
    }
    data.update(extra)
    return data


def make_document(document_id=1, status="EDITING", **extra) -> Dict[str, Any]:
    data = {
        "id": document_id,
        "templateId": 7,
        "title": "3월 출장 신청",
        "status": status,
        "data": {
            "coordinateFields": copy.deepcopy(TEMPLATE_FIELDS),
            "signatureFields": [],
            "signatures": {},
        },
        "tasks": [
            {"role": "CREATOR", "assignedUserEmail": "alice@example.com", "assignedUserName": "Alice"},
            {"role": "SIGNER", "assignedUserEmail": "bob@example.com", "assignedUserName": "Bob"},
        ],
        "template": make_template(),
    }
    data.update(extra)
    return data


_ACTION_STATUS = {
    "start-editing": "EDITING",
    "complete-editing": "READY_FOR_REVIEW",
    "submit-for-review": "REVIEWING",
    "sign": "COMPLETED",
    "reject": "REJECTED",
}


class FakeBackend:
    """In-memory stand-in for the document backend, served through httpx.MockTransport."""

    def __init__(self):
        self.documents: Dict[int, Dict[str, Any]] = {1: make_document()}
        self.templates: Dict[int, Dict[str, Any]] = {7: make_template()}
        self.notifications: List[Dict[str, Any]] = []
        self.staging: Dict[str, List[Dict[str, Any]]] = {}
        self.folders: Dict[int, Dict[str, Any]] = {
            10: {"id": 10, "name": "계약서", "parentId": None, "fullPath": "/계약서"},
            11: {"id": 11, "name": "2024", "parentId": 10, "parentName": "계약서", "fullPath": "/계약서/2024"},
        }
        self.assets: Dict[str, bytes] = {}
        self.requests: List[httpx.Request] = []
        self.failures: Dict[tuple, int] = {}
        self.next_id = 100

    def fail(self, method: str, path: str, status_code: int = 500):
        self.failures[(method, path)] = status_code

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        method = request.method
        code = self.failures.get((method, path))
        if code:
            return httpx.Response(code, json={"message": f"forced failure on {path}"})
        if path.startswith("/uploads/"):
            if path in self.assets:
                return httpx.Response(200, content=self.assets[path], headers={"Content-Type": "image/png"})
            return httpx.Response(404, text="not found")
        body = json.loads(request.content) if request.content else None
        route = path[len("/api"):]
        for pattern, handler in self._routes():
            match = re.fullmatch(pattern, route)
            if match and handler[0] == method:
                return handler[1](body, *match.groups())
        return httpx.Response(404, json={"message": f"no route {method} {route}"})

    def _routes(self):
        return [
            (r"/documents", ("GET", self._list_documents)),
            (r"/documents", ("POST", self._create_document)),
            (r"/documents/bulk/staging/([^/]+)/items", ("GET", self._staging_items)),
            (r"/documents/bulk/commit", ("POST", self._commit)),
            (r"/documents/bulk/cancel", ("POST", self._cancel)),
            (r"/documents/(\d+)", ("GET", self._get_document)),
            (r"/documents/(\d+)", ("PUT", self._put_document)),
            (r"/documents/(\d+)/field-values", ("POST", self._field_value)),
            (r"/documents/(\d+)/download-pdf", ("GET", self._download)),
            (r"/documents/(\d+)/assign-editor", ("POST", self._assign_editor)),
            (r"/documents/(\d+)/assign-reviewer", ("POST", self._assign_reviewer)),
            (r"/documents/(\d+)/deadline", ("PUT", self._deadline)),
            (r"/documents/(\d+)/([a-z-]+)", ("POST", self._action)),
            (r"/templates", ("GET", self._list_templates)),
            (r"/templates/(\d+)", ("GET", self._get_template)),
            (r"/templates/(\d+)", ("PUT", self._put_template)),
            (r"/templates/(\d+)", ("DELETE", self._delete_template)),
            (r"/templates/(\d+)/duplicate", ("POST", self._duplicate_template)),
            (r"/notifications", ("GET", self._list_notifications)),
            (r"/notifications/unread/count", ("GET", self._unread_count)),
            (r"/notifications/read-all", ("PUT", self._read_all)),
            (r"/notifications/(\d+)/read", ("PUT", self._read_one)),
            (r"/notifications/all", ("DELETE", self._delete_all)),
            (r"/notifications/(\d+)", ("DELETE", self._delete_one)),
            (r"/folders", ("GET", self._root_folders)),
            (r"/folders", ("POST", self._create_folder)),
            (r"/folders/access-check", ("GET", self._folder_access)),
            (r"/folders/tree", ("GET", self._folder_tree)),
            (r"/folders/unclassified/documents", ("GET", self._unclassified)),
            (r"/folders/documents/(\d+)/move", ("PUT", self._move_document)),
            (r"/folders/documents/(\d+)", ("DELETE", self._remove_document)),
            (r"/folders/(\d+)", ("GET", self._get_folder)),
            (r"/folders/(\d+)", ("PUT", self._put_folder)),
            (r"/folders/(\d+)", ("DELETE", self._delete_folder)),
            (r"/folders/(\d+)/children", ("GET", self._folder_children)),
            (r"/folders/(\d+)/documents", ("GET", self._folder_documents)),
        ]

    def _doc(self, document_id):
        return self.documents.get(int(document_id))

    def _list_documents(self, body):
        return httpx.Response(200, json=list(self.documents.values()))

    def _create_document(self, body):
        self.next_id += 1
        doc = make_document(self.next_id, status="DRAFT", templateId=body["templateId"], title=body.get("title", ""))
        self.documents[doc["id"]] = doc
        return httpx.Response(200, json=doc)

    def _get_document(self, body, document_id):
        doc = self._doc(document_id)
        if doc is None:
            return httpx.Response(404, json={"message": "document not found"})
        return httpx.Response(200, json=doc)

    def _put_document(self, body, document_id):
        doc = self._doc(document_id)
        doc["data"] = body["data"]
        return httpx.Response(200, json=doc)

    def _field_value(self, body, document_id):
        return httpx.Response(200, json={})

    def _download(self, body, document_id):
        return httpx.Response(200, content=b"%PDF-1.4 backend", headers={"Content-Type": "application/pdf"})

    def _assign_editor(self, body, document_id):
        doc = self._doc(document_id)
        doc["tasks"].append({"role": "EDITOR", "assignedUserEmail": body["editorEmail"]})
        return httpx.Response(200, json=doc)

    def _assign_reviewer(self, body, document_id):
        doc = self._doc(document_id)
        doc["tasks"].append({"role": "REVIEWER", "assignedUserEmail": body["reviewerEmail"]})
        return httpx.Response(200, json=doc)

    def _action(self, body, document_id, action):
        doc = self._doc(document_id)
        if action not in _ACTION_STATUS:
            return httpx.Response(404, json={"message": "unknown action"})
        doc["status"] = _ACTION_STATUS[action]
        if action == "sign":
            doc["data"]["signatures"]["bob@example.com"] = body["signatureData"]
        return httpx.Response(200, json=doc)

    def _list_templates(self, body):
        return httpx.Response(200, json=list(self.templates.values()))

    def _get_template(self, body, template_id):
        t = self.templates.get(int(template_id))
        if t is None:
            return httpx.Response(404, json={"message": "template not found"})
        return httpx.Response(200, json=t)

    def _put_template(self, body, template_id):
        t = self.templates[int(template_id)]
        t.update(body)
        return httpx.Response(200, json=t)

    def _delete_template(self, body, template_id):
        self.templates.pop(int(template_id), None)
        return httpx.Response(204)

    def _duplicate_template(self, body, template_id):
        self.next_id += 1
        t = dict(self.templates[int(template_id)], id=self.next_id, name=body["name"])
        self.templates[self.next_id] = t
        return httpx.Response(200, json=t)

    def _list_notifications(self, body):
        return httpx.Response(200, json={"content": self.notifications, "totalElements": len(self.notifications)})

    def _unread_count(self, body):
        return httpx.Response(200, json=sum(1 for n in self.notifications if not n.get("isRead")))

    def _read_all(self, body):
        for n in self.notifications:
            n["isRead"] = True
        return httpx.Response(200)

    def _read_one(self, body, notification_id):
        for n in self.notifications:
            if n["id"] == int(notification_id):
                n["isRead"] = True
        return httpx.Response(200)

    def _delete_all(self, body):
        self.notifications = []
        return httpx.Response(200)

    def _delete_one(self, body, notification_id):
        self.notifications = [n for n in self.notifications if n["id"] != int(notification_id)]
        return httpx.Response(200)

    def _deadline(self, body, document_id):
        doc = self._doc(document_id)
        doc["deadline"] = body["deadline"]
        return httpx.Response(200, json=doc)

    def _folder(self, folder_id):
        return self.folders.get(int(folder_id))

    def _root_folders(self, body):
        return httpx.Response(200, json=[f for f in self.folders.values() if f.get("parentId") is None])

    def _create_folder(self, body):
        self.next_id += 1
        parent_id = body.get("parentId")
        folder = {"id": self.next_id, "name": body["name"], "parentId": int(parent_id) if parent_id else None}
        self.folders[self.next_id] = folder
        return httpx.Response(200, json=folder)

    def _folder_access(self, body):
        return httpx.Response(200, json=True)

    def _folder_tree(self, body):
        def node(folder):
            children = [node(f) for f in self.folders.values() if f.get("parentId") == folder["id"]]
            return dict(folder, children=children)
        return httpx.Response(200, json=[node(f) for f in self.folders.values() if f.get("parentId") is None])

    def _unclassified(self, body):
        return httpx.Response(200, json=[d for d in self.documents.values() if not d.get("folderId")])

    def _move_document(self, body, document_id):
        target = body["targetFolderId"]
        self._doc(document_id)["folderId"] = int(target) if target else None
        return httpx.Response(200)

    def _remove_document(self, body, document_id):
        self._doc(document_id)["folderId"] = None
        return httpx.Response(200)

    def _get_folder(self, body, folder_id):
        folder = self._folder(folder_id)
        if folder is None:
            return httpx.Response(404, json={"message": "folder not found"})
        return httpx.Response(200, json=folder)

    def _put_folder(self, body, folder_id):
        folder = self._folder(folder_id)
        folder["name"] = body.get("name", folder["name"])
        if "parentId" in body:
            folder["parentId"] = int(body["parentId"]) if body["parentId"] else None
        return httpx.Response(200, json=folder)

    def _delete_folder(self, body, folder_id):
        self.folders.pop(int(folder_id), None)
        return httpx.Response(204)

    def _folder_children(self, body, folder_id):
        return httpx.Response(200, json=[f for f in self.folders.values() if f.get("parentId") == int(folder_id)])

    def _folder_documents(self, body, folder_id):
        return httpx.Response(200, json=[d for d in self.documents.values() if d.get("folderId") == int(folder_id)])

    def _staging_items(self, body, staging_id):
        if staging_id not in self.staging:
            return httpx.Response(404, json={"message": "staging not found"})
        return httpx.Response(200, json=self.staging[staging_id])

    def _commit(self, body):
        items = self.staging.pop(body["stagingId"], [])
        return httpx.Response(200, json={"created": len(items)})

    def _cancel(self, body):
        self.staging.pop(body["stagingId"], None)
        return httpx.Response(200)


class FakeTimer:
    created: List["FakeTimer"] = []

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.started = False
        self.cancelled = False
        self.daemon = False
        FakeTimer.created.append(self)

    def start(self):
        self.started = True

    def is_alive(self):
        return self.started and not self.cancelled

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if self.is_alive():
            self.cancelled = True
            self.function()


@pytest.fixture
def timers(monkeypatch) -> List[FakeTimer]:
    FakeTimer.created = []
    monkeypatch.setattr(autosave_module.threading, "Timer", FakeTimer)
    return FakeTimer.created


def fire_pending(timers: List[FakeTimer]):
    for timer in list(timers):
        timer.fire()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def backend_client(backend):
    client = BackendClient(token="test-token", transport=backend.transport())
    yield client
    client.close()


@pytest.fixture
def client(backend, timers):
    previous_factory = app.state.client_factory
    previous_sessions = app.state.sessions
    app.state.client_factory = lambda token=None: BackendClient(token=token, transport=backend.transport())
    app.state.sessions = SessionRegistry(delay=1.0)
    with TestClient(app) as test_client:
        yield test_client
    app.state.sessions.close_all()
    app.state.client_factory = previous_factory
    app.state.sessions = previous_sessions
