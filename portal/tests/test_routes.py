import json

from conftest import ALICE, BOB, SIGNATURE_URI, fire_pending, make_document

HTML = {"Accept": "text/html"}


def put_bodies(backend, document_id=1):
    return [json.loads(r.content) for r in backend.calls("PUT", f"/api/documents/{document_id}")]


def field_value(body, field_id):
    return next(f["value"] for f in body["data"]["coordinateFields"] if f["id"] == field_id)


def test_root(client):
    assert client.get("/").json()["ok"] is True


def test_missing_identity_is_rejected(client):
    assert client.get("/documents").status_code == 401


def test_list_documents_shows_status_labels(client):
    response = client.get("/documents", headers=ALICE)
    assert response.status_code == 200
    [doc] = response.json()["documents"]
    assert doc["statusLabel"] == "작성중"


def test_five_quick_edits_send_one_put(client, backend, timers):
    for name in ["홍", "홍길", "홍길동", "홍길동a", "홍길동님"]:
        response = client.put("/documents/1/fields/f2", json={"value": name}, headers=ALICE)
        assert response.status_code == 200
        assert response.json()["saveState"] == "pending"
    assert put_bodies(backend) == []
    fire_pending(timers)
    bodies = put_bodies(backend)
    assert len(bodies) == 1
    assert field_value(bodies[0], "f2") == "홍길동님"


def test_table_cell_edit_is_saved_as_json(client, backend):
    response = client.put("/documents/1/fields/f1/cells", json={"row": 1, "col": 0, "value": "숙박"}, headers=ALICE)
    assert response.status_code == 200
    assert client.post("/documents/1/save", headers=ALICE).json()["saveState"] == "idle"
    value = json.loads(field_value(put_bodies(backend)[0], "f1"))
    assert value["rows"] == 2 and value["cells"][1][0] == "숙박"


def test_cell_outside_the_table_is_a_bad_request(client):
    response = client.put("/documents/1/fields/f1/cells", json={"row": 5, "col": 0, "value": "x"}, headers=ALICE)
    assert response.status_code == 400


def test_unknown_field_is_not_found(client):
    assert client.put("/documents/1/fields/nope", json={"value": "x"}, headers=ALICE).status_code == 404


def test_leaving_flushes_pending_edit(client, backend):
    client.put("/documents/1/fields/f2", json={"value": "마지막"}, headers=ALICE)
    assert client.post("/documents/1/leave", headers=ALICE).json() == {"closed": True}
    assert field_value(put_bodies(backend)[0], "f2") == "마지막"


def test_opening_another_document_flushes_the_first(client, backend):
    backend.documents[2] = make_document(2)
    client.put("/documents/1/fields/f2", json={"value": "첫 문서"}, headers=ALICE)
    client.get("/documents/2/editor", headers=ALICE)
    assert field_value(put_bodies(backend, 1)[0], "f2") == "첫 문서"


def test_editor_page_renders_inputs(client):
    response = client.get("/documents/1/editor?width=620", headers={**ALICE, **HTML})
    assert response.status_code == 200
    assert 'data-input="f2"' in response.text
    assert "width:620px" in response.text


def test_non_editor_is_redirected_from_editor(client):
    response = client.get("/documents/1/editor", headers={**BOB, **HTML}, follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"].startswith("/tasks?notice=")
    assert client.get("/documents/1/editor", headers=BOB).status_code == 403


def test_completed_document_opens_as_preview(client, backend):
    backend.documents[1]["status"] = "COMPLETED"
    response = client.get("/documents/1/editor", headers=ALICE, follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"] == "/documents/1/preview"


def test_preview_marks_own_signature(client):
    response = client.get("/documents/1/preview", headers=BOB)
    assert response.status_code == 200
    assert "Bob 서명 (본인)" in response.text


def test_print_omits_unsigned_placeholders(client):
    response = client.get("/documents/1/print", headers=ALICE)
    assert response.status_code == 200
    assert "서명 (본인)" not in response.text
    assert "http://localhost:8080/uploads/pdf-templates/trip.png" in response.text


def test_print_pdf(client, backend):
    response = client.get("/documents/1/print.pdf", headers=ALICE)
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.content.startswith(b"%PDF")


def test_layout_reports_table_grid(client, backend):
    backend.documents[1]["data"]["coordinateFields"][0]["value"] = '{"rows":2,"cols":2,"cells":[["a","b"],["c","d"]]}'
    body = client.get("/documents/1/layout?surface=interactive&scale=1", headers=ALICE).json()
    table = next(n for n in body["nodes"] if n["kind"] == "TableNode")
    assert table["layout"]["row_height"] == 50
    assert [c["text"] for row in table["layout"]["body"] for c in row] == ["a", "b", "c", "d"]


def test_backend_failure_maps_to_bad_gateway(client, backend):
    backend.fail("GET", "/api/documents/1", 500)
    response = client.get("/documents/1/preview", headers=ALICE)
    assert response.status_code == 502
    assert "forced failure" in response.json()["detail"]


def test_sign_then_document_is_locked(client, backend):
    backend.documents[1]["status"] = "SIGNING"
    response = client.post("/documents/1/sign", json={"signatureData": SIGNATURE_URI}, headers=BOB)
    assert response.status_code == 200
    assert response.json()["status"] == "COMPLETED"
    assert json.loads(backend.calls("POST", "/api/documents/1/sign")[0].content) == {"signatureData": SIGNATURE_URI}
    again = client.post("/documents/1/sign", json={"signatureData": SIGNATURE_URI}, headers=BOB)
    assert again.status_code == 409


def test_invalid_transition_is_a_conflict(client):
    response = client.post("/documents/1/start-editing", headers=ALICE)
    assert response.status_code == 409


def test_complete_editing(client, backend):
    response = client.post("/documents/1/complete-editing", headers=ALICE)
    assert response.status_code == 200
    assert response.json()["statusLabel"] == "서명자 지정"


def test_reject_requires_signer(client, backend):
    backend.documents[1]["status"] = "REVIEWING"
    assert client.post("/documents/1/reject", json={"reason": "금액 오류"}, headers=ALICE).status_code == 403
    response = client.post("/documents/1/reject", json={"reason": "금액 오류"}, headers=BOB)
    assert response.json()["title"].startswith("<반려>")


def test_templates_and_preview(client):
    listing = client.get("/templates", headers=ALICE).json()
    assert listing["templates"][0]["id"] == 7
    preview = client.get("/templates/7/preview", headers=ALICE)
    assert preview.status_code == 200
    assert "이름" in preview.text


def test_notification_routes(client, backend):
    backend.notifications = [{"id": 3, "title": "검토 요청", "message": "m", "isRead": False}]
    body = client.get("/notifications", headers=ALICE).json()
    assert body["unreadCount"] == 1 and body["content"][0]["title"] == "검토 요청"
    assert client.put("/notifications/3/read", headers=ALICE).status_code == 204
    assert client.get("/notifications/unread-count", headers=ALICE).json()["count"] == 0
    assert client.delete("/notifications", headers=ALICE).status_code == 204
    assert backend.notifications == []


def test_bulk_routes(client, backend):
    backend.staging["abc"] = [{"id": 1, "rowNumber": 2, "title": "행 2", "status": "VALID"}]
    items = client.get("/documents/bulk/staging/abc/items", headers=ALICE).json()["items"]
    assert items[0]["rowNumber"] == 2
    response = client.post("/documents/bulk/commit", json={"stagingId": "abc"}, headers=ALICE)
    assert response.json()["result"] == {"created": 1}
    assert client.post("/documents/bulk/cancel", json={"stagingId": "abc"}, headers=ALICE).status_code == 204


def test_reopened_session_sees_completion_and_keeps_signatures(client, backend):
    assert client.get("/documents/1/editor", headers=ALICE).status_code == 200
    backend.documents[1]["status"] = "COMPLETED"
    backend.documents[1]["data"]["signatures"]["bob@example.com"] = SIGNATURE_URI
    response = client.put("/documents/1/fields/f2", json={"value": "늦은 수정"}, headers=ALICE)
    assert response.status_code == 409
    assert client.post("/documents/1/save", headers=ALICE).status_code == 200
    assert put_bodies(backend) == []
    assert backend.documents[1]["data"]["signatures"] == {"bob@example.com": SIGNATURE_URI}


def test_autosave_does_not_overwrite_new_signatures(client, backend, timers):
    client.put("/documents/1/fields/f2", json={"value": "홍길동"}, headers=ALICE)
    backend.documents[1]["data"]["signatures"]["bob@example.com"] = SIGNATURE_URI
    fire_pending(timers)
    [body] = put_bodies(backend)
    assert field_value(body, "f2") == "홍길동"
    assert body["data"]["signatures"] == {"bob@example.com": SIGNATURE_URI}


def test_pending_save_fails_once_the_document_completes(client, backend):
    client.put("/documents/1/fields/f2", json={"value": "홍길동"}, headers=ALICE)
    backend.documents[1]["status"] = "COMPLETED"
    assert client.post("/documents/1/save", headers=ALICE).status_code == 409
    assert put_bodies(backend) == []


def test_notification_list_reports_fetch_failure(client, backend):
    backend.fail("GET", "/api/notifications")
    body = client.get("/notifications", headers=ALICE).json()
    assert body["content"] == [] and body["unreadCount"] == 0
    assert body["error"] == "알림을 불러오는데 실패했습니다."


def test_deadline_can_be_set_and_cleared(client, backend):
    response = client.put("/documents/1/deadline", json={"deadline": "2024-01-01T09:00:00Z"}, headers=ALICE)
    assert response.status_code == 200
    assert response.json()["overdue"] is True
    assert backend.documents[1]["deadline"] == "2024-01-01T09:00:00+00:00"
    cleared = client.put("/documents/1/deadline", json={"deadline": None}, headers=ALICE).json()
    assert cleared["deadline"] is None and cleared["overdue"] is False


def test_created_document_carries_its_deadline(client, backend):
    response = client.post(
        "/documents",
        params={"template_id": 7, "title": "새 문서", "deadline": "2030-01-01T00:00:00"},
        headers=ALICE,
    )
    assert response.status_code == 201
    body = json.loads(backend.calls("POST", "/api/documents")[0].content)
    assert body == {"templateId": 7, "title": "새 문서", "deadline": "2030-01-01T00:00:00"}
