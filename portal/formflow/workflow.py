import logging
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Optional

from .models import Document, DocumentStatus, TaskRole

log = logging.getLogger(__name__)

STATUS_LABELS: Dict[DocumentStatus, str] = {
    DocumentStatus.DRAFT: "초안",
    DocumentStatus.EDITING: "작성중",
    DocumentStatus.READY_FOR_REVIEW: "서명자 지정",
    DocumentStatus.REVIEWING: "검토중",
    DocumentStatus.SIGNING: "서명중",
    DocumentStatus.COMPLETED: "완료",
    DocumentStatus.REJECTED: "반려",
}

# statuses from which each portal action may be requested
ACTION_SOURCES: Dict[str, FrozenSet[DocumentStatus]] = {
    "start-editing": frozenset({DocumentStatus.DRAFT, DocumentStatus.REJECTED}),
    "complete-editing": frozenset({DocumentStatus.EDITING}),
    "submit-for-review": frozenset({DocumentStatus.EDITING, DocumentStatus.READY_FOR_REVIEW}),
    "sign": frozenset({DocumentStatus.REVIEWING, DocumentStatus.SIGNING}),
    "reject": frozenset({DocumentStatus.REVIEWING, DocumentStatus.SIGNING}),
}


class PermissionDenied(Exception):
    pass


class InvalidTransition(Exception):
    pass


class DocumentLocked(Exception):
    pass


def status_label(status: DocumentStatus) -> str:
    return STATUS_LABELS.get(status, status.value)


def title_text(doc: Document) -> str:
    if doc.status == DocumentStatus.REJECTED:
        return f"<반려> {doc.display_title}"
    return doc.display_title


def ensure_transition(doc: Document, action: str):
    allowed = ACTION_SOURCES.get(action)
    if allowed is None:
        raise InvalidTransition(f"unknown action {action!r}")
    if doc.status not in allowed:
        raise InvalidTransition(
            f"cannot {action} document {doc.id} while it is {doc.status.value}"
        )


def ensure_mutable(doc: Document):
    if doc.is_completed:
        raise DocumentLocked(f"document {doc.id} is completed and can no longer change")


def can_edit(doc: Document, email: Optional[str]) -> bool:
    return doc.holds_role(email, TaskRole.CREATOR, TaskRole.EDITOR)


def can_sign(doc: Document, email: Optional[str]) -> bool:
    if doc.status not in ACTION_SOURCES["sign"]:
        return False
    return doc.holds_role(email, TaskRole.REVIEWER, TaskRole.SIGNER)


def require_editor(doc: Document, email: Optional[str]):
    if not can_edit(doc, email):
        log.info("%s has no editor task on document %s", email, doc.id)
        raise PermissionDenied("이 문서를 편집할 권한이 없습니다.")


def require_signer(doc: Document, email: Optional[str]):
    if not can_sign(doc, email):
        log.info("%s cannot sign document %s in status %s", email, doc.id, doc.status.value)
        raise PermissionDenied("서명 권한이 없거나 서명 가능한 상태가 아닙니다.")


def has_signed(doc: Document, email: Optional[str]) -> bool:
    if not email:
        return False
    if doc.data.signatures.get(email):
        return True
    return any(s.owner_email == email and s.signed for s in doc.data.signature_fields)


def parse_deadline(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        log.warning("unreadable deadline %r", value)
        return None
    # the backend sends local timestamps without an offset; treat them as UTC
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def is_overdue(doc: Document, now: Optional[datetime] = None) -> bool:
    """A deadline has passed and the document is still open."""
    deadline = parse_deadline(doc.deadline)
    if deadline is None or doc.is_completed:
        return False
    return deadline < (now or datetime.now(timezone.utc))
