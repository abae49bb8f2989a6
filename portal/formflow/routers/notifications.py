from fastapi import APIRouter, Depends, Query, status

from ..auth import backend_client
from ..client import BackendClient
from ..stores import NotificationStore

router = APIRouter()


@router.get("")
def list_notifications(
    page: int = Query(default=0, ge=0),
    size: int = Query(default=20, gt=0, le=100),
    client: BackendClient = Depends(backend_client),
):
    store = NotificationStore(client)
    notifications = store.fetch_notifications(page, size)
    # each fetch resets store.error, so keep the list failure around
    error = store.error
    store.fetch_unread_count()
    return {
        "content": [n.to_wire() for n in notifications],
        "totalElements": store.total_elements,
        "unreadCount": store.unread_count,
        "error": error or store.error,
    }


@router.get("/unread-count")
def unread_count(client: BackendClient = Depends(backend_client)):
    store = NotificationStore(client)
    return {"count": store.fetch_unread_count(), "error": store.error}


@router.put("/read-all", status_code=status.HTTP_204_NO_CONTENT)
def mark_all_read(client: BackendClient = Depends(backend_client)):
    NotificationStore(client).mark_all_as_read()


@router.put("/{notification_id}/read", status_code=status.HTTP_204_NO_CONTENT)
def mark_read(notification_id: int, client: BackendClient = Depends(backend_client)):
    NotificationStore(client).mark_as_read(notification_id)


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_notification(notification_id: int, client: BackendClient = Depends(backend_client)):
    NotificationStore(client).delete_notification(notification_id)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
def delete_all_notifications(client: BackendClient = Depends(backend_client)):
    NotificationStore(client).delete_all()
