from fastapi import APIRouter, Depends, status

from ..auth import backend_client
from ..client import BackendClient
from ..schemas import StagingAction
from ..stores import BulkStagingStore

router = APIRouter()


@router.get("/staging/{staging_id}/items")
def staging_items(staging_id: str, client: BackendClient = Depends(backend_client)):
    store = BulkStagingStore(client)
    items = store.fetch_items(staging_id)
    return {
        "stagingId": staging_id,
        "items": [i.model_dump(by_alias=True, mode="json") for i in items],
        "error": store.error,
    }


@router.post("/commit")
def commit_staging(body: StagingAction, client: BackendClient = Depends(backend_client)):
    result = BulkStagingStore(client).commit(body.staging_id)
    return {"stagingId": body.staging_id, "result": result}


@router.post("/cancel", status_code=status.HTTP_204_NO_CONTENT)
def cancel_staging(body: StagingAction, client: BackendClient = Depends(backend_client)):
    BulkStagingStore(client).cancel(body.staging_id)
