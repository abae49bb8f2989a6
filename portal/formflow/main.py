import logging
from urllib.parse import urlencode
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, RedirectResponse

from .client import BackendClient, BackendError
from .config import LOG_LEVEL, SAFE_ROUTE
from .models import SignatureAlreadyPresent
from .routers import bulk, documents, folders, notifications, templates
from .sessions import SessionRegistry
from .workflow import DocumentLocked, InvalidTransition, PermissionDenied

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
log = logging.getLogger(__name__)

app = FastAPI(title="Document workflow portal")
app.state.sessions = SessionRegistry()
# tests replace this to point every backend call at a fake transport
app.state.client_factory = lambda token=None: BackendClient(token=token)


def _wants_html(request: Request) -> bool:
    return request.method == "GET" and "text/html" in request.headers.get("accept", "")


@app.exception_handler(BackendError)
def backend_error(request: Request, exc: BackendError):
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": exc.message, "backendStatus": exc.status_code},
    )


@app.exception_handler(PermissionDenied)
def permission_denied(request: Request, exc: PermissionDenied):
    if _wants_html(request):
        target = f"{SAFE_ROUTE}?{urlencode({'notice': str(exc)})}"
        return RedirectResponse(target, status_code=status.HTTP_303_SEE_OTHER)
    return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"detail": str(exc)})


@app.exception_handler(InvalidTransition)
@app.exception_handler(DocumentLocked)
@app.exception_handler(SignatureAlreadyPresent)
def conflict(request: Request, exc: Exception):
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.on_event("shutdown")
def on_shutdown():
    app.state.sessions.close_all()


# bulk paths must win over /documents/{document_id}/...
app.include_router(bulk.router, prefix="/documents/bulk", tags=["bulk"])
app.include_router(documents.router, prefix="/documents", tags=["documents"])
app.include_router(templates.router, prefix="/templates", tags=["templates"])
app.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
app.include_router(folders.router, prefix="/folders", tags=["folders"])


@app.get("/")
def root():
    return {"ok": True, "service": "formflow-portal"}
