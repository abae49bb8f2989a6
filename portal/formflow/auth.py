from typing import Optional
from fastapi import Depends, Header, HTTPException, Request, status
from pydantic import BaseModel

from .client import BackendClient


class ViewerContext(BaseModel):
    email: str
    token: Optional[str] = None


def resolve_viewer(
    x_user_email: Optional[str] = Header(default=None, alias="X-User-Email"),
    authorization: Optional[str] = Header(default=None),
) -> ViewerContext:
    # identity comes from the gateway in front of the portal; the backend
    # checks the bearer token itself
    if not x_user_email:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing viewer identity")
    return ViewerContext(email=x_user_email.strip(), token=authorization)


def backend_client(request: Request, viewer: ViewerContext = Depends(resolve_viewer)):
    client: BackendClient = request.app.state.client_factory(viewer.token)
    try:
        yield client
    finally:
        client.close()
