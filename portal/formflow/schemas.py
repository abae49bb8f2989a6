from datetime import datetime
from pydantic import BaseModel, Field
from typing import Optional


class FieldValueUpdate(BaseModel):
    value: Optional[str] = None


class TableCellUpdate(BaseModel):
    row: int = Field(ge=0)
    col: int = Field(ge=0)
    value: str = ""


class SignaturePayload(BaseModel):
    signature_data: str = Field(alias="signatureData", min_length=1)


class RejectPayload(BaseModel):
    reason: str = Field(min_length=1)


class AssignPayload(BaseModel):
    email: str


class StagingAction(BaseModel):
    staging_id: str = Field(alias="stagingId")


class DeadlineUpdate(BaseModel):
    # null clears the deadline
    deadline: Optional[datetime] = None


class FolderCreate(BaseModel):
    name: str = Field(min_length=1)
    parent_id: Optional[str] = Field(default=None, alias="parentId")


class FolderRename(BaseModel):
    name: str = Field(min_length=1)


class FolderMove(BaseModel):
    parent_id: Optional[str] = Field(default=None, alias="parentId")


class DocumentMove(BaseModel):
    target_folder_id: Optional[str] = Field(default=None, alias="targetFolderId")
