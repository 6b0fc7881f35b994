"""
Drive Schemas

Pydantic models for the two row collections (`files`, `folders`), the
derived client-side types (breadcrumbs, upload progress) and the request
bodies of the REST API.

Rows are stored in MongoDB with snake_case fields; `serialize` converts a raw
document into the JSON shape the API returns.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

ItemType = Literal["file", "folder"]
ViewMode = Literal["grid", "list"]
SortBy = Literal["name", "modified", "size", "type"]
SortOrder = Literal["asc", "desc"]
UploadStatus = Literal["pending", "uploading", "completed", "error"]

ROOT_NAME = "My Drive"


def serialize(doc: dict) -> dict:
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    # Convert datetimes
    for k in ["created_at", "updated_at"]:
        if k in doc and isinstance(doc[k], datetime):
            doc[k] = doc[k].isoformat()
    return doc


# Core Drive schemas

class Folder(BaseModel):
    """
    Drive folders
    Collection name: "folders"
    """
    id: str
    name: str = Field(..., min_length=1, max_length=255, description="Folder name, trimmed")
    parent_id: Optional[str] = Field(None, description="Parent folder id. None for root")
    owner_id: str
    created_at: datetime
    updated_at: datetime
    is_starred: bool = False
    is_trashed: bool = False

    @classmethod
    def from_doc(cls, doc: dict) -> "Folder":
        return cls(id=str(doc["_id"]), **{k: v for k, v in doc.items() if k != "_id"})


class FileItem(BaseModel):
    """
    Drive files
    Collection name: "files"
    """
    id: str
    name: str = Field(..., min_length=1, max_length=255, description="Original file name")
    size: int = Field(..., ge=0, description="File size in bytes")
    mime_type: str = Field("application/octet-stream", description="MIME type")
    storage_path: str = Field(..., description="Blob key, unique and never reused")
    folder_id: Optional[str] = Field(None, description="Parent folder id. None for root")
    owner_id: str
    created_at: datetime
    updated_at: datetime
    is_starred: bool = False
    is_trashed: bool = False

    @classmethod
    def from_doc(cls, doc: dict) -> "FileItem":
        return cls(id=str(doc["_id"]), **{k: v for k, v in doc.items() if k != "_id"})


class Breadcrumb(BaseModel):
    id: Optional[str] = None
    name: str


class UploadProgress(BaseModel):
    file_name: str
    progress: int = 0
    status: UploadStatus = "pending"
    error: Optional[str] = None

    @property
    def done(self) -> bool:
        return self.status in ("completed", "error")


class DownloadLink(BaseModel):
    url: str
    file_name: str


# Request bodies

class CreateFolderRequest(BaseModel):
    name: str
    parentId: Optional[str] = None


class RenameRequest(BaseModel):
    name: str


class BatchRequest(BaseModel):
    ids: List[str] = Field(..., min_length=1)


class MoveRequest(BatchRequest):
    targetFolderId: Optional[str] = None
