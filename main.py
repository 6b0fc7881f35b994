import os
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, File, Form, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from pymongo.database import Database

import database
from auth import get_current_user_id
from config import get_settings, setup_logging
from errors import Forbidden, NotFoundError, set_exception_handlers
from schemas import BatchRequest, CreateFolderRequest, MoveRequest, RenameRequest, serialize
from service import DriveService
from storage import LocalBlobStorage, get_storage


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    if database.db is not None:
        database.ensure_indexes(database.db)
    yield


app = FastAPI(title="Pretty Drive API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
set_exception_handlers(app)

# Dependencies

def get_db() -> Optional[Database]:
    return database.db


@lru_cache()
def get_blob_storage() -> LocalBlobStorage:
    return get_storage()


def get_service(
    user_id: str = Depends(get_current_user_id),
    db: Optional[Database] = Depends(get_db),
    storage: LocalBlobStorage = Depends(get_blob_storage),
) -> DriveService:
    settings = get_settings()
    return DriveService(
        db, storage, user_id,
        signed_url_ttl=settings.signed_url_ttl,
        max_upload_bytes=settings.max_upload_bytes,
    )


files_router = APIRouter(prefix="/api/files", tags=["files"])
folders_router = APIRouter(prefix="/api/folders", tags=["folders"])

# Root and health
@app.get("/")
def read_root():
    return {"message": "Pretty Drive Backend Ready"}


# File endpoints
@files_router.post("/upload", status_code=201)
async def upload_file(
    file: UploadFile = File(...),
    folderId: Optional[str] = Form(None),
    service: DriveService = Depends(get_service),
):
    data = await file.read()
    doc = service.upload(file.filename, data, content_type=file.content_type, folder_id=folderId or None)
    return {"message": "File uploaded successfully", "file": serialize(doc)}


@files_router.get("")
def get_files(folderId: Optional[str] = None, service: DriveService = Depends(get_service)):
    return {"files": [serialize(f) for f in service.list_files(folderId or None)]}


@files_router.get("/starred")
def get_starred_files(service: DriveService = Depends(get_service)):
    return {"files": [serialize(f) for f in service.list_starred("file")]}


@files_router.get("/trash")
def get_trashed_files(service: DriveService = Depends(get_service)):
    return {"files": [serialize(f) for f in service.list_trash("file")]}


@files_router.get("/recent")
def get_recent_files(limit: int = 20, service: DriveService = Depends(get_service)):
    return {"files": [serialize(f) for f in service.list_recent(max(1, min(limit, 100)))]}


@files_router.delete("/trash")
def empty_trash(service: DriveService = Depends(get_service)):
    count = service.empty_trash()
    return {"message": "Trash emptied", "count": count}


@files_router.delete("/{fileId}")
def delete_file(fileId: str, service: DriveService = Depends(get_service)):
    service.delete_items([fileId], "file")
    return {"message": "File deleted successfully"}


@files_router.get("/{fileId}/download")
def download_file(fileId: str, service: DriveService = Depends(get_service)):
    link = service.download_link(fileId)
    return {"downloadUrl": link.url, "fileName": link.file_name}


# Folder endpoints
@folders_router.post("", status_code=201)
def create_folder(payload: CreateFolderRequest, service: DriveService = Depends(get_service)):
    folder = service.create_folder(payload.name, payload.parentId or None)
    return {"message": "Folder created successfully", "folder": serialize(folder)}


@folders_router.get("")
def get_folders(parentId: Optional[str] = None, service: DriveService = Depends(get_service)):
    return {"folders": [serialize(f) for f in service.list_folders(parentId or None)]}


@folders_router.get("/starred")
def get_starred_folders(service: DriveService = Depends(get_service)):
    return {"folders": [serialize(f) for f in service.list_starred("folder")]}


@folders_router.get("/trash")
def get_trashed_folders(service: DriveService = Depends(get_service)):
    return {"folders": [serialize(f) for f in service.list_trash("folder")]}


@folders_router.delete("/{folderId}")
def delete_folder(folderId: str, service: DriveService = Depends(get_service)):
    service.delete_items([folderId], "folder")
    return {"message": "Folder deleted successfully"}


@folders_router.get("/{folderId}/breadcrumbs")
def get_breadcrumbs(folderId: str, service: DriveService = Depends(get_service)):
    return {"breadcrumbs": [c.model_dump() for c in service.breadcrumbs(folderId)]}


def add_item_routes(router: APIRouter, item_type: str):
    """Rename, star, trash, restore and move, shared by files and folders."""
    label = item_type.capitalize()

    @router.put("/{itemId}/rename")
    def rename_item(itemId: str, payload: RenameRequest, service: DriveService = Depends(get_service)):
        doc = service.rename(itemId, payload.name, item_type)
        return {"message": f"{label} renamed successfully", item_type: serialize(doc)}

    @router.post("/{itemId}/star")
    def toggle_star(itemId: str, service: DriveService = Depends(get_service)):
        doc = service.toggle_star(itemId, item_type)
        state = "starred" if doc.get("is_starred") else "unstarred"
        return {"message": f"{label} {state}", item_type: serialize(doc)}

    @router.post("/trash")
    def move_to_trash(payload: BatchRequest, service: DriveService = Depends(get_service)):
        count = service.set_trashed(payload.ids, item_type, True)
        return {"message": f"{count} item(s) moved to trash", "count": count}

    @router.post("/restore")
    def restore_from_trash(payload: BatchRequest, service: DriveService = Depends(get_service)):
        count = service.set_trashed(payload.ids, item_type, False)
        return {"message": f"{count} item(s) restored", "count": count}

    @router.post("/delete")
    def delete_items(payload: BatchRequest, service: DriveService = Depends(get_service)):
        count = service.delete_items(payload.ids, item_type)
        return {"message": f"{count} item(s) deleted permanently", "count": count}

    @router.post("/move")
    def move_items(payload: MoveRequest, service: DriveService = Depends(get_service)):
        count = service.move(payload.ids, payload.targetFolderId or None, item_type)
        return {"message": f"{count} item(s) moved", "count": count}


add_item_routes(files_router, "file")
add_item_routes(folders_router, "folder")

app.include_router(files_router)
app.include_router(folders_router)


# Signed blob downloads
@app.get("/storage/{key:path}")
def serve_blob(key: str, token: str, storage: LocalBlobStorage = Depends(get_blob_storage)):
    claims = storage.verify_token(key, token)
    if claims is None:
        raise Forbidden()
    try:
        path = storage.path_for(key)
    except ValueError:
        raise NotFoundError("Stored file missing")
    if not os.path.isfile(path):
        raise NotFoundError("Stored file missing")
    return FileResponse(path, filename=claims.get("fn") or os.path.basename(key))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=get_settings().port)
