import logging
import mimetypes
from contextlib import contextmanager
from typing import List, Optional, Tuple, Type

from pymongo.database import Database
from pymongo.errors import PyMongoError

from errors import (
    ConflictError,
    DriveError,
    FetchError,
    MetadataError,
    NotEmptyError,
    NotFoundError,
    Unauthorized,
    UploadError,
    ValidationError,
)
from repository import DriveRepository, parent_field
from schemas import ROOT_NAME, Breadcrumb, DownloadLink
from storage import StorageBase, generate_storage_key

logger = logging.getLogger(__name__)

MAX_BREADCRUMB_DEPTH = 64
MAX_NAME_LENGTH = 255


@contextmanager
def remote_call(error_cls: Type[DriveError] = FetchError, message: str = None):
    """Convert row/blob store failures into a taxonomy error."""
    try:
        yield
    except DriveError:
        raise
    except (PyMongoError, OSError) as e:
        logger.error("%s: %s", message or error_cls.default_message, e)
        raise error_cls(message) from e


def clean_name(name: Optional[str], what: str = "Name") -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError(f"{what} is required")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"{what} must be at most {MAX_NAME_LENGTH} characters")
    return name


def check_type(item_type: str):
    if item_type not in ("file", "folder"):
        raise ValidationError(f"Unknown item type: {item_type}")


class DriveService:
    """
    Drive operations for a single authenticated caller.

    Wraps the owner-scoped repository and the blob store, enforces the naming
    and emptiness rules and runs the compensating blob deletes.
    """

    def __init__(self, db: Optional[Database], storage: StorageBase, owner_id: Optional[str],
                 signed_url_ttl: int = 3600, max_upload_bytes: Optional[int] = None):
        if not owner_id:
            raise Unauthorized()
        if db is None:
            raise FetchError("Database not configured")
        self.owner_id = owner_id
        self.repo = DriveRepository(db, owner_id)
        self.storage = storage
        self.signed_url_ttl = signed_url_ttl
        self.max_upload_bytes = max_upload_bytes

    # Lookups

    def _get(self, item_type: str, item_id: str) -> dict:
        check_type(item_type)
        with remote_call():
            doc = self.repo.get(item_type, item_id)
        if not doc:
            raise NotFoundError(f"{item_type.capitalize()} not found")
        return doc

    def get_file(self, file_id: str) -> dict:
        return self._get("file", file_id)

    def get_folder(self, folder_id: str) -> dict:
        return self._get("folder", folder_id)

    def _get_many(self, item_type: str, ids: List[str]) -> List[dict]:
        check_type(item_type)
        ids = list(dict.fromkeys(ids))
        if not ids:
            raise ValidationError("No items selected")
        with remote_call():
            docs = self.repo.get_many(item_type, ids)
        if len(docs) != len(ids):
            raise NotFoundError(f"{item_type.capitalize()} not found")
        return docs

    def _check_target_folder(self, folder_id: Optional[str]):
        if folder_id:
            folder = self.get_folder(folder_id)
            if folder.get("is_trashed"):
                raise NotFoundError("Folder not found")

    def _check_sibling_name(self, parent_id: Optional[str], name: str, exclude_id: Optional[str] = None):
        with remote_call():
            existing = self.repo.find_sibling_folder(parent_id, name, exclude_id=exclude_id)
        if existing:
            raise ConflictError()

    # Listing

    def list_files(self, folder_id: Optional[str] = None) -> List[dict]:
        with remote_call(message="Failed to fetch files"):
            return self.repo.list_children("file", folder_id)

    def list_folders(self, parent_id: Optional[str] = None) -> List[dict]:
        with remote_call(message="Failed to fetch folders"):
            return self.repo.list_children("folder", parent_id)

    def list_contents(self, folder_id: Optional[str] = None) -> Tuple[List[dict], List[dict]]:
        return self.list_folders(folder_id), self.list_files(folder_id)

    def list_starred(self, item_type: str) -> List[dict]:
        check_type(item_type)
        with remote_call():
            return self.repo.list_flagged(item_type, "is_starred")

    def list_trash(self, item_type: str) -> List[dict]:
        check_type(item_type)
        with remote_call():
            return self.repo.list_flagged(item_type, "is_trashed")

    def list_recent(self, limit: int = 20) -> List[dict]:
        with remote_call():
            return self.repo.list_recent_files(limit)

    def breadcrumbs(self, folder_id: Optional[str]) -> List[Breadcrumb]:
        """
        Root-first path to `folder_id`.

        Walks `parent_id` upward. A cycle, a missing (or unowned) ancestor or
        an overly deep chain ends the walk, keeping what was resolved so far.
        """
        crumbs: List[Breadcrumb] = []
        seen = set()
        current = folder_id
        while current:
            if current in seen or len(crumbs) >= MAX_BREADCRUMB_DEPTH:
                logger.warning("Breadcrumb walk stopped at %s: cycle or depth limit", current)
                break
            seen.add(current)
            try:
                doc = self.get_folder(current)
            except DriveError as e:
                logger.warning("Breadcrumb walk stopped at %s: %s", current, e.message)
                break
            crumbs.append(Breadcrumb(id=str(doc["_id"]), name=doc["name"]))
            current = doc.get("parent_id")
        crumbs.append(Breadcrumb(id=None, name=ROOT_NAME))
        crumbs.reverse()
        return crumbs

    # Upload / download

    def upload(self, filename: str, data: bytes, content_type: Optional[str] = None,
               folder_id: Optional[str] = None) -> dict:
        if not filename:
            raise ValidationError("No file provided")
        if len(filename) > MAX_NAME_LENGTH:
            raise ValidationError(f"File name must be at most {MAX_NAME_LENGTH} characters")
        if self.max_upload_bytes is not None and len(data) > self.max_upload_bytes:
            raise ValidationError("File is too large")
        self._check_target_folder(folder_id)

        mime_type = content_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"
        key = generate_storage_key(self.owner_id, filename)
        try:
            self.storage.upload(key, data, content_type=mime_type)
        except (OSError, ValueError) as e:
            logger.error("Blob upload failed for %s: %s", key, e)
            self._discard_blob(key)
            raise UploadError() from e

        try:
            return self.repo.insert("file", {
                "name": filename,
                "size": len(data),
                "mime_type": mime_type,
                "storage_path": key,
                "folder_id": folder_id or None,
            })
        except PyMongoError as e:
            logger.error("Metadata insert failed for %s: %s", key, e)
            self._discard_blob(key)
            raise MetadataError() from e

    def _discard_blob(self, key: str):
        try:
            if self.storage.exists(key):
                self.storage.delete(key)
        except Exception as e:
            logger.error("Cleanup of orphaned blob %s failed: %s", key, e)

    def download_link(self, file_id: str) -> DownloadLink:
        doc = self.get_file(file_id)
        with remote_call(message="Failed to generate download URL"):
            url = self.storage.get_blob_url(doc["storage_path"], expires_in=self.signed_url_ttl, filename=doc["name"])
        return DownloadLink(url=url, file_name=doc["name"])

    # Mutations

    def create_folder(self, name: str, parent_id: Optional[str] = None) -> dict:
        name = clean_name(name, "Folder name")
        self._check_target_folder(parent_id)
        self._check_sibling_name(parent_id, name)
        with remote_call(message="Failed to create folder"):
            return self.repo.insert("folder", {"name": name, "parent_id": parent_id or None})

    def rename(self, item_id: str, name: str, item_type: str) -> dict:
        name = clean_name(name)
        doc = self._get(item_type, item_id)
        if item_type == "folder":
            self._check_sibling_name(doc.get("parent_id"), name, exclude_id=item_id)
        with remote_call(message=f"Failed to rename {item_type}"):
            updated = self.repo.update(item_type, item_id, {"name": name})
        if not updated:
            raise NotFoundError(f"{item_type.capitalize()} not found")
        return updated

    def delete_items(self, ids: List[str], item_type: str) -> int:
        docs = self._get_many(item_type, ids)
        if item_type == "folder":
            with remote_call():
                blocked = [d["name"] for d in docs if self.repo.has_children(str(d["_id"]))]
            if blocked:
                raise NotEmptyError(f"Cannot delete folder that contains files or subfolders: {', '.join(blocked)}")
        else:
            self._delete_blobs(docs)
        with remote_call(message=f"Failed to delete {item_type}"):
            return self.repo.delete_many(item_type, [str(d["_id"]) for d in docs])

    def _delete_blobs(self, docs: List[dict]):
        for doc in docs:
            try:
                self.storage.delete(doc["storage_path"])
            except Exception as e:
                logger.warning("Storage delete failed for %s: %s", doc.get("storage_path"), e)

    def empty_trash(self) -> int:
        docs = self.list_trash("file")
        if not docs:
            return 0
        self._delete_blobs(docs)
        with remote_call(message="Failed to empty trash"):
            return self.repo.delete_many("file", [str(d["_id"]) for d in docs])

    def set_trashed(self, ids: List[str], item_type: str, trashed: bool) -> int:
        docs = self._get_many(item_type, ids)
        if item_type == "folder" and not trashed:
            restoring = set()
            for d in docs:
                if not d.get("is_trashed"):
                    continue
                slot = (d.get("parent_id"), d["name"])
                if slot in restoring:
                    raise ConflictError()
                restoring.add(slot)
                self._check_sibling_name(d.get("parent_id"), d["name"], exclude_id=str(d["_id"]))
        with remote_call():
            return self.repo.update_many(item_type, [str(d["_id"]) for d in docs], {"is_trashed": trashed})

    def toggle_star(self, item_id: str, item_type: str) -> dict:
        check_type(item_type)
        with remote_call():
            doc = self.repo.toggle_star(item_type, item_id)
        if not doc:
            raise NotFoundError(f"{item_type.capitalize()} not found")
        return doc

    def move(self, ids: List[str], target_folder_id: Optional[str], item_type: str) -> int:
        # Destination name collisions are not checked
        docs = self._get_many(item_type, ids)
        self._check_target_folder(target_folder_id)
        if item_type == "folder" and target_folder_id:
            moving = {str(d["_id"]) for d in docs}
            ancestors = {c.id for c in self.breadcrumbs(target_folder_id)}
            if moving & ancestors:
                raise ValidationError("Cannot move a folder into itself or one of its subfolders")
        with remote_call():
            return self.repo.update_many(
                item_type, [str(d["_id"]) for d in docs], {parent_field(item_type): target_folder_id or None}
            )
