"""
Client-side drive state.

`DriveSession` holds the view of one user's drive: the current folder's
files and folders, breadcrumbs, selection, view/sort/search settings and
upload progress. It talks to a backend with the `DriveService` surface,
either the service itself or `client.DriveApiClient` over HTTP.

Every mutation is followed by a full re-fetch of the current folder, so the
state always mirrors what the server holds. Failures are converted to
`errors.DriveError`, stored in `error`, pushed as a notification and
re-raised to the caller.
"""

import logging
from contextlib import contextmanager
from typing import Iterable, List, Optional, Tuple, Type, get_args

from pydantic import BaseModel, ConfigDict

from errors import DriveError, FetchError, Unauthorized, UploadError, ValidationError
from schemas import (
    ROOT_NAME,
    Breadcrumb,
    DownloadLink,
    FileItem,
    Folder,
    ItemType,
    SortBy,
    SortOrder,
    UploadProgress,
    ViewMode,
)

logger = logging.getLogger(__name__)

ROOT_CRUMB = Breadcrumb(id=None, name=ROOT_NAME)


class LocalFile(BaseModel):
    """A file picked on the client, waiting to be uploaded."""
    name: str
    data: bytes
    content_type: Optional[str] = None


class DriveState(BaseModel):
    """Read-only projection of a session, handed to views."""
    model_config = ConfigDict(frozen=True)

    files: Tuple[FileItem, ...]
    folders: Tuple[Folder, ...]
    current_folder_id: Optional[str]
    breadcrumbs: Tuple[Breadcrumb, ...]
    selected_items: Tuple[str, ...]
    view_mode: ViewMode
    sort_by: SortBy
    sort_order: SortOrder
    search_query: str
    upload_progress: Tuple[UploadProgress, ...]
    loading: bool
    error: Optional[str]


def as_file(doc: dict) -> FileItem:
    return FileItem.from_doc(doc) if "_id" in doc else FileItem.model_validate(doc)


def as_folder(doc: dict) -> Folder:
    return Folder.from_doc(doc) if "_id" in doc else Folder.model_validate(doc)


def sort_key(item, sort_by: str):
    if sort_by == "modified":
        return item.updated_at
    if sort_by == "size":
        return getattr(item, "size", 0)
    if sort_by == "type":
        return getattr(item, "mime_type", "folder")
    return item.name.lower()


class DriveSession:
    """
    One user's view of the drive, driven by a backend.

    Operations raise `errors.DriveError` subclasses after recording the
    message in `error`. `snapshot()` gives views an immutable copy.
    """

    def __init__(self, backend=None):
        self.backend = backend
        self.files: List[FileItem] = []
        self.folders: List[Folder] = []
        self.current_folder_id: Optional[str] = None
        self.breadcrumbs: List[Breadcrumb] = [ROOT_CRUMB]
        self.selected_items: List[str] = []
        self.view_mode: ViewMode = "grid"
        self.sort_by: SortBy = "name"
        self.sort_order: SortOrder = "asc"
        self.search_query: str = ""
        self.upload_progress: List[UploadProgress] = []
        self.loading = False
        self.error: Optional[str] = None
        self.notifications: List[Tuple[str, str]] = []

    # Plumbing

    def attach(self, backend):
        """Bind the session to an authenticated backend and load the root folder."""
        self.backend = backend
        self.navigate_to_folder(None)

    def detach(self):
        self.backend = None
        self.files, self.folders = [], []
        self.current_folder_id = None
        self.breadcrumbs = [ROOT_CRUMB]
        self.selected_items = []

    def _require_backend(self):
        if self.backend is None:
            raise Unauthorized()
        return self.backend

    def notify(self, level: str, message: str):
        self.notifications.append((level, message))

    @contextmanager
    def _operation(self, error_cls: Type[DriveError] = FetchError, success: Optional[str] = None):
        self.loading = True
        self.error = None
        try:
            yield self._require_backend()
        except DriveError as e:
            self._fail(e)
            raise
        except Exception as e:
            logger.error("Drive operation failed: %s", e, exc_info=True)
            err = error_cls()
            self._fail(err)
            raise err from e
        else:
            if success:
                self.notify("success", success)
        finally:
            self.loading = False

    def _fail(self, e: DriveError):
        self.error = e.message
        self.notify("error", e.message)

    def snapshot(self) -> DriveState:
        return DriveState(
            files=tuple(self.files),
            folders=tuple(self.folders),
            current_folder_id=self.current_folder_id,
            breadcrumbs=tuple(self.breadcrumbs),
            selected_items=tuple(self.selected_items),
            view_mode=self.view_mode,
            sort_by=self.sort_by,
            sort_order=self.sort_order,
            search_query=self.search_query,
            upload_progress=tuple(p.model_copy() for p in self.upload_progress),
            loading=self.loading,
            error=self.error,
        )

    # Listing and navigation

    def list(self, folder_id: Optional[str] = None):
        """Replace `files`/`folders` with the folder's contents; on failure the old contents stay."""
        with self._operation(FetchError) as backend:
            folders, files = backend.list_contents(folder_id)
            self.folders = [as_folder(d) for d in folders]
            self.files = [as_file(d) for d in files]

    def refresh(self):
        self.list(self.current_folder_id)

    def _refresh_after_write(self):
        # a failed re-fetch only marks the state stale, it does not fail the write
        error = self.error
        try:
            self.refresh()
        except DriveError:
            return
        self.error = error

    def navigate_to_folder(self, folder_id: Optional[str]):
        """Open `folder_id`; on failure the session stays on the previous folder."""
        previous = self.current_folder_id, self.breadcrumbs
        crumbs = self._fetch_breadcrumbs(folder_id)
        self.current_folder_id, self.breadcrumbs = folder_id, crumbs
        try:
            self.refresh()
        except DriveError:
            self.current_folder_id, self.breadcrumbs = previous
            raise
        self.selected_items = []

    def update_breadcrumbs(self):
        self.breadcrumbs = self._fetch_breadcrumbs(self.current_folder_id)

    def _fetch_breadcrumbs(self, folder_id: Optional[str]) -> List[Breadcrumb]:
        if folder_id is None:
            return [ROOT_CRUMB]
        with self._operation(FetchError) as backend:
            crumbs = backend.breadcrumbs(folder_id)
            return [c if isinstance(c, Breadcrumb) else Breadcrumb.model_validate(c) for c in crumbs]

    def list_starred(self) -> Tuple[List[Folder], List[FileItem]]:
        with self._operation(FetchError) as backend:
            folders = [as_folder(d) for d in backend.list_starred("folder")]
            files = [as_file(d) for d in backend.list_starred("file")]
        return folders, files

    def list_trash(self) -> Tuple[List[Folder], List[FileItem]]:
        with self._operation(FetchError) as backend:
            folders = [as_folder(d) for d in backend.list_trash("folder")]
            files = [as_file(d) for d in backend.list_trash("file")]
        return folders, files

    def list_recent(self, limit: int = 20) -> List[FileItem]:
        with self._operation(FetchError) as backend:
            return [as_file(d) for d in backend.list_recent(limit)]

    # Uploads

    def upload(self, file: LocalFile, target_folder_id: Optional[str] = None) -> FileItem:
        progress = UploadProgress(file_name=file.name)
        self.upload_progress.append(progress)
        try:
            return self._upload_one(file, progress, target_folder_id)
        finally:
            self._refresh_after_write()

    def upload_many(self, files: Iterable[LocalFile], target_folder_id: Optional[str] = None) -> List[UploadProgress]:
        """Upload one file at a time; a failed file does not stop the ones after it."""
        batch = [(f, UploadProgress(file_name=f.name)) for f in files]
        self.upload_progress.extend(p for _, p in batch)
        for file, progress in batch:
            try:
                self._upload_one(file, progress, target_folder_id)
            except DriveError:
                continue
        self._refresh_after_write()
        return [p for _, p in batch]

    def _upload_one(self, file: LocalFile, progress: UploadProgress, target_folder_id: Optional[str]) -> FileItem:
        progress.status = "uploading"
        progress.progress = 0
        folder_id = target_folder_id or self.current_folder_id
        try:
            with self._operation(UploadError, success=f"{file.name} uploaded") as backend:
                doc = backend.upload(file.name, file.data, content_type=file.content_type, folder_id=folder_id)
                item = as_file(doc)
        except DriveError as e:
            progress.status = "error"
            progress.error = e.message
            raise
        progress.status = "completed"
        progress.progress = 100
        return item

    def clear_upload_progress(self):
        self.upload_progress = [p for p in self.upload_progress if not p.done]

    # Mutations

    def create_folder(self, name: str, parent_id: Optional[str] = None) -> Folder:
        target = parent_id if parent_id is not None else self.current_folder_id
        with self._operation(FetchError, success="Folder created") as backend:
            doc = backend.create_folder(name, target)
            folder = as_folder(doc)
        self._refresh_after_write()
        return folder

    def rename_item(self, item_id: str, new_name: str, item_type: ItemType):
        with self._operation(FetchError, success="Renamed successfully") as backend:
            doc = backend.rename(item_id, new_name, item_type)
            item = as_file(doc) if item_type == "file" else as_folder(doc)
        self._refresh_after_write()
        return item

    def delete_items(self, ids: List[str], item_type: ItemType) -> int:
        with self._operation(FetchError, success="Deleted permanently") as backend:
            count = backend.delete_items(ids, item_type)
        self._drop_selection(ids)
        self._refresh_after_write()
        return count

    def move_to_trash(self, ids: List[str], item_type: ItemType) -> int:
        with self._operation(FetchError, success="Moved to trash") as backend:
            count = backend.set_trashed(ids, item_type, True)
        self._drop_selection(ids)
        self._refresh_after_write()
        return count

    def restore_from_trash(self, ids: List[str], item_type: ItemType) -> int:
        with self._operation(FetchError, success="Restored from trash") as backend:
            count = backend.set_trashed(ids, item_type, False)
        self._refresh_after_write()
        return count

    def empty_trash(self) -> int:
        with self._operation(FetchError, success="Trash emptied") as backend:
            count = backend.empty_trash()
        self._refresh_after_write()
        return count

    def toggle_star(self, item_id: str, item_type: ItemType):
        with self._operation(FetchError) as backend:
            doc = backend.toggle_star(item_id, item_type)
            item = as_file(doc) if item_type == "file" else as_folder(doc)
        self.notify("success", "Starred" if doc.get("is_starred") else "Removed from starred")
        self._refresh_after_write()
        return item

    def move_items(self, ids: List[str], target_folder_id: Optional[str], item_type: ItemType) -> int:
        with self._operation(FetchError, success="Moved successfully") as backend:
            count = backend.move(ids, target_folder_id, item_type)
        self._drop_selection(ids)
        self._refresh_after_write()
        return count

    def download(self, file_id: str) -> DownloadLink:
        with self._operation(FetchError) as backend:
            return backend.download_link(file_id)

    # View state

    def set_view_mode(self, mode: str):
        if mode not in get_args(ViewMode):
            raise ValidationError(f"Unknown view mode: {mode}")
        self.view_mode = mode

    def set_sort(self, sort_by: str, sort_order: Optional[str] = None):
        if sort_by not in get_args(SortBy):
            raise ValidationError(f"Unknown sort field: {sort_by}")
        if sort_order is not None and sort_order not in get_args(SortOrder):
            raise ValidationError(f"Unknown sort order: {sort_order}")
        self.sort_by = sort_by
        if sort_order is not None:
            self.sort_order = sort_order

    def set_search_query(self, query: str):
        self.search_query = query or ""

    def visible_items(self) -> Tuple[List[Folder], List[FileItem]]:
        """Current folder contents after search filtering and sorting, folders first."""
        needle = self.search_query.strip().lower()
        folders = [f for f in self.folders if needle in f.name.lower()]
        files = [f for f in self.files if needle in f.name.lower()]
        reverse = self.sort_order == "desc"
        folders.sort(key=lambda i: sort_key(i, self.sort_by), reverse=reverse)
        files.sort(key=lambda i: sort_key(i, self.sort_by), reverse=reverse)
        return folders, files

    # Selection

    def select(self, item_id: str):
        if item_id not in self.selected_items:
            self.selected_items.append(item_id)

    def toggle_selection(self, item_id: str):
        if item_id in self.selected_items:
            self.selected_items.remove(item_id)
        else:
            self.selected_items.append(item_id)

    def select_all(self):
        folders, files = self.visible_items()
        self.selected_items = [i.id for i in folders] + [i.id for i in files]

    def clear_selection(self):
        self.selected_items = []

    def _drop_selection(self, ids: Iterable[str]):
        gone = set(ids)
        self.selected_items = [i for i in self.selected_items if i not in gone]
