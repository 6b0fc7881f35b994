import logging
from typing import List, Optional, Tuple

import httpx

from errors import (
    ConflictError,
    DriveError,
    FetchError,
    Forbidden,
    MetadataError,
    NotEmptyError,
    NotFoundError,
    Unauthorized,
    UploadError,
    ValidationError,
)
from schemas import Breadcrumb, DownloadLink

logger = logging.getLogger(__name__)

STATUS_ERRORS = {
    400: ValidationError,
    401: Unauthorized,
    403: Forbidden,
    404: NotFoundError,
    409: ConflictError,
}

# same status, told apart by message
MESSAGE_ERRORS = (NotEmptyError, MetadataError, UploadError)


def error_from_response(response: httpx.Response) -> DriveError:
    try:
        message = response.json().get("error")
    except ValueError:
        message = None
    message = message or f"HTTP error! status: {response.status_code}"
    for cls in MESSAGE_ERRORS:
        if response.status_code == cls.status_code and message.startswith(cls.default_message):
            return cls(message)
    return STATUS_ERRORS.get(response.status_code, FetchError)(message)


class DriveApiClient:
    """
    The drive REST API, exposed with the same methods as `service.DriveService`
    so a `DriveSession` can run against either.
    """

    def __init__(self, http: httpx.Client, token: str):
        self.http = http
        self.token = token

    def _request(self, method: str, endpoint: str, **kwargs) -> dict:
        headers = {"Authorization": f"Bearer {self.token}"}
        try:
            response = self.http.request(method, f"/api{endpoint}", headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.error("API request failed: %s %s: %s", method, endpoint, e)
            raise FetchError() from e
        if response.is_error:
            raise error_from_response(response)
        return response.json()

    # Listing

    def list_files(self, folder_id: Optional[str] = None) -> List[dict]:
        params = {"folderId": folder_id} if folder_id else None
        return self._request("GET", "/files", params=params)["files"]

    def list_folders(self, parent_id: Optional[str] = None) -> List[dict]:
        params = {"parentId": parent_id} if parent_id else None
        return self._request("GET", "/folders", params=params)["folders"]

    def list_contents(self, folder_id: Optional[str] = None) -> Tuple[List[dict], List[dict]]:
        return self.list_folders(folder_id), self.list_files(folder_id)

    def list_starred(self, item_type: str) -> List[dict]:
        kind = f"{item_type}s"
        return self._request("GET", f"/{kind}/starred")[kind]

    def list_trash(self, item_type: str) -> List[dict]:
        kind = f"{item_type}s"
        return self._request("GET", f"/{kind}/trash")[kind]

    def list_recent(self, limit: int = 20) -> List[dict]:
        return self._request("GET", "/files/recent", params={"limit": limit})["files"]

    def breadcrumbs(self, folder_id: str) -> List[Breadcrumb]:
        body = self._request("GET", f"/folders/{folder_id}/breadcrumbs")
        return [Breadcrumb.model_validate(c) for c in body["breadcrumbs"]]

    # Files

    def upload(self, filename: str, data: bytes, content_type: Optional[str] = None,
               folder_id: Optional[str] = None) -> dict:
        form = {"folderId": folder_id} if folder_id else None
        files = {"file": (filename, data, content_type or "application/octet-stream")}
        return self._request("POST", "/files/upload", data=form, files=files)["file"]

    def download_link(self, file_id: str) -> DownloadLink:
        body = self._request("GET", f"/files/{file_id}/download")
        return DownloadLink(url=body["downloadUrl"], file_name=body["fileName"])

    def empty_trash(self) -> int:
        return self._request("DELETE", "/files/trash")["count"]

    # Mutations

    def create_folder(self, name: str, parent_id: Optional[str] = None) -> dict:
        return self._request("POST", "/folders", json={"name": name, "parentId": parent_id})["folder"]

    def rename(self, item_id: str, name: str, item_type: str) -> dict:
        return self._request("PUT", f"/{item_type}s/{item_id}/rename", json={"name": name})[item_type]

    def delete_items(self, ids: List[str], item_type: str) -> int:
        return self._request("POST", f"/{item_type}s/delete", json={"ids": ids})["count"]

    def set_trashed(self, ids: List[str], item_type: str, trashed: bool) -> int:
        action = "trash" if trashed else "restore"
        return self._request("POST", f"/{item_type}s/{action}", json={"ids": ids})["count"]

    def toggle_star(self, item_id: str, item_type: str) -> dict:
        return self._request("POST", f"/{item_type}s/{item_id}/star")[item_type]

    def move(self, ids: List[str], target_folder_id: Optional[str], item_type: str) -> int:
        body = {"ids": ids, "targetFolderId": target_folder_id}
        return self._request("POST", f"/{item_type}s/move", json=body)["count"]
