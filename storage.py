import os
import time
import uuid
from abc import ABC, abstractmethod
from typing import Optional
from urllib.parse import quote

import jwt

from config import Settings, get_settings

BLOB_TOKEN_AUDIENCE = "pretty-drive-blob"


def generate_storage_key(owner_id: str, original_name: str) -> str:
    """Blob key `{owner_id}/{random}.{ext}`, independent of the original file name."""
    _, ext = os.path.splitext(original_name or "")
    return f"{owner_id}/{uuid.uuid4().hex}{ext.lower()}"


class StorageBase(ABC):
    """
    Abstract blob bucket.
    """

    @abstractmethod
    def upload(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        """Writes a blob. Must not overwrite an existing key."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Deletes a blob. Missing keys are not an error."""
        pass

    @abstractmethod
    def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    def get_blob_url(self, key: str, expires_in: int = 3600, filename: Optional[str] = None) -> str:
        """Generates a signed URL for the blob that expires in `expires_in` seconds."""
        pass


class LocalBlobStorage(StorageBase):
    """Blobs on local disk under `root`, served back through signed `/storage` URLs."""

    def __init__(self, root: str, secret: str, base_url: str = "", algorithm: str = "HS256",
                 audience: str = BLOB_TOKEN_AUDIENCE):
        self.root = os.path.abspath(root)
        self.secret = secret
        self.base_url = base_url.rstrip("/")
        self.algorithm = algorithm
        self.audience = audience
        os.makedirs(self.root, exist_ok=True)

    def path_for(self, key: str) -> str:
        path = os.path.abspath(os.path.join(self.root, key))
        if os.path.commonpath([self.root, path]) != self.root:
            raise ValueError(f"Invalid storage key: {key}")
        return path

    def upload(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        path = self.path_for(key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        # "xb" refuses to overwrite, keys are never reused
        with open(path, "xb") as f:
            f.write(data)

    def delete(self, key: str) -> None:
        path = self.path_for(key)
        if os.path.exists(path):
            os.remove(path)

    def exists(self, key: str) -> bool:
        return os.path.isfile(self.path_for(key))

    def get_blob_url(self, key: str, expires_in: int = 3600, filename: Optional[str] = None) -> str:
        payload = {"sub": key, "aud": self.audience, "exp": int(time.time()) + expires_in}
        if filename:
            payload["fn"] = filename
        token = jwt.encode(payload, self.secret, algorithm=self.algorithm)
        return f"{self.base_url}/storage/{quote(key)}?token={token}"

    def verify_token(self, key: str, token: str) -> Optional[dict]:
        """Claims of a signed URL token, or None if it is forged, expired or for another key."""
        try:
            payload = jwt.decode(
                token, self.secret, algorithms=[self.algorithm], audience=self.audience,
                options={"require": ["exp", "sub", "aud"]},
            )
        except jwt.PyJWTError:
            return None
        if payload.get("sub") != key:
            return None
        return payload


def get_storage(settings: Settings = None) -> LocalBlobStorage:
    settings = settings or get_settings()
    return LocalBlobStorage(
        settings.upload_dir,
        settings.jwt_secret,
        base_url=settings.public_base_url,
        algorithm=settings.jwt_algorithm,
        audience=settings.blob_token_audience,
    )
