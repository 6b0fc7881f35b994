import os
import time

os.environ["JWT_SECRET"] = "test-secret"
os.environ.pop("DATABASE_URL", None)

import jwt
import mongomock
import pytest
from fastapi.testclient import TestClient

import config

config.get_settings.cache_clear()

import main
from service import DriveService
from storage import LocalBlobStorage

SECRET = "test-secret"
USER = "user-1"
OTHER_USER = "user-2"


def make_token(user_id: str, expires_in: int = 3600, secret: str = SECRET) -> str:
    payload = {"sub": user_id, "exp": int(time.time()) + expires_in, "iat": int(time.time())}
    return jwt.encode(payload, secret, algorithm="HS256")


def blob_files(root) -> list:
    return [os.path.join(d, f) for d, _, files in os.walk(root) for f in files]


@pytest.fixture
def db():
    return mongomock.MongoClient()["pretty_drive_test"]


@pytest.fixture
def blob_root(tmp_path):
    return tmp_path / "blobs"


@pytest.fixture
def storage(blob_root):
    return LocalBlobStorage(str(blob_root), SECRET, base_url="http://testserver")


@pytest.fixture
def service(db, storage):
    return DriveService(db, storage, USER)


@pytest.fixture
def other_service(db, storage):
    return DriveService(db, storage, OTHER_USER)


@pytest.fixture
def client(db, storage):
    main.app.dependency_overrides[main.get_db] = lambda: db
    main.app.dependency_overrides[main.get_blob_storage] = lambda: storage
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {make_token(USER)}"}


@pytest.fixture
def other_headers():
    return {"Authorization": f"Bearer {make_token(OTHER_USER)}"}
