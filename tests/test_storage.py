import jwt
import pytest

from storage import LocalBlobStorage, generate_storage_key


def test_storage_key_ignores_original_name():
    key = generate_storage_key("user-1", "My Holiday Photo.JPG")

    owner, name = key.split("/")
    assert owner == "user-1"
    assert name.endswith(".jpg")
    assert "Holiday" not in name
    assert generate_storage_key("user-1", "Makefile").count(".") == 0


def test_upload_refuses_to_overwrite(storage):
    storage.upload("user-1/a.txt", b"first")

    with pytest.raises(FileExistsError):
        storage.upload("user-1/a.txt", b"second")
    assert storage.exists("user-1/a.txt")


def test_delete_missing_key_is_not_an_error(storage):
    storage.delete("user-1/nothing.txt")


def test_keys_cannot_escape_the_bucket(storage):
    with pytest.raises(ValueError):
        storage.upload("../outside.txt", b"x")


def test_signed_url_expires(storage):
    url = storage.get_blob_url("user-1/a.txt", expires_in=-10)
    token = url.split("token=")[1]

    assert storage.verify_token("user-1/a.txt", token) is None


def test_signed_url_needs_the_same_secret(tmp_path, storage):
    url = storage.get_blob_url("user-1/a.txt", filename="a.txt")
    token = url.split("token=")[1]
    other = LocalBlobStorage(str(tmp_path / "other"), "another-secret")

    assert storage.verify_token("user-1/a.txt", token)["fn"] == "a.txt"
    assert other.verify_token("user-1/a.txt", token) is None
    assert url.startswith("http://testserver/storage/user-1/a.txt?token=")


def test_signed_url_is_bound_to_its_audience(tmp_path, storage):
    url = storage.get_blob_url("user-1/a.txt")
    token = url.split("token=")[1]
    elsewhere = LocalBlobStorage(str(tmp_path / "other"), storage.secret, audience="another-app")

    assert jwt.decode(token, options={"verify_signature": False})["aud"] == "pretty-drive-blob"
    assert elsewhere.verify_token("user-1/a.txt", token) is None
