import logging
from datetime import datetime, timezone

import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

from errors import (
    ConflictError,
    FetchError,
    MetadataError,
    NotEmptyError,
    NotFoundError,
    Unauthorized,
    UploadError,
    ValidationError,
)
from service import DriveService
from tests.conftest import blob_files


def names(docs):
    return [d["name"] for d in docs]


def test_service_requires_caller(db, storage):
    with pytest.raises(Unauthorized):
        DriveService(db, storage, None)


def test_service_without_database_fails_as_fetch_error(storage):
    with pytest.raises(FetchError):
        DriveService(None, storage, "user-1")


def test_listing_is_newest_first_and_excludes_trash(service):
    a = service.create_folder("a")
    service.create_folder("b")
    service.set_trashed([str(a["_id"])], "folder", True)
    service.upload("one.txt", b"1")
    service.upload("two.txt", b"22")

    folders, files = service.list_contents(None)

    assert names(folders) == ["b"]
    assert names(files) == ["two.txt", "one.txt"]


def test_listing_is_scoped_to_owner(service, other_service):
    service.create_folder("mine")
    other_service.create_folder("theirs")

    assert names(service.list_folders()) == ["mine"]
    assert names(other_service.list_folders()) == ["theirs"]


def test_other_owner_cannot_read_or_delete(service, other_service):
    doc = service.upload("secret.txt", b"x")

    with pytest.raises(NotFoundError):
        other_service.get_file(str(doc["_id"]))
    with pytest.raises(NotFoundError):
        other_service.delete_items([str(doc["_id"])], "file")
    assert service.get_file(str(doc["_id"]))


def test_upload_stores_blob_and_metadata(service, storage):
    doc = service.upload("Report.PDF", b"%PDF-1.4", content_type="application/pdf")

    assert doc["name"] == "Report.PDF"
    assert doc["size"] == 8
    assert doc["mime_type"] == "application/pdf"
    assert doc["folder_id"] is None
    assert doc["storage_path"].startswith("user-1/")
    assert doc["storage_path"].endswith(".pdf")
    assert storage.exists(doc["storage_path"])


def test_upload_keys_are_unique_for_same_name(service):
    first = service.upload("same.txt", b"a")
    second = service.upload("same.txt", b"b")

    assert first["storage_path"] != second["storage_path"]


def test_upload_guesses_mime_type(service):
    assert service.upload("notes.txt", b"hi")["mime_type"] == "text/plain"
    assert service.upload("blob", b"hi")["mime_type"] == "application/octet-stream"


def test_upload_into_missing_folder_fails(service, blob_root):
    with pytest.raises(NotFoundError):
        service.upload("a.txt", b"a", folder_id=str(ObjectId()))
    assert blob_files(blob_root) == []


def test_upload_rejects_oversized_file(db, storage):
    svc = DriveService(db, storage, "user-1", max_upload_bytes=4)

    with pytest.raises(ValidationError):
        svc.upload("big.bin", b"12345")


def test_blob_failure_creates_no_row(service, storage, db, monkeypatch):
    def broken_upload(key, data, content_type=None):
        raise OSError("bucket unavailable")

    monkeypatch.setattr(storage, "upload", broken_upload)

    with pytest.raises(UploadError):
        service.upload("a.txt", b"a")
    assert db["files"].count_documents({}) == 0


def test_metadata_failure_removes_orphaned_blob(service, db, blob_root, monkeypatch):
    def broken_insert(item_type, fields):
        raise PyMongoError("insert failed")

    monkeypatch.setattr(service.repo, "insert", broken_insert)

    with pytest.raises(MetadataError):
        service.upload("a.txt", b"a")
    assert blob_files(blob_root) == []
    assert db["files"].count_documents({}) == 0


def test_cleanup_failure_is_logged_and_metadata_error_still_raised(service, storage, monkeypatch, caplog):
    def broken_insert(item_type, fields):
        raise PyMongoError("insert failed")

    def broken_delete(key):
        raise OSError("delete failed")

    monkeypatch.setattr(service.repo, "insert", broken_insert)
    monkeypatch.setattr(storage, "delete", broken_delete)

    with caplog.at_level(logging.ERROR, logger="service"):
        with pytest.raises(MetadataError):
            service.upload("a.txt", b"a")
    assert "Cleanup of orphaned blob" in caplog.text


def test_create_folder_validates_name(service):
    with pytest.raises(ValidationError):
        service.create_folder("   ")
    with pytest.raises(ValidationError):
        service.create_folder("")


def test_over_long_names_are_rejected_before_writing(service, db, blob_root):
    service.create_folder("x" * 255)
    f = service.upload("a.txt", b"a")

    with pytest.raises(ValidationError):
        service.create_folder("x" * 256)
    with pytest.raises(ValidationError):
        service.rename(str(f["_id"]), "y" * 256, "file")
    with pytest.raises(ValidationError):
        service.upload("z" * 252 + ".txt", b"z")

    assert db["folders"].count_documents({}) == 1
    assert names(service.list_files()) == ["a.txt"]
    assert len(blob_files(blob_root)) == 1


def test_create_folder_trims_name(service):
    assert service.create_folder("  Reports ")["name"] == "Reports"


def test_duplicate_folder_name_conflicts_only_under_same_parent(service, db):
    p = str(service.create_folder("P")["_id"])
    p2 = str(service.create_folder("P2")["_id"])
    service.create_folder("Reports", p)

    with pytest.raises(ConflictError):
        service.create_folder("Reports", p)
    with pytest.raises(ConflictError):
        service.create_folder(" Reports ", p)

    assert service.create_folder("Reports", p2)["parent_id"] == p2
    assert service.create_folder("reports", p)["name"] == "reports"
    assert db["folders"].count_documents({"name": "Reports"}) == 2


def test_trashed_folder_does_not_block_same_name(service):
    old = service.create_folder("Reports")
    service.set_trashed([str(old["_id"])], "folder", True)

    assert service.create_folder("Reports")


def test_restoring_folder_into_name_clash_conflicts(service):
    old = service.create_folder("Reports")
    service.set_trashed([str(old["_id"])], "folder", True)
    service.create_folder("Reports")

    with pytest.raises(ConflictError):
        service.set_trashed([str(old["_id"])], "folder", False)


def test_restoring_two_same_named_folders_together_conflicts(service, db):
    a = service.create_folder("Reports")
    service.set_trashed([str(a["_id"])], "folder", True)
    b = service.create_folder("Reports")
    service.set_trashed([str(b["_id"])], "folder", True)

    with pytest.raises(ConflictError):
        service.set_trashed([str(a["_id"]), str(b["_id"])], "folder", False)
    assert db["folders"].count_documents({"is_trashed": True}) == 2
    assert service.list_folders() == []


def test_restoring_same_named_folders_under_different_parents(service):
    p1 = str(service.create_folder("P1")["_id"])
    p2 = str(service.create_folder("P2")["_id"])
    a = service.create_folder("Reports", p1)
    b = service.create_folder("Reports", p2)
    ids = [str(a["_id"]), str(b["_id"])]
    service.set_trashed(ids, "folder", True)

    assert service.set_trashed(ids, "folder", False) == 2


def test_rename_folder_conflict_and_success(service, db):
    a = service.create_folder("A")
    service.create_folder("A2")
    a_id = str(a["_id"])
    db["folders"].update_one({"_id": a["_id"]}, {"$set": {"updated_at": datetime(2000, 1, 1, tzinfo=timezone.utc)}})

    with pytest.raises(ConflictError):
        service.rename(a_id, "A2", "folder")

    renamed = service.rename(a_id, "Archive", "folder")
    assert renamed["name"] == "Archive"
    assert renamed["updated_at"].year != 2000


def test_rename_folder_to_own_name_is_allowed(service):
    a = service.create_folder("A")

    assert service.rename(str(a["_id"]), " A ", "folder")["name"] == "A"


def test_rename_file_allows_duplicate_names(service):
    service.upload("a.txt", b"a")
    b = service.upload("b.txt", b"b")

    assert service.rename(str(b["_id"]), "a.txt", "file")["name"] == "a.txt"


def test_rename_missing_item(service):
    with pytest.raises(NotFoundError):
        service.rename(str(ObjectId()), "x", "folder")
    with pytest.raises(ValidationError):
        service.rename("not-an-id", "x", "file")


def test_delete_non_empty_folder_then_empty(service, db):
    folder_id = str(service.create_folder("Docs")["_id"])
    child = service.upload("a.txt", b"a", folder_id=folder_id)

    with pytest.raises(NotEmptyError):
        service.delete_items([folder_id], "folder")

    service.delete_items([str(child["_id"])], "file")
    assert service.delete_items([folder_id], "folder") == 1
    assert db["folders"].count_documents({}) == 0


def test_trashed_child_still_blocks_folder_delete(service):
    folder_id = str(service.create_folder("Docs")["_id"])
    sub = service.create_folder("Sub", folder_id)
    service.set_trashed([str(sub["_id"])], "folder", True)

    with pytest.raises(NotEmptyError):
        service.delete_items([folder_id], "folder")


def test_folder_batch_delete_is_all_or_nothing(service, db):
    empty = str(service.create_folder("Empty")["_id"])
    full = str(service.create_folder("Full")["_id"])
    service.create_folder("Child", full)

    with pytest.raises(NotEmptyError):
        service.delete_items([empty, full], "folder")
    assert db["folders"].count_documents({}) == 3


def test_delete_files_removes_blobs_and_rows(service, blob_root, db):
    a = service.upload("a.txt", b"a")
    b = service.upload("b.txt", b"b")

    assert service.delete_items([str(a["_id"]), str(b["_id"])], "file") == 2
    assert blob_files(blob_root) == []
    assert db["files"].count_documents({}) == 0


def test_blob_delete_failure_does_not_stop_row_delete(service, storage, db, monkeypatch):
    doc = service.upload("a.txt", b"a")

    def broken_delete(key):
        raise OSError("delete failed")

    monkeypatch.setattr(storage, "delete", broken_delete)

    assert service.delete_items([str(doc["_id"])], "file") == 1
    assert db["files"].count_documents({}) == 0


def test_trash_and_restore_keep_blob(service, storage):
    doc = service.upload("a.txt", b"a")
    file_id = str(doc["_id"])

    service.set_trashed([file_id], "file", True)
    assert service.list_files() == []
    assert names(service.list_trash("file")) == ["a.txt"]
    assert storage.exists(doc["storage_path"])

    service.set_trashed([file_id], "file", False)
    assert names(service.list_files()) == ["a.txt"]


def test_empty_trash_deletes_only_trashed_files(service, blob_root):
    keep = service.upload("keep.txt", b"k")
    gone = service.upload("gone.txt", b"g")
    service.set_trashed([str(gone["_id"])], "file", True)

    assert service.empty_trash() == 1
    assert names(service.list_files()) == ["keep.txt"]
    assert len(blob_files(blob_root)) == 1
    assert service.empty_trash() == 0
    assert keep


def test_toggle_star_flips_flag(service):
    folder_id = str(service.create_folder("A")["_id"])

    assert service.toggle_star(folder_id, "folder")["is_starred"] is True
    assert names(service.list_starred("folder")) == ["A"]
    assert service.toggle_star(folder_id, "folder")["is_starred"] is False
    assert service.list_starred("folder") == []


def test_toggle_star_missing_item(service, other_service):
    doc = service.upload("a.txt", b"a")

    with pytest.raises(NotFoundError):
        other_service.toggle_star(str(doc["_id"]), "file")


def test_move_files_between_folders(service):
    target = str(service.create_folder("Target")["_id"])
    doc = service.upload("a.txt", b"a")

    assert service.move([str(doc["_id"])], target, "file") == 1
    assert service.list_files() == []
    assert names(service.list_files(target)) == ["a.txt"]

    service.move([str(doc["_id"])], None, "file")
    assert names(service.list_files()) == ["a.txt"]


def test_move_does_not_check_destination_names(service):
    target = str(service.create_folder("Target")["_id"])
    service.create_folder("Same", target)
    other = service.create_folder("Same")

    service.move([str(other["_id"])], target, "folder")
    assert names(service.list_folders(target)) == ["Same", "Same"]


def test_move_folder_into_own_subtree_is_rejected(service):
    a = str(service.create_folder("A")["_id"])
    b = str(service.create_folder("B", a)["_id"])

    with pytest.raises(ValidationError):
        service.move([a], b, "folder")
    with pytest.raises(ValidationError):
        service.move([a], a, "folder")


def test_breadcrumbs_walk_up_to_root(service):
    a = str(service.create_folder("A")["_id"])
    b = str(service.create_folder("B", a)["_id"])
    c = str(service.create_folder("C", b)["_id"])

    crumbs = [(x.id, x.name) for x in service.breadcrumbs(c)]

    assert crumbs == [(None, "My Drive"), (a, "A"), (b, "B"), (c, "C")]
    assert [(x.id, x.name) for x in service.breadcrumbs(None)] == [(None, "My Drive")]


def test_breadcrumbs_stop_on_cycle(service, db):
    a_id, b_id = ObjectId(), ObjectId()
    base = {"owner_id": "user-1", "is_trashed": False, "is_starred": False}
    db["folders"].insert_one({"_id": a_id, "name": "A", "parent_id": str(b_id), **base})
    db["folders"].insert_one({"_id": b_id, "name": "B", "parent_id": str(a_id), **base})

    crumbs = service.breadcrumbs(str(a_id))

    assert [c.name for c in crumbs] == ["My Drive", "B", "A"]


def test_breadcrumbs_stop_on_missing_parent(service, db):
    c = service.create_folder("C")
    db["folders"].update_one({"_id": c["_id"]}, {"$set": {"parent_id": str(ObjectId())}})

    crumbs = service.breadcrumbs(str(c["_id"]))

    assert [x.name for x in crumbs] == ["My Drive", "C"]


def test_download_link_is_signed_and_names_file(service, storage):
    doc = service.upload("photo.jpg", b"jpg")

    link = service.download_link(str(doc["_id"]))

    assert link.file_name == "photo.jpg"
    token = link.url.split("token=")[1]
    assert storage.verify_token(doc["storage_path"], token)["fn"] == "photo.jpg"


def test_list_failure_becomes_fetch_error(service, monkeypatch):
    def broken(*args, **kwargs):
        raise PyMongoError("connection reset")

    monkeypatch.setattr(service.repo, "list_children", broken)

    with pytest.raises(FetchError):
        service.list_contents(None)


def test_recent_files_by_update_time(service, db):
    a = service.upload("a.txt", b"a")
    service.upload("b.txt", b"b")
    db["files"].update_one({"_id": a["_id"]}, {"$set": {"updated_at": datetime(2100, 1, 1, tzinfo=timezone.utc)}})

    assert names(service.list_recent(1)) == ["a.txt"]
