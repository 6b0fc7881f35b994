from datetime import datetime, timezone
from typing import Iterable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import DESCENDING, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database

from database import FILES, FOLDERS
from errors import ValidationError

NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def oid(id_str: Optional[str]) -> Optional[ObjectId]:
    if not id_str:
        return None
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid id")


def parent_field(item_type: str) -> str:
    return "folder_id" if item_type == "file" else "parent_id"


class DriveRepository:
    """
    Owner-scoped row access to the `files` and `folders` collections.

    Every query carries `owner_id`, so one user can never read or modify
    another user's rows. Methods return raw documents and let
    `pymongo.errors.PyMongoError` propagate; the service layer converts them.
    """

    def __init__(self, db: Database, owner_id: str):
        self.db = db
        self.owner_id = owner_id

    def collection(self, item_type: str) -> Collection:
        return self.db[FILES if item_type == "file" else FOLDERS]

    def _scoped(self, **filt) -> dict:
        return {"owner_id": self.owner_id, **filt}

    def _by_ids(self, ids: Iterable[str]) -> dict:
        return self._scoped(_id={"$in": [oid(i) for i in ids]})

    # Reads

    def list_children(self, item_type: str, parent_id: Optional[str], trashed: bool = False) -> List[dict]:
        filt = self._scoped(**{parent_field(item_type): parent_id or None, "is_trashed": trashed})
        return list(self.collection(item_type).find(filt).sort(NEWEST_FIRST))

    def list_flagged(self, item_type: str, field: str) -> List[dict]:
        filt = self._scoped(**{field: True})
        if field != "is_trashed":
            filt["is_trashed"] = False
        return list(self.collection(item_type).find(filt).sort(NEWEST_FIRST))

    def list_recent_files(self, limit: int) -> List[dict]:
        cursor = self.collection("file").find(self._scoped(is_trashed=False))
        return list(cursor.sort([("updated_at", DESCENDING), ("_id", DESCENDING)]).limit(limit))

    def get(self, item_type: str, item_id: str) -> Optional[dict]:
        return self.collection(item_type).find_one(self._scoped(_id=oid(item_id)))

    def get_many(self, item_type: str, ids: Iterable[str]) -> List[dict]:
        return list(self.collection(item_type).find(self._by_ids(ids)))

    def find_sibling_folder(self, parent_id: Optional[str], name: str, exclude_id: Optional[str] = None) -> Optional[dict]:
        filt = self._scoped(parent_id=parent_id or None, name=name, is_trashed=False)
        if exclude_id:
            filt["_id"] = {"$ne": oid(exclude_id)}
        return self.collection("folder").find_one(filt, {"_id": 1})

    def has_children(self, folder_id: str) -> bool:
        if self.collection("file").find_one(self._scoped(folder_id=folder_id), {"_id": 1}):
            return True
        return self.collection("folder").find_one(self._scoped(parent_id=folder_id), {"_id": 1}) is not None

    # Writes

    def insert(self, item_type: str, fields: dict) -> dict:
        now = utcnow()
        doc = {
            **fields,
            "owner_id": self.owner_id,
            "created_at": now,
            "updated_at": now,
            "is_starred": False,
            "is_trashed": False,
        }
        res = self.collection(item_type).insert_one(doc)
        return {**doc, "_id": res.inserted_id}

    def update(self, item_type: str, item_id: str, fields: dict) -> Optional[dict]:
        return self.collection(item_type).find_one_and_update(
            self._scoped(_id=oid(item_id)),
            {"$set": {**fields, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )

    def update_many(self, item_type: str, ids: Iterable[str], fields: dict) -> int:
        res = self.collection(item_type).update_many(self._by_ids(ids), {"$set": {**fields, "updated_at": utcnow()}})
        return res.matched_count

    def toggle_star(self, item_type: str, item_id: str) -> Optional[dict]:
        """Flip `is_starred` with conditional updates only, never reading the flag first."""
        col = self.collection(item_type)
        _id = oid(item_id)
        doc = col.find_one_and_update(
            self._scoped(_id=_id, is_starred={"$ne": True}),
            {"$set": {"is_starred": True}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            doc = col.find_one_and_update(
                self._scoped(_id=_id, is_starred=True),
                {"$set": {"is_starred": False}},
                return_document=ReturnDocument.AFTER,
            )
        return doc

    def delete_many(self, item_type: str, ids: Iterable[str]) -> int:
        return self.collection(item_type).delete_many(self._by_ids(ids)).deleted_count
