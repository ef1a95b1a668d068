"""
Database helpers

Thin layer over a pymongo Database. Documents are addressed by ObjectId and
handed back to callers with the id as a plain string under "id".
"""

from datetime import datetime, timezone
from typing import Optional, List, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient, ReturnDocument, ASCENDING

from config import Config

client = MongoClient(Config.DATABASE_URL) if Config.DATABASE_URL else None
db = client[Config.DATABASE_NAME] if client is not None else None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(id_str) -> Optional[ObjectId]:
    if isinstance(id_str, ObjectId):
        return id_str
    if isinstance(id_str, str) and ObjectId.is_valid(id_str):
        return ObjectId(id_str)
    return None


def serialize(doc: Optional[dict]) -> Optional[dict]:
    if doc is None:
        return None
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


class Store:
    def __init__(self, database):
        self.db = database

    def ensure_indexes(self):
        self.db["inventory"].create_index(
            [("facility_id", ASCENDING), ("blood_group", ASCENDING)], unique=True
        )
        self.db["requests"].create_index([("facility_id", ASCENDING), ("status", ASCENDING)])
        self.db["requests"].create_index([("requester_id", ASCENDING)])
        self.db["donations"].create_index([("donor_id", ASCENDING)])
        self.db["actors"].create_index([("role", ASCENDING)])

    def create_document(self, collection_name: str, data: Union[BaseModel, dict]) -> dict:
        if isinstance(data, BaseModel):
            data = data.model_dump(mode="json")
        else:
            data = dict(data)
        now = utcnow()
        data["created_at"] = now
        data["updated_at"] = now
        result = self.db[collection_name].insert_one(data)
        data["_id"] = result.inserted_id
        return serialize(data)

    def get_document(self, collection_name: str, id_str) -> Optional[dict]:
        _id = to_object_id(id_str)
        if _id is None:
            return None
        return serialize(self.db[collection_name].find_one({"_id": _id}))

    def get_documents(self, collection_name: str, filter_dict: Optional[dict] = None,
                      limit: Optional[int] = None) -> List[dict]:
        cursor = self.db[collection_name].find(filter_dict or {})
        if limit:
            cursor = cursor.limit(limit)
        return [serialize(doc) for doc in cursor]

    def update_document(self, collection_name: str, id_str, changes: dict,
                        expected: Optional[dict] = None, inc: Optional[dict] = None) -> Optional[dict]:
        """Apply changes only if the document still matches `expected`.

        Returns the updated document, or None when nothing matched.
        """
        _id = to_object_id(id_str)
        if _id is None:
            return None
        query = {"_id": _id}
        query.update(expected or {})
        update = {"$set": dict(changes, updated_at=utcnow())}
        if inc:
            update["$inc"] = inc
        doc = self.db[collection_name].find_one_and_update(
            query, update, return_document=ReturnDocument.AFTER
        )
        return serialize(doc)
