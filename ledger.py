"""
Inventory ledger

Per-facility, per-blood-group unit counts. The ledger is the only writer of
the "inventory" collection. Every mutation of a (facility, blood group)
record runs under that key's lock, and debits are conditional on the stored
count, so a count can never go below zero even with several API processes
writing to the same database.
"""

import logging
import threading
import weakref
from typing import List

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from config import Config
from database import Store, serialize, utcnow
from directory import Directory, FACILITY_ROLES
from errors import InsufficientStock, InvalidRequest
from schemas import BLOOD_GROUPS

logger = logging.getLogger(__name__)

INVENTORY = "inventory"


class _KeyLock:
    __slots__ = ("_lock", "__weakref__")

    def __init__(self):
        self._lock = threading.Lock()

    def __enter__(self):
        self._lock.acquire()
        return self

    def __exit__(self, *exc):
        self._lock.release()


class KeyedLocks:
    """One lock per key. A key's lock is dropped once nobody holds it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = weakref.WeakValueDictionary()

    def get(self, key) -> _KeyLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = _KeyLock()
                self._locks[key] = lock
            return lock


def stock_level(units: int, config=Config) -> str:
    if units > config.STOCK_SUFFICIENT_ABOVE:
        return "sufficient"
    if units > config.STOCK_LIMITED_ABOVE:
        return "limited"
    return "low"


class InventoryLedger:
    def __init__(self, store: Store, directory: Directory, config=Config):
        self.store = store
        self.directory = directory
        self.config = config
        self._locks = KeyedLocks()

    @property
    def collection(self):
        return self.store.db[INVENTORY]

    def _validate(self, facility_id: str, blood_group: str, units: int = None):
        if blood_group not in BLOOD_GROUPS:
            raise InvalidRequest(f"Unknown blood group '{blood_group}'")
        if units is not None and (isinstance(units, bool) or not isinstance(units, int) or units <= 0):
            raise InvalidRequest(f"Units must be a positive whole number, got {units!r}")
        self.directory.require(facility_id, FACILITY_ROLES)

    @staticmethod
    def _empty(facility_id: str, blood_group: str) -> dict:
        return {
            "id": None,
            "facility_id": facility_id,
            "blood_group": blood_group,
            "units": 0,
            "updated_at": None,
        }

    def _find(self, facility_id: str, blood_group: str) -> dict:
        record = self.collection.find_one({"facility_id": facility_id, "blood_group": blood_group})
        if record is None:
            return self._empty(facility_id, blood_group)
        return serialize(record)

    def _increment(self, facility_id: str, blood_group: str, units: int) -> dict:
        return self.collection.find_one_and_update(
            {"facility_id": facility_id, "blood_group": blood_group},
            {
                "$inc": {"units": units},
                "$set": {"updated_at": utcnow()},
                "$setOnInsert": {"created_at": utcnow()},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    def credit(self, facility_id: str, blood_group: str, units: int) -> dict:
        self._validate(facility_id, blood_group, units)
        with self._locks.get((facility_id, blood_group)):
            try:
                record = self._increment(facility_id, blood_group, units)
            except DuplicateKeyError:
                # Another process inserted the record first; it exists now
                record = self._increment(facility_id, blood_group, units)
        logger.info(f"Credited {units} {blood_group} at {facility_id}, now {record['units']}")
        return serialize(record)

    def debit(self, facility_id: str, blood_group: str, units: int) -> dict:
        self._validate(facility_id, blood_group, units)
        with self._locks.get((facility_id, blood_group)):
            record = self.collection.find_one_and_update(
                {"facility_id": facility_id, "blood_group": blood_group, "units": {"$gte": units}},
                {"$inc": {"units": -units}, "$set": {"updated_at": utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
            if record is None:
                available = self._find(facility_id, blood_group)["units"]
                logger.warning(
                    f"Refused debit of {units} {blood_group} at {facility_id}: only {available} available"
                )
                raise InsufficientStock(facility_id, blood_group, units, available)
        logger.info(f"Debited {units} {blood_group} at {facility_id}, now {record['units']}")
        return serialize(record)

    def query(self, facility_id: str, blood_group: str) -> dict:
        self._validate(facility_id, blood_group)
        return self._find(facility_id, blood_group)

    def list(self, facility_id: str) -> List[dict]:
        self.directory.require(facility_id, FACILITY_ROLES)
        stored = {
            doc["blood_group"]: serialize(doc)
            for doc in self.collection.find({"facility_id": facility_id})
        }
        # Blood groups never credited are reported with zero units
        return [stored.get(group) or self._empty(facility_id, group) for group in BLOOD_GROUPS]

    def summary(self, facility_id: str) -> dict:
        records = self.list(facility_id)
        return {
            "facility_id": facility_id,
            "total_units": sum(r["units"] for r in records),
            "blood_groups": [
                {
                    "blood_group": r["blood_group"],
                    "units": r["units"],
                    "level": stock_level(r["units"], self.config),
                    "updated_at": r["updated_at"],
                }
                for r in records
            ],
        }
