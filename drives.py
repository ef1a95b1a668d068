import logging
from typing import List, Optional

from database import Store
from directory import Directory
from errors import InvalidRequest, InvalidTransition, RecordNotFound
from schemas import BloodDriveCreate, CollectionRecord

logger = logging.getLogger(__name__)

DRIVES = "drives"

TRANSITIONS = {
    "upcoming": ("active", "cancelled"),
    "active": ("completed", "cancelled"),
}


class BloodDriveService:
    def __init__(self, store: Store, directory: Directory):
        self.store = store
        self.directory = directory

    def create(self, payload: BloodDriveCreate) -> dict:
        self.directory.require(payload.organization_id, ("organization",))
        data = payload.model_dump(mode="json")
        data.update(status="upcoming", donors=0, units_collected=0)
        drive = self.store.create_document(DRIVES, data)
        logger.info(f"Blood drive {drive['id']} '{drive['name']}' planned for {drive['held_on']}")
        return drive

    def get(self, drive_id: str) -> dict:
        drive = self.store.get_document(DRIVES, drive_id)
        if drive is None:
            raise RecordNotFound(f"Blood drive {drive_id} not found")
        return drive

    def _transition(self, drive_id: str, target: str) -> dict:
        drive = self.get(drive_id)
        current = drive["status"]
        if target not in TRANSITIONS.get(current, ()):
            raise InvalidTransition(f"drive {drive_id}", current, target)
        updated = self.store.update_document(DRIVES, drive_id, {"status": target}, expected={"status": current})
        if updated is None:
            raise InvalidTransition(f"drive {drive_id}", self.get(drive_id)["status"], target)
        logger.info(f"Blood drive {drive_id}: {current} -> {target}")
        return updated

    def start(self, drive_id: str) -> dict:
        return self._transition(drive_id, "active")

    def complete(self, drive_id: str) -> dict:
        return self._transition(drive_id, "completed")

    def cancel(self, drive_id: str) -> dict:
        return self._transition(drive_id, "cancelled")

    def record_collection(self, drive_id: str, payload: CollectionRecord) -> dict:
        updated = self.store.update_document(
            DRIVES, drive_id, {}, expected={"status": "active"},
            inc={"donors": payload.donors, "units_collected": payload.units},
        )
        if updated is None:
            drive = self.get(drive_id)
            raise InvalidRequest(f"Blood drive {drive_id} is {drive['status']}; collections are recorded while active")
        return updated

    def list(self, organization_id: Optional[str] = None, status: Optional[str] = None) -> List[dict]:
        query = {}
        if organization_id:
            query["organization_id"] = organization_id
        if status:
            query["status"] = status
        drives = self.store.get_documents(DRIVES, query)
        drives.sort(key=lambda d: (d["held_on"], d["id"]))
        return drives
