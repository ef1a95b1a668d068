import logging
from datetime import date
from typing import Iterable, List, Optional

from database import Store, to_object_id, utcnow
from errors import InvalidRequest, UnknownActor
from schemas import ActorCreate, ActorUpdate

logger = logging.getLogger(__name__)

ACTORS = "actors"

FACILITY_ROLES = ("hospital", "organization")
REQUESTER_ROLES = ("receiver", "hospital")


class Directory:
    """Identity and role records for everyone who acts on the system."""

    def __init__(self, store: Store):
        self.store = store

    def register(self, payload: ActorCreate) -> dict:
        data = payload.model_dump(mode="json")
        if payload.role == "donor":
            data["donation_count"] = 0
            data["last_donation_date"] = None
        actor = self.store.create_document(ACTORS, data)
        logger.info(f"Registered {actor['role']} {actor['id']} ({actor['name']})")
        return actor

    def get(self, actor_id: str) -> dict:
        actor = self.store.get_document(ACTORS, actor_id)
        if actor is None:
            raise UnknownActor(f"Actor {actor_id} not found")
        return actor

    def require(self, actor_id: str, roles: Iterable[str]) -> dict:
        roles = tuple(roles)
        actor = self.get(actor_id)
        if actor["role"] not in roles:
            raise UnknownActor(f"Actor {actor_id} is not a {' or '.join(roles)}")
        return actor

    def update_profile(self, actor_id: str, changes: ActorUpdate) -> dict:
        actor = self.get(actor_id)
        data = changes.model_dump(mode="json", exclude_none=True)
        if "blood_group" in data and actor["role"] in FACILITY_ROLES:
            raise InvalidRequest(f"A {actor['role']} has no blood group")
        if not data:
            return actor
        return self.store.update_document(ACTORS, actor_id, data)

    def list(self, role: Optional[str] = None) -> List[dict]:
        query = {"role": role} if role else {}
        return self.store.get_documents(ACTORS, query)

    def record_donation(self, donor_id: str, donated_on: date):
        _id = to_object_id(donor_id)
        day = donated_on.isoformat()
        self.store.db[ACTORS].update_one(
            {"_id": _id}, {"$inc": {"donation_count": 1}, "$set": {"updated_at": utcnow()}}
        )
        # Only ever moves forward; ISO dates compare as strings
        self.store.db[ACTORS].update_one(
            {"_id": _id, "$or": [{"last_donation_date": None}, {"last_donation_date": {"$lt": day}}]},
            {"$set": {"last_donation_date": day}},
        )
