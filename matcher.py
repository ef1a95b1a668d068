"""
Request matcher

Moves blood requests through their lifecycle:

    pending -> approved | rejected
    approved -> fulfilled | rejected | cancelled

Fulfilling a request debits the facility's inventory. If the debit is
refused the request stays approved and InsufficientStock reaches the caller,
who can retry once stock arrives or reject the request.
"""

import logging
from typing import List, Optional

from database import Store, utcnow
from directory import Directory, FACILITY_ROLES, REQUESTER_ROLES
from errors import InvalidRequest, InvalidTransition, RecordNotFound
from ledger import InventoryLedger, KeyedLocks
from schemas import BLOOD_GROUPS, BloodRequestCreate

logger = logging.getLogger(__name__)

REQUESTS = "requests"

TRANSITIONS = {
    "pending": ("approved", "rejected"),
    "approved": ("fulfilled", "rejected", "cancelled"),
}

URGENCY_RANK = {"emergency": 0, "urgent": 1, "normal": 2}


class RequestMatcher:
    def __init__(self, store: Store, directory: Directory, ledger: InventoryLedger):
        self.store = store
        self.directory = directory
        self.ledger = ledger
        self._locks = KeyedLocks()

    def submit(self, payload: BloodRequestCreate) -> dict:
        if payload.units <= 0:
            raise InvalidRequest("Units requested must be greater than zero")
        if payload.blood_group not in BLOOD_GROUPS:
            raise InvalidRequest(f"Unknown blood group '{payload.blood_group}'")
        self.directory.require(payload.requester_id, REQUESTER_ROLES)
        self.directory.require(payload.facility_id, FACILITY_ROLES)

        data = payload.model_dump(mode="json")
        data["status"] = "pending"
        data["rejection_reason"] = None
        request = self.store.create_document(REQUESTS, data)
        logger.info(
            f"Request {request['id']} submitted: {request['units']} {request['blood_group']} "
            f"({request['urgency']}) at {request['facility_id']}"
        )
        return request

    def get(self, request_id: str) -> dict:
        request = self.store.get_document(REQUESTS, request_id)
        if request is None:
            raise RecordNotFound(f"Blood request {request_id} not found")
        return request

    def _check_transition(self, request: dict, target: str):
        current = request["status"]
        if target not in TRANSITIONS.get(current, ()):
            logger.warning(f"Refused transition of request {request['id']}: {current} -> {target}")
            raise InvalidTransition(f"request {request['id']}", current, target)

    def _save_transition(self, request: dict, target: str, changes: dict) -> dict:
        updated = self.store.update_document(
            REQUESTS, request["id"], dict(changes, status=target),
            expected={"status": request["status"]},
        )
        if updated is None:
            # Another writer moved the request since we read it
            latest = self.get(request["id"])
            raise InvalidTransition(f"request {request['id']}", latest["status"], target)
        logger.info(f"Request {request['id']}: {request['status']} -> {target}")
        return updated

    def _transition(self, request_id: str, target: str, **changes) -> dict:
        with self._locks.get(request_id):
            request = self.get(request_id)
            self._check_transition(request, target)
            return self._save_transition(request, target, changes)

    def approve(self, request_id: str) -> dict:
        return self._transition(request_id, "approved", approved_at=utcnow())

    def reject(self, request_id: str, reason: Optional[str] = None) -> dict:
        return self._transition(request_id, "rejected", rejection_reason=reason)

    def cancel(self, request_id: str) -> dict:
        return self._transition(request_id, "cancelled")

    def fulfill(self, request_id: str) -> dict:
        with self._locks.get(request_id):
            request = self.get(request_id)
            self._check_transition(request, "fulfilled")
            facility_id, blood_group, units = request["facility_id"], request["blood_group"], request["units"]
            self.ledger.debit(facility_id, blood_group, units)
            try:
                return self._save_transition(request, "fulfilled", {"fulfilled_at": utcnow()})
            except InvalidTransition:
                self.ledger.credit(facility_id, blood_group, units)
                raise

    def list(self, status: Optional[str] = None, requester_id: Optional[str] = None,
             facility_id: Optional[str] = None) -> List[dict]:
        query = {}
        if status:
            query["status"] = status
        if requester_id:
            query["requester_id"] = requester_id
        if facility_id:
            query["facility_id"] = facility_id
        requests = self.store.get_documents(REQUESTS, query)
        requests.sort(key=lambda r: (URGENCY_RANK.get(r["urgency"], len(URGENCY_RANK)), r["created_at"], r["id"]))
        return requests

    def pending_count(self, facility_id: str) -> int:
        return self.store.db[REQUESTS].count_documents({"facility_id": facility_id, "status": "pending"})
