"""
Donations

Donors book donations at a facility; completing one credits the facility's
inventory. Two donations by the same donor, booked or completed, are always
at least DONATION_INTERVAL_DAYS apart. Scheduling and completing run under a
per-donor lock so that rule holds for concurrent bookings too.
"""

import logging
from datetime import date, timedelta
from typing import List, Optional

from config import Config
from database import Store, utcnow
from directory import Directory, FACILITY_ROLES
from errors import InvalidTransition, NotEligible, RecordNotFound
from ledger import InventoryLedger, KeyedLocks
from schemas import DonationCreate

logger = logging.getLogger(__name__)

DONATIONS = "donations"


class DonationService:
    def __init__(self, store: Store, directory: Directory, ledger: InventoryLedger, config=Config):
        self.store = store
        self.directory = directory
        self.ledger = ledger
        self.interval = timedelta(days=config.DONATION_INTERVAL_DAYS)
        self._donor_locks = KeyedLocks()
        self._locks = KeyedLocks()

    def _check_interval(self, donor: dict, on: date, statuses, exclude_id: Optional[str] = None):
        """Refuse `on` if it falls within the interval of another donation."""
        dates = []
        if donor.get("last_donation_date"):
            dates.append(date.fromisoformat(donor["last_donation_date"]))
        others = self.store.get_documents(
            DONATIONS, {"donor_id": donor["id"], "status": {"$in": list(statuses)}}
        )
        dates.extend(date.fromisoformat(d["scheduled_for"]) for d in others if d["id"] != exclude_id)
        clashes = [d for d in dates if abs(on - d) < self.interval]
        if clashes:
            clash = min(clashes, key=lambda d: abs(on - d))
            logger.warning(f"Refused donation by {donor['id']} on {on}: clashes with {clash}")
            raise NotEligible(
                f"Donor {donor['id']} has a donation on {clash.isoformat()}; "
                f"donations must be {self.interval.days} days apart"
            )

    def schedule(self, payload: DonationCreate) -> dict:
        self.directory.require(payload.facility_id, FACILITY_ROLES)
        with self._donor_locks.get(payload.donor_id):
            donor = self.directory.require(payload.donor_id, ("donor",))
            self._check_interval(donor, payload.scheduled_for, ("scheduled", "completed"))

            data = payload.model_dump(mode="json")
            data["blood_group"] = donor["blood_group"]
            data["status"] = "scheduled"
            donation = self.store.create_document(DONATIONS, data)
        logger.info(f"Donation {donation['id']} scheduled for {donation['scheduled_for']} at {donation['facility_id']}")
        return donation

    def get(self, donation_id: str) -> dict:
        donation = self.store.get_document(DONATIONS, donation_id)
        if donation is None:
            raise RecordNotFound(f"Donation {donation_id} not found")
        return donation

    def _close(self, donation: dict, target: str, **changes) -> dict:
        donation_id = donation["id"]
        updated = self.store.update_document(
            DONATIONS, donation_id, dict(changes, status=target), expected={"status": "scheduled"}
        )
        if updated is None:
            raise InvalidTransition(f"donation {donation_id}", self.get(donation_id)["status"], target)
        logger.info(f"Donation {donation_id}: scheduled -> {target}")
        return updated

    def _require_scheduled(self, donation: dict, target: str):
        if donation["status"] != "scheduled":
            raise InvalidTransition(f"donation {donation['id']}", donation["status"], target)

    def complete(self, donation_id: str) -> dict:
        donor_id = self.get(donation_id)["donor_id"]
        with self._donor_locks.get(donor_id), self._locks.get(donation_id):
            donation = self.get(donation_id)
            self._require_scheduled(donation, "completed")
            donor = self.directory.require(donor_id, ("donor",))
            donated_on = date.fromisoformat(donation["scheduled_for"])
            self._check_interval(donor, donated_on, ("completed",), exclude_id=donation_id)

            # Units are credited with the donor's current group
            facility_id, blood_group, units = donation["facility_id"], donor["blood_group"], donation["units"]
            self.ledger.credit(facility_id, blood_group, units)
            try:
                completed = self._close(donation, "completed", blood_group=blood_group, completed_at=utcnow())
            except InvalidTransition:
                self.ledger.debit(facility_id, blood_group, units)
                raise
            self.directory.record_donation(donor_id, donated_on)
        return completed

    def cancel(self, donation_id: str) -> dict:
        with self._locks.get(donation_id):
            donation = self.get(donation_id)
            self._require_scheduled(donation, "cancelled")
            return self._close(donation, "cancelled")

    def list(self, donor_id: Optional[str] = None, facility_id: Optional[str] = None) -> List[dict]:
        query = {}
        if donor_id:
            query["donor_id"] = donor_id
        if facility_id:
            query["facility_id"] = facility_id
        donations = self.store.get_documents(DONATIONS, query)
        donations.sort(key=lambda d: (d["scheduled_for"], d["id"]))
        return donations
