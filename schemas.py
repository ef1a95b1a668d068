"""
Database Schemas

Pydantic models for every record the API accepts. Each create model maps to
one MongoDB collection:
- ActorCreate -> "actors" collection
- BloodRequestCreate -> "requests" collection
- DonationCreate -> "donations" collection
- BloodDriveCreate -> "drives" collection
Inventory records live in "inventory" and are only written by the ledger.
"""

from pydantic import BaseModel, ConfigDict, Field, EmailStr, model_validator
from typing import Optional, Literal, get_args
from datetime import date

# ---------------- Shared vocabularies -----------------

BloodGroup = Literal[
    "A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-"
]
BLOOD_GROUPS = get_args(BloodGroup)

Role = Literal["donor", "receiver", "hospital", "organization"]

Urgency = Literal["normal", "urgent", "emergency"]

RequestStatus = Literal["pending", "approved", "fulfilled", "rejected", "cancelled"]

DriveStatus = Literal["upcoming", "active", "completed", "cancelled"]

# ---------------- Directory -----------------

class ActorCreate(BaseModel):
    role: Role
    name: str = Field(..., min_length=1, description="Full name or facility name")
    email: EmailStr
    phone: str
    city: Optional[str] = None
    blood_group: Optional[BloodGroup] = Field(None, description="Required for donors")

    @model_validator(mode="after")
    def check_blood_group(self):
        if self.role == "donor" and self.blood_group is None:
            raise ValueError("blood_group is required for donors")
        if self.role in ("hospital", "organization") and self.blood_group is not None:
            raise ValueError(f"a {self.role} has no blood_group")
        return self


class ActorUpdate(BaseModel):
    """Profile changes. The role is fixed at registration."""
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    city: Optional[str] = None
    blood_group: Optional[BloodGroup] = None

# ---------------- Inventory -----------------

class StockChange(BaseModel):
    blood_group: BloodGroup
    units: int = Field(..., ge=1, description="Units (1 unit ~ 450ml)")

# ---------------- Requests -----------------

class BloodRequestCreate(BaseModel):
    requester_id: str = Field(..., description="Receiver or hospital ObjectId as string")
    facility_id: str = Field(..., description="Facility expected to supply the units")
    blood_group: BloodGroup
    units: int = Field(..., ge=1)
    patient_name: Optional[str] = None
    urgency: Urgency = "normal"
    notes: Optional[str] = None


class RejectPayload(BaseModel):
    reason: Optional[str] = None

# ---------------- Donations -----------------

class DonationCreate(BaseModel):
    donor_id: str
    facility_id: str
    scheduled_for: date
    units: int = Field(1, ge=1)

# ---------------- Blood drives -----------------

class BloodDriveCreate(BaseModel):
    organization_id: str
    name: str = Field(..., min_length=1)
    held_on: date
    location: str


class CollectionRecord(BaseModel):
    donors: int = Field(0, ge=0)
    units: int = Field(..., ge=1)
