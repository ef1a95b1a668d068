import logging
import threading
from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import List, Optional

from config import Config
from database import db, to_object_id
from errors import BloodBankError
from schemas import (
    ActorCreate, ActorUpdate, BloodDriveCreate, BloodGroup, BloodRequestCreate,
    CollectionRecord, DonationCreate, DriveStatus, RejectPayload, RequestStatus,
    Role, StockChange,
)
from services import BloodBank

logging.basicConfig(
    level=Config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Blood Bank Coordination API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------- Utility -----------------

_bank: Optional[BloodBank] = None
_bank_lock = threading.Lock()


def get_bank() -> BloodBank:
    global _bank
    if db is None:
        raise HTTPException(status_code=503, detail="Database not configured")
    with _bank_lock:
        if _bank is None:
            _bank = BloodBank(db)
            logger.info(f"Connected services to database '{Config.DATABASE_NAME}'")
    return _bank


def get_optional_bank() -> Optional[BloodBank]:
    return get_bank() if db is not None else None


def oid(id_str: str) -> str:
    if to_object_id(id_str) is None:
        raise HTTPException(status_code=400, detail="Invalid object id")
    return id_str


@app.exception_handler(BloodBankError)
async def blood_bank_error_handler(request: Request, exc: BloodBankError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.kind},
    )

# ---------------- Directory Endpoints -----------------

@app.post("/actors", response_model=dict, status_code=201)
def register_actor(payload: ActorCreate, bank: BloodBank = Depends(get_bank)):
    return bank.directory.register(payload)

@app.get("/actors", response_model=List[dict])
def list_actors(role: Optional[Role] = None, bank: BloodBank = Depends(get_bank)):
    return bank.directory.list(role)

@app.get("/actors/{actor_id}", response_model=dict)
def get_actor(actor_id: str, bank: BloodBank = Depends(get_bank)):
    return bank.directory.get(oid(actor_id))

@app.patch("/actors/{actor_id}", response_model=dict)
def update_actor(actor_id: str, payload: ActorUpdate, bank: BloodBank = Depends(get_bank)):
    return bank.directory.update_profile(oid(actor_id), payload)

# ---------------- Inventory Endpoints -----------------

@app.post("/inventory/{facility_id}/credit", response_model=dict)
def credit_inventory(facility_id: str, payload: StockChange, bank: BloodBank = Depends(get_bank)):
    return bank.ledger.credit(oid(facility_id), payload.blood_group, payload.units)

@app.post("/inventory/{facility_id}/debit", response_model=dict)
def debit_inventory(facility_id: str, payload: StockChange, bank: BloodBank = Depends(get_bank)):
    return bank.ledger.debit(oid(facility_id), payload.blood_group, payload.units)

@app.get("/inventory/{facility_id}", response_model=List[dict])
def list_inventory(facility_id: str, bank: BloodBank = Depends(get_bank)):
    return bank.ledger.list(oid(facility_id))

@app.get("/inventory/{facility_id}/summary", response_model=dict)
def inventory_summary(facility_id: str, bank: BloodBank = Depends(get_bank)):
    summary = bank.ledger.summary(oid(facility_id))
    summary["pending_requests"] = bank.matcher.pending_count(facility_id)
    return summary

@app.get("/inventory/{facility_id}/{blood_group}", response_model=dict)
def query_inventory(facility_id: str, blood_group: BloodGroup, bank: BloodBank = Depends(get_bank)):
    return bank.ledger.query(oid(facility_id), blood_group)

# ---------------- Request & Approval -----------------

@app.post("/requests", response_model=dict, status_code=201)
def submit_request(payload: BloodRequestCreate, bank: BloodBank = Depends(get_bank)):
    return bank.matcher.submit(payload)

@app.get("/requests", response_model=List[dict])
def list_requests(status: Optional[RequestStatus] = None, requester_id: Optional[str] = None,
                  facility_id: Optional[str] = None, bank: BloodBank = Depends(get_bank)):
    return bank.matcher.list(status, requester_id, facility_id)

@app.get("/requests/{request_id}", response_model=dict)
def get_request(request_id: str, bank: BloodBank = Depends(get_bank)):
    return bank.matcher.get(oid(request_id))

@app.post("/requests/{request_id}/approve", response_model=dict)
def approve_request(request_id: str, bank: BloodBank = Depends(get_bank)):
    return bank.matcher.approve(oid(request_id))

@app.post("/requests/{request_id}/reject", response_model=dict)
def reject_request(request_id: str, payload: Optional[RejectPayload] = None,
                   bank: BloodBank = Depends(get_bank)):
    reason = payload.reason if payload else None
    return bank.matcher.reject(oid(request_id), reason)

@app.post("/requests/{request_id}/fulfill", response_model=dict)
def fulfill_request(request_id: str, bank: BloodBank = Depends(get_bank)):
    return bank.matcher.fulfill(oid(request_id))

@app.post("/requests/{request_id}/cancel", response_model=dict)
def cancel_request(request_id: str, bank: BloodBank = Depends(get_bank)):
    return bank.matcher.cancel(oid(request_id))

# ---------------- Donations -----------------

@app.post("/donations", response_model=dict, status_code=201)
def schedule_donation(payload: DonationCreate, bank: BloodBank = Depends(get_bank)):
    return bank.donations.schedule(payload)

@app.get("/donations", response_model=List[dict])
def list_donations(donor_id: Optional[str] = None, facility_id: Optional[str] = None,
                   bank: BloodBank = Depends(get_bank)):
    return bank.donations.list(donor_id, facility_id)

@app.post("/donations/{donation_id}/complete", response_model=dict)
def complete_donation(donation_id: str, bank: BloodBank = Depends(get_bank)):
    return bank.donations.complete(oid(donation_id))

@app.post("/donations/{donation_id}/cancel", response_model=dict)
def cancel_donation(donation_id: str, bank: BloodBank = Depends(get_bank)):
    return bank.donations.cancel(oid(donation_id))

# ---------------- Blood Drives -----------------

@app.post("/drives", response_model=dict, status_code=201)
def create_drive(payload: BloodDriveCreate, bank: BloodBank = Depends(get_bank)):
    return bank.drives.create(payload)

@app.get("/drives", response_model=List[dict])
def list_drives(organization_id: Optional[str] = None, status: Optional[DriveStatus] = None,
                bank: BloodBank = Depends(get_bank)):
    return bank.drives.list(organization_id, status)

@app.post("/drives/{drive_id}/start", response_model=dict)
def start_drive(drive_id: str, bank: BloodBank = Depends(get_bank)):
    return bank.drives.start(oid(drive_id))

@app.post("/drives/{drive_id}/complete", response_model=dict)
def complete_drive(drive_id: str, bank: BloodBank = Depends(get_bank)):
    return bank.drives.complete(oid(drive_id))

@app.post("/drives/{drive_id}/cancel", response_model=dict)
def cancel_drive(drive_id: str, bank: BloodBank = Depends(get_bank)):
    return bank.drives.cancel(oid(drive_id))

@app.post("/drives/{drive_id}/collections", response_model=dict)
def record_collection(drive_id: str, payload: CollectionRecord, bank: BloodBank = Depends(get_bank)):
    return bank.drives.record_collection(oid(drive_id), payload)

# ---------------- Health -----------------

@app.get("/")
def read_root():
    return {"message": "Blood Bank Coordination API running"}

@app.get("/test")
def test_database(bank: Optional[BloodBank] = Depends(get_optional_bank)):
    response = {
        "backend": "running",
        "database": "not configured",
        "database_name": None,
        "collections": {},
    }
    if bank is None:
        return response
    try:
        response["database"] = "connected"
        response["database_name"] = getattr(bank.store.db, "name", None)
        response["collections"] = bank.status()
    except Exception as e:
        logger.error(f"Database check failed: {e}")
        response["database"] = f"error: {str(e)[:50]}"
    return response

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=Config.PORT)
