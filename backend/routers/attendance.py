from fastapi import APIRouter, Depends

from backend.dependencies import get_ledger
from backend.routers.otp import record_to_dict
from backend.security import require_claimant
from backend.services.ledger import AttendanceLedger

router = APIRouter()


@router.get("/attendance")
def my_attendance(
    session: dict = Depends(require_claimant),
    ledger: AttendanceLedger = Depends(get_ledger),
):
    records = ledger.records_for_claimant(session["sub"])
    return {"attendance": [record_to_dict(r) for r in records]}
