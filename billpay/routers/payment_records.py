from fastapi import APIRouter, Depends
from sqlmodel.ext.asyncio.session import AsyncSession

from ..db import get_session
from ..errors import ValidationError
from ..models import PaymentRecordStatus
from ..schemas import VerifyPaymentIn, VerifyPaymentOut
from ..services.reconcile import VERIFY_ACTIONS, verify_payment_record
from ..utils import require_service_api_key

router = APIRouter(prefix="/api/payment-records", tags=["payment-records"])


@router.post("/verify", response_model=VerifyPaymentOut, dependencies=[Depends(require_service_api_key)])
async def verify(payload: VerifyPaymentIn, session: AsyncSession = Depends(get_session)):
    """Verify or reject a pending payment record. Protected by SERVICE API KEY header."""
    if not payload.payment_record_id or not payload.action:
        raise ValidationError("Missing required fields")
    if payload.action not in VERIFY_ACTIONS:
        raise ValidationError("Invalid action")

    record = await verify_payment_record(session, payload.payment_record_id, payload.action)
    return VerifyPaymentOut(status=PaymentRecordStatus(record.status).value)
