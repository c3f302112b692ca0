"""Balance endpoints: patient balance, history and deposits."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from clinic_booking.api.deps import DbSession, require_permissions
from clinic_booking.core.config import settings
from clinic_booking.schemas.ledger import BalanceRead, DepositCreate, LedgerTransactionRead
from clinic_booking.services.ledger import BalanceLedger
from clinic_booking.services.rbac import Permission, Principal, Role

router = APIRouter()

LedgerReader = Annotated[Principal, Depends(require_permissions(Permission.LEDGER_READ))]
Depositor = Annotated[Principal, Depends(require_permissions(Permission.LEDGER_DEPOSIT))]


def _require_patient(principal: Principal) -> None:
    if principal.role != Role.PATIENT:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Patient authentication required",
        )


@router.get("/me", response_model=BalanceRead, summary="Caller's balance")
async def get_my_balance(session: DbSession, principal: LedgerReader) -> BalanceRead:
    _require_patient(principal)
    ledger = BalanceLedger(session)
    balance = await ledger.get_balance(principal.id)
    return BalanceRead(patient_id=principal.id, balance=balance, currency=settings.currency)


@router.get(
    "/me/transactions",
    response_model=list[LedgerTransactionRead],
    summary="Caller's transaction history",
)
async def get_my_transactions(
    session: DbSession,
    principal: LedgerReader,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
):
    _require_patient(principal)
    ledger = BalanceLedger(session)
    return await ledger.list_transactions(principal.id, limit=limit, offset=offset)


@router.get("/{patient_id}", response_model=BalanceRead, summary="A patient's balance")
async def get_patient_balance(
    patient_id: int,
    session: DbSession,
    principal: LedgerReader,
) -> BalanceRead:
    if principal.role == Role.PATIENT and principal.id != patient_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Patients may only view their own balance",
        )
    ledger = BalanceLedger(session)
    balance = await ledger.get_balance(patient_id)
    return BalanceRead(patient_id=patient_id, balance=balance, currency=settings.currency)


@router.post(
    "/{patient_id}/deposits",
    response_model=BalanceRead,
    status_code=status.HTTP_201_CREATED,
    summary="Top up a patient's balance",
)
async def deposit(
    patient_id: int,
    request: DepositCreate,
    session: DbSession,
    principal: Depositor,
) -> BalanceRead:
    ledger = BalanceLedger(session)
    balance = await ledger.deposit(
        patient_id,
        request.amount,
        description=request.description,
        actor=principal,
    )
    return BalanceRead(patient_id=patient_id, balance=balance, currency=settings.currency)
