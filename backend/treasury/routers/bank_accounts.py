from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy import select

from treasury.auth import Caller, get_current_user, require_admin
from treasury.db import get_session
from treasury.models import BankAccount
from treasury.schemas import BankAccountCreate, BankAccountOut


router = APIRouter()


@router.get("", response_model=List[BankAccountOut])
async def list_bank_accounts(caller: Caller = Depends(get_current_user)) -> List[BankAccountOut]:
    with get_session() as session:
        accounts = session.execute(
            select(BankAccount).where(BankAccount.deleted_at.is_(None)).order_by(BankAccount.name)
        ).scalars()
        return [BankAccountOut.model_validate(a) for a in accounts]


@router.post("", response_model=BankAccountOut, status_code=status.HTTP_201_CREATED)
async def create_bank_account(payload: BankAccountCreate, caller: Caller = Depends(require_admin)) -> BankAccountOut:
    with get_session() as session:
        account = BankAccount(
            name=payload.name,
            account_number=payload.account_number,
            bank_name=payload.bank_name,
            currency=payload.currency.upper(),
        )
        session.add(account)
        session.flush()
        return BankAccountOut.model_validate(account)
