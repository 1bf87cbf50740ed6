"""Account endpoints.

POST /account/purge  remove every stored scan for the caller
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from kostnadskoll.core.auth import CurrentUser, get_current_user
from kostnadskoll.core.dependencies import get_db
from kostnadskoll.schemas.invoice import DeleteResponse
from kostnadskoll.services.history_service import delete_all_by_owner

router = APIRouter()


@router.post("/account/purge", response_model=DeleteResponse)
def purge_account_data(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return DeleteResponse(deleted_count=delete_all_by_owner(db, current_user.id))
