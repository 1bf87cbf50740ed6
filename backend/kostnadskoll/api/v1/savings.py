"""Savings analysis endpoint.

GET /savings/analysis  recurring services, opportunities and monthly totals over the caller's history
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from kostnadskoll.core.auth import CurrentUser, get_current_user
from kostnadskoll.core.dependencies import get_db
from kostnadskoll.schemas.savings import SavingsReport
from kostnadskoll.services.history_service import HISTORY_LIMIT_MAX, list_by_owner
from kostnadskoll.services.savings_analysis import analyze_savings

router = APIRouter()


@router.get("/savings/analysis", response_model=SavingsReport)
def savings_analysis(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    entries = list_by_owner(db, current_user.id, HISTORY_LIMIT_MAX)
    return analyze_savings(entries)
