"""Email draft endpoints.

POST /templates/rank  drafts for edited invoice fields, most suitable first
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from kostnadskoll.core.auth import CurrentUser, get_current_user
from kostnadskoll.schemas.invoice import TemplateRankRequest, TemplateRankResponse
from kostnadskoll.services.email_templates import SuitabilityStrategy, select_templates

router = APIRouter()


@router.post("/templates/rank", response_model=TemplateRankResponse)
def rank_templates(
    body: TemplateRankRequest,
    current_user: CurrentUser = Depends(get_current_user),
):
    strategy = SuitabilityStrategy(entry=body.entry, market=body.market, usage_answer=body.usage_answer)
    return TemplateRankResponse(actions=select_templates(body.extracted, strategy))
