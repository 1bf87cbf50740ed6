"""Invoice scan endpoint.

POST /scan  extract fields from pasted text or an uploaded file, then store the result
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kostnadskoll.core.auth import CurrentUser, get_current_user
from kostnadskoll.core.dependencies import get_db
from kostnadskoll.schemas.invoice import ScanRequest, ScanResult, SourceType
from kostnadskoll.services.errors import MissingInputError, ValidationError
from kostnadskoll.services.history_service import save_entry
from kostnadskoll.services.scan_service import normalize_file_payload, scan

router = APIRouter()
logger = logging.getLogger(__name__)

HISTORY_SAVE_FAILED_WARNING = "Analysen blev klar men kunde inte sparas i historiken just nu."


def _join_warnings(*warnings: str) -> str:
    return " ".join(w for w in warnings if w)


@router.post("/scan", response_model=ScanResult)
async def scan_invoice(
    body: ScanRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    file = normalize_file_payload(body.file)
    try:
        result = await scan(body.text, file)
    except MissingInputError as e:
        raise HTTPException(400, str(e)) from e

    try:
        row = save_entry(
            db,
            current_user.id,
            result.extracted,
            analysis_mode=result.analysis_mode,
            source_type=SourceType.FILE if file else SourceType.TEXT,
            file=file,
            source_text=body.text,
        )
    except (SQLAlchemyError, ValidationError):
        logger.exception("Could not save scan to history")
        db.rollback()
        result.warning = _join_warnings(result.warning, HISTORY_SAVE_FAILED_WARNING)
    else:
        result.history_id = str(row.id)

    return result
