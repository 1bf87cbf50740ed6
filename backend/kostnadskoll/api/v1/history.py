"""Scan history endpoints.

GET    /history              list the caller's entries, newest first
PUT    /history/{entry_id}   replace the extracted fields of one entry
DELETE /history/{entry_id}   delete one entry
POST   /history/delete       bulk delete by ids, or everything with {"all": true}
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from kostnadskoll.core.auth import CurrentUser, get_current_user
from kostnadskoll.core.dependencies import get_db
from kostnadskoll.schemas.invoice import (
    DeleteResponse,
    HistoryDeleteRequest,
    HistoryEntryOut,
    HistoryListResponse,
    HistoryUpdateRequest,
)
from kostnadskoll.services import history_service
from kostnadskoll.services.errors import NotFoundError, ValidationError

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/history", response_model=HistoryListResponse)
def list_history(
    limit: Optional[int] = Query(None),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items = history_service.list_by_owner(db, current_user.id, limit)
    return HistoryListResponse(items=items)


@router.put("/history/{entry_id}", response_model=HistoryEntryOut)
def update_history_entry(
    entry_id: str,
    body: HistoryUpdateRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return history_service.update_entry(
            db,
            current_user.id,
            entry_id,
            body.extracted,
            billing_type=body.billing_type,
        )
    except NotFoundError as e:
        raise HTTPException(404, str(e)) from e
    except ValidationError as e:
        raise HTTPException(400, str(e)) from e


@router.delete("/history/{entry_id}", response_model=DeleteResponse)
def delete_history_entry(
    entry_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        deleted = history_service.delete_entry(db, current_user.id, entry_id)
    except NotFoundError as e:
        raise HTTPException(404, str(e)) from e
    except ValidationError as e:
        raise HTTPException(400, str(e)) from e
    return DeleteResponse(deleted_count=deleted)


@router.post("/history/delete", response_model=DeleteResponse)
def bulk_delete_history(
    body: HistoryDeleteRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if body.all:
        deleted = history_service.delete_all_by_owner(db, current_user.id)
        return DeleteResponse(deleted_count=deleted)

    try:
        deleted = history_service.delete_many(db, current_user.id, body.ids)
    except ValidationError as e:
        raise HTTPException(400, str(e)) from e
    logger.info("Bulk deleted %d of %d requested history entries", deleted, len(body.ids))
    return DeleteResponse(deleted_count=deleted)
