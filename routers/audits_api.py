from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

import crud
from dependencies import get_db, require_processor
from filter_helpers import blank_to_none, normalize_limit, normalize_offset
from models import Actor, AuditEntry

router = APIRouter()


@router.get("/audits", response_model=list[AuditEntry])
def list_audits_api(
    entity_id: Optional[str] = None,
    performed_by: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_processor),
):
    return crud.list_audits(
        db,
        entity_id=blank_to_none(entity_id),
        performed_by=blank_to_none(performed_by),
        limit=normalize_limit(limit),
        offset=normalize_offset(offset),
    )
