from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

import crud
import workflow
from dependencies import get_db, require_processor
from filter_helpers import (
    blank_to_none,
    normalize_limit,
    normalize_offset,
    normalize_order,
    normalize_sort,
    normalize_status,
)
from models import Actor, Asset, AssetIn, AssetUpdate, PageMeta

router = APIRouter()


@router.get("/assets", response_model=list[Asset])
def list_assets_api(
    q: Optional[str] = None,
    category: Optional[str] = None,
    status: Optional[str] = None,
    sort: str = "serial_number",
    order: str = "asc",
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    return crud.list_assets_filtered(
        db,
        q=q,
        status=normalize_status(status),
        category=blank_to_none(category),
        sort=normalize_sort(sort),
        order=normalize_order(order),
        limit=normalize_limit(limit),
        offset=normalize_offset(offset),
    )


@router.get("/assets/meta", response_model=PageMeta)
def assets_meta_api(
    q: Optional[str] = None,
    category: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    meta = crud.assets_meta(
        db,
        q=q,
        status=normalize_status(status),
        category=blank_to_none(category),
        limit=normalize_limit(limit),
        offset=normalize_offset(offset),
    )
    return PageMeta(**meta)


@router.post("/assets", response_model=Asset, status_code=201)
def create_asset_api(
    body: AssetIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_processor),
):
    if crud.serial_number_exists(db, body.serial_number):
        raise HTTPException(status_code=409, detail="serial_number already exists")
    return crud.create_asset(db, body)


@router.get("/assets/{asset_id}", response_model=Asset)
def get_asset_api(
    asset_id: str,
    db: Session = Depends(get_db),
):
    asset = crud.get_asset(db, asset_id)
    if not asset:
        raise HTTPException(status_code=404, detail="asset not found")
    return asset


@router.patch("/assets/{asset_id}", response_model=Asset)
def update_asset_api(
    asset_id: str,
    body: AssetUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_processor),
):
    # an APPROVED request pins the asset at IN_USE until it is completed
    return workflow.edit_asset(db, asset_id, body, actor.user_id)


@router.delete("/assets/{asset_id}", status_code=204)
def delete_asset_api(
    asset_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_processor),
):
    workflow.remove_asset(db, asset_id, actor.user_id)
    return None
