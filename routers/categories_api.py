from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

import crud
from dependencies import get_db, require_processor
from models import Actor, Category, CategoryIn

router = APIRouter()


@router.get("/categories", response_model=list[Category])
def list_categories_api(db: Session = Depends(get_db)):
    return crud.list_categories(db)


@router.post("/categories", response_model=Category, status_code=201)
def create_category_api(
    body: CategoryIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_processor),
):
    if not body.name.strip():
        raise HTTPException(status_code=422, detail="category name is empty")
    created = crud.create_category(db, name=body.name, sort_order=body.sort_order)
    if not created:
        raise HTTPException(status_code=409, detail="category already exists")
    return created


@router.delete("/categories/{category_id}", status_code=204)
def delete_category_api(
    category_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_processor),
):
    if not crud.get_category(db, category_id):
        raise HTTPException(status_code=404, detail="category not found")
    if not crud.delete_category(db, category_id=category_id):
        raise HTTPException(status_code=409, detail="category is used by assets")
    return None
