"""
Records API Router
Thin create/update/delete endpoints for children, families and preferences.
Writes go through the ORM session so record-change observers see them.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import inspect
from sqlalchemy.orm import Session
from typing import Any, Dict, Optional, Type
from pydantic import BaseModel, Field
import structlog

from app.database import Base, get_db
from app.models import Child, Family, Preference

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/records", tags=["records"])


class ChildCreate(BaseModel):
    name: str
    status: str = "Needs Placement"
    age: Optional[int] = Field(None, ge=0, le=25)
    gender: Optional[str] = None
    jurisdiction: Optional[str] = None
    preferred_jurisdiction: Optional[str] = None
    special_needs_level: int = Field(0, ge=0, le=3)
    sibling_group_size: int = Field(1, ge=1)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class ChildUpdate(BaseModel):
    name: Optional[str] = None
    status: Optional[str] = None
    age: Optional[int] = Field(None, ge=0, le=25)
    gender: Optional[str] = None
    jurisdiction: Optional[str] = None
    preferred_jurisdiction: Optional[str] = None
    special_needs_level: Optional[int] = Field(None, ge=0, le=3)
    sibling_group_size: Optional[int] = Field(None, ge=1)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class FamilyCreate(BaseModel):
    name: str
    license_status: Optional[str] = None
    background_check_status: Optional[str] = None
    training_status: Optional[str] = None
    capacity: int = Field(0, ge=0)
    special_needs_level_supported: int = Field(0, ge=0, le=3)
    jurisdiction: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class FamilyUpdate(BaseModel):
    name: Optional[str] = None
    license_status: Optional[str] = None
    background_check_status: Optional[str] = None
    training_status: Optional[str] = None
    capacity: Optional[int] = Field(None, ge=0)
    special_needs_level_supported: Optional[int] = Field(None, ge=0, le=3)
    jurisdiction: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class PreferenceCreate(BaseModel):
    family_id: int
    status: str = "Active"
    age_min: Optional[int] = Field(None, ge=0)
    age_max: Optional[int] = Field(None, ge=0)
    preferred_gender: Optional[str] = None
    gender_flexible: bool = False
    jurisdiction: Optional[str] = None


class PreferenceUpdate(BaseModel):
    status: Optional[str] = None
    age_min: Optional[int] = Field(None, ge=0)
    age_max: Optional[int] = Field(None, ge=0)
    preferred_gender: Optional[str] = None
    gender_flexible: Optional[bool] = None
    jurisdiction: Optional[str] = None


RECORD_TYPES: Dict[str, Type[Base]] = {
    "children": Child,
    "families": Family,
    "preferences": Preference,
}


def record_to_dict(record) -> Dict[str, Any]:
    """Column values of an ORM row; datetimes as ISO strings."""
    data = {}
    for attr in inspect(record).mapper.column_attrs:
        value = getattr(record, attr.key)
        data[attr.key] = value.isoformat() if hasattr(value, "isoformat") else value
    return data


def _require_db(db: Optional[Session]) -> Session:
    if db is None:
        raise HTTPException(status_code=503, detail="Database not configured")
    return db


def _get_or_404(db: Session, record_type: str, record_id: int):
    model = RECORD_TYPES[record_type]
    record = db.query(model).filter(model.id == record_id).first()
    if record is None:
        raise HTTPException(status_code=404, detail=f"{model.__name__} {record_id} not found")
    return record


def _create(db: Session, record_type: str, values: Dict[str, Any]) -> Dict[str, Any]:
    record = RECORD_TYPES[record_type](**values)
    db.add(record)
    db.commit()
    db.refresh(record)
    logger.info("record_created", record_type=record_type, record_id=record.id)
    return record_to_dict(record)


def _update(db: Session, record_type: str, record_id: int, values: Dict[str, Any]) -> Dict[str, Any]:
    record = _get_or_404(db, record_type, record_id)
    for key, value in values.items():
        setattr(record, key, value)
    db.commit()
    db.refresh(record)
    logger.info("record_updated", record_type=record_type, record_id=record_id, fields=sorted(values))
    return record_to_dict(record)


@router.post("/children", status_code=201)
async def create_child(request: ChildCreate, db: Session = Depends(get_db)):
    """Create a child record"""
    return _create(_require_db(db), "children", request.model_dump())


@router.patch("/children/{record_id}")
async def update_child(record_id: int, request: ChildUpdate, db: Session = Depends(get_db)):
    """Update a child record (only the fields sent)"""
    return _update(_require_db(db), "children", record_id, request.model_dump(exclude_unset=True))


@router.post("/families", status_code=201)
async def create_family(request: FamilyCreate, db: Session = Depends(get_db)):
    """Create a family record"""
    return _create(_require_db(db), "families", request.model_dump())


@router.patch("/families/{record_id}")
async def update_family(record_id: int, request: FamilyUpdate, db: Session = Depends(get_db)):
    """Update a family record (only the fields sent)"""
    return _update(_require_db(db), "families", record_id, request.model_dump(exclude_unset=True))


@router.post("/preferences", status_code=201)
async def create_preference(request: PreferenceCreate, db: Session = Depends(get_db)):
    """Create a family preference"""
    db = _require_db(db)
    _get_or_404(db, "families", request.family_id)
    return _create(db, "preferences", request.model_dump())


@router.patch("/preferences/{record_id}")
async def update_preference(record_id: int, request: PreferenceUpdate, db: Session = Depends(get_db)):
    """Update a family preference (only the fields sent)"""
    return _update(_require_db(db), "preferences", record_id, request.model_dump(exclude_unset=True))


@router.delete("/{record_type}/{record_id}", status_code=204)
async def delete_record(record_type: str, record_id: int, db: Session = Depends(get_db)):
    """Delete a child, family or preference"""
    if record_type not in RECORD_TYPES:
        raise HTTPException(status_code=404, detail=f"Unknown record type '{record_type}'")
    db = _require_db(db)
    record = _get_or_404(db, record_type, record_id)
    db.delete(record)
    db.commit()
    logger.info("record_deleted", record_type=record_type, record_id=record_id)
