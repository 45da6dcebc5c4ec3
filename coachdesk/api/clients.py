import json
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from coachdesk.core.sanitize import sanitize_list, sanitize_string
from coachdesk.db.models import Client
from coachdesk.db.session import get_db

router = APIRouter(prefix="/clients", tags=["clients"])


class ClientCreateRequest(BaseModel):
    full_name: str = Field(min_length=1, max_length=1000)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=64)
    age: Optional[float] = Field(default=None, ge=0, le=150)
    sex: Optional[str] = Field(default=None, max_length=32)
    height_cm: Optional[float] = Field(default=None, ge=0, le=300)
    weight_kg: Optional[float] = Field(default=None, ge=0, le=700)
    goals: Optional[str] = Field(default=None, max_length=1000)
    injuries: Optional[str] = Field(default=None, max_length=1000)
    equipment: list[str] = Field(default_factory=list, max_length=100)
    preferences: dict[str, Any] = Field(default_factory=dict)
    notes: Optional[str] = Field(default=None, max_length=1000)
    user_id: Optional[str] = Field(default=None, max_length=64)
    organization_id: Optional[str] = Field(default=None, max_length=36)


class ClientUpdateRequest(BaseModel):
    full_name: Optional[str] = Field(default=None, min_length=1, max_length=1000)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=64)
    age: Optional[float] = Field(default=None, ge=0, le=150)
    sex: Optional[str] = Field(default=None, max_length=32)
    height_cm: Optional[float] = Field(default=None, ge=0, le=300)
    weight_kg: Optional[float] = Field(default=None, ge=0, le=700)
    goals: Optional[str] = Field(default=None, max_length=1000)
    injuries: Optional[str] = Field(default=None, max_length=1000)
    equipment: Optional[list[str]] = Field(default=None, max_length=100)
    preferences: Optional[dict[str, Any]] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class ClientResponse(BaseModel):
    id: int
    full_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    age: Optional[float] = None
    sex: Optional[str] = None
    height_cm: Optional[float] = None
    weight_kg: Optional[float] = None
    goals: Optional[str] = None
    injuries: Optional[str] = None
    equipment: list[str]
    preferences: dict[str, Any]
    notes: Optional[str] = None
    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class ClientListResponse(BaseModel):
    clients: list[ClientResponse]
    count: int


def _load_json(raw: Optional[str], fallback: Any) -> Any:
    if not raw:
        return fallback
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return fallback
    return value if isinstance(value, type(fallback)) else fallback


def to_response(row: Client) -> ClientResponse:
    return ClientResponse(
        id=row.id,
        full_name=row.full_name,
        email=row.email,
        phone=row.phone,
        age=row.age,
        sex=row.sex,
        height_cm=row.height_cm,
        weight_kg=row.weight_kg,
        goals=row.goals,
        injuries=row.injuries,
        equipment=_load_json(row.equipment_json, []),
        preferences=_load_json(row.preferences_json, {}),
        notes=row.notes,
        user_id=row.user_id,
        organization_id=row.organization_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _get_or_404(db: Session, client_id: int) -> Client:
    row = db.query(Client).filter(Client.id == client_id).first()
    if not row:
        raise HTTPException(status_code=404, detail="Client not found")
    return row


@router.get("", response_model=ClientListResponse)
def list_clients(
    organization_id: Optional[str] = Query(default=None, max_length=36),
    db: Session = Depends(get_db),
) -> ClientListResponse:
    query = db.query(Client)
    if organization_id:
        query = query.filter(Client.organization_id == organization_id)
    rows = query.order_by(Client.created_at.desc(), Client.id.desc()).all()
    return ClientListResponse(clients=[to_response(row) for row in rows], count=len(rows))


@router.get("/{client_id}", response_model=ClientResponse)
def get_client(client_id: int, db: Session = Depends(get_db)) -> ClientResponse:
    return to_response(_get_or_404(db, client_id))


@router.post("", response_model=ClientResponse, status_code=status.HTTP_201_CREATED)
def create_client(payload: ClientCreateRequest, db: Session = Depends(get_db)) -> ClientResponse:
    full_name = sanitize_string(payload.full_name)
    if not full_name:
        raise HTTPException(status_code=422, detail="full_name must not be blank")
    row = Client(
        full_name=full_name,
        email=payload.email,
        phone=sanitize_string(payload.phone),
        age=payload.age,
        sex=sanitize_string(payload.sex),
        height_cm=payload.height_cm,
        weight_kg=payload.weight_kg,
        goals=sanitize_string(payload.goals),
        injuries=sanitize_string(payload.injuries),
        equipment_json=json.dumps(sanitize_list(payload.equipment)),
        preferences_json=json.dumps(payload.preferences, default=str),
        notes=sanitize_string(payload.notes),
        user_id=sanitize_string(payload.user_id),
        organization_id=sanitize_string(payload.organization_id),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return to_response(row)


@router.patch("/{client_id}", response_model=ClientResponse)
def update_client(
    client_id: int,
    payload: ClientUpdateRequest,
    db: Session = Depends(get_db),
) -> ClientResponse:
    row = _get_or_404(db, client_id)
    changes = payload.model_dump(exclude_unset=True)
    if "full_name" in changes:
        full_name = sanitize_string(changes.pop("full_name"))
        if not full_name:
            raise HTTPException(status_code=422, detail="full_name must not be blank")
        row.full_name = full_name
    if "equipment" in changes:
        row.equipment_json = json.dumps(sanitize_list(changes.pop("equipment")))
    if "preferences" in changes:
        row.preferences_json = json.dumps(changes.pop("preferences") or {}, default=str)
    for name, value in changes.items():
        if name in {"age", "height_cm", "weight_kg", "email"}:
            setattr(row, name, value)
        else:
            setattr(row, name, sanitize_string(value))
    db.commit()
    db.refresh(row)
    return to_response(row)


@router.delete("/{client_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_client(client_id: int, db: Session = Depends(get_db)) -> Response:
    row = _get_or_404(db, client_id)
    db.delete(row)
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
