from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from sqlalchemy.orm import Session, selectinload

from abaops.core import rbac
from abaops.core.deps import get_current_user
from abaops.core.guards import require_destructive_allowed
from abaops.db.session import get_db
from abaops.models.enums import AuditAction
from abaops.models.master import Client, Insurance
from abaops.models.user import User
from abaops.routers.providers import read_upload_text
from abaops.schemas.master import ClientCreate, ClientRead, ClientUpdate, ImportResult
from abaops.services.activity import log_audit, snapshot
from abaops.services.master_data import import_clients

router = APIRouter(prefix="/api/clients", tags=["clients"])

AUDIT_FIELDS = ("name", "email", "phone", "medicaid_id", "insurance_id", "active")


def _get_client_or_404(db: Session, client_id: int) -> Client:
    client = (
        db.query(Client)
        .options(selectinload(Client.insurance))
        .filter(Client.id == client_id, Client.not_deleted())
        .first()
    )
    if not client:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client not found")
    return client


def _require_insurance(db: Session, insurance_id: int) -> Insurance:
    insurance = db.get(Insurance, insurance_id)
    if not insurance or insurance.deleted_at is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Insurance not found")
    return insurance


@router.get("", response_model=List[ClientRead])
def list_clients(
    search: Optional[str] = Query(None),
    active: Optional[bool] = Query(None),
    insurance_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[ClientRead]:
    rbac.require_permission(current_user, "clients.view", "view")
    query = db.query(Client).options(selectinload(Client.insurance)).filter(Client.not_deleted())
    if search:
        query = query.filter(Client.name.ilike(f"%{search.strip()}%"))
    if active is not None:
        query = query.filter(Client.active.is_(active))
    if insurance_id:
        query = query.filter(Client.insurance_id == insurance_id)
    clients = query.order_by(Client.name.asc()).all()
    return [ClientRead.model_validate(client) for client in clients]


@router.get("/{client_id}", response_model=ClientRead)
def get_client(
    client_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ClientRead:
    rbac.require_permission(current_user, "clients.view", "view")
    return ClientRead.model_validate(_get_client_or_404(db, client_id))


@router.post("", response_model=ClientRead, status_code=status.HTTP_201_CREATED)
def create_client(
    client_in: ClientCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ClientRead:
    rbac.require_permission(current_user, "clients.manage", "create")
    _require_insurance(db, client_in.insurance_id)
    client = Client(**client_in.model_dump())
    client.name = client.name.strip()
    db.add(client)
    db.flush()
    log_audit(
        db,
        action=AuditAction.CREATE,
        entity_type="Client",
        entity_id=client.id,
        user_id=current_user.id,
        new_values=snapshot(client, AUDIT_FIELDS),
    )
    db.commit()
    return ClientRead.model_validate(_get_client_or_404(db, client.id))


@router.patch("/{client_id}", response_model=ClientRead)
def update_client(
    client_id: int,
    client_update: ClientUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ClientRead:
    rbac.require_permission(current_user, "clients.manage", "update")
    client = _get_client_or_404(db, client_id)
    update_data = client_update.model_dump(exclude_unset=True)
    if update_data.get("insurance_id") is not None:
        client.insurance = _require_insurance(db, update_data["insurance_id"])
    elif "insurance_id" in update_data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Insurance is required")
    before = snapshot(client, AUDIT_FIELDS)
    for field, value in update_data.items():
        setattr(client, field, value)
    db.add(client)
    db.flush()
    log_audit(
        db,
        action=AuditAction.UPDATE,
        entity_type="Client",
        entity_id=client.id,
        user_id=current_user.id,
        old_values=before,
        new_values=snapshot(client, AUDIT_FIELDS),
    )
    db.commit()
    return ClientRead.model_validate(_get_client_or_404(db, client.id))


@router.delete("/{client_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_client(
    client_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    rbac.require_permission(current_user, "clients.manage", "delete")
    require_destructive_allowed("delete_client")
    client = _get_client_or_404(db, client_id)
    client.soft_delete()
    db.add(client)
    log_audit(
        db,
        action=AuditAction.DELETE,
        entity_type="Client",
        entity_id=client.id,
        user_id=current_user.id,
        old_values=snapshot(client, AUDIT_FIELDS),
    )
    db.commit()


@router.post("/import", response_model=ImportResult)
def import_clients_csv(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ImportResult:
    rbac.require_permission(current_user, "clients.manage", "create")
    outcome = import_clients(db, content=read_upload_text(file), user=current_user)
    db.commit()
    return ImportResult(created=outcome.created, skipped=outcome.skipped, errors=outcome.errors)
