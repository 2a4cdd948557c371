from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from sqlalchemy.orm import Session

from abaops.core import rbac
from abaops.core.deps import get_current_user
from abaops.core.guards import require_destructive_allowed
from abaops.db.session import get_db
from abaops.models.enums import AuditAction
from abaops.models.master import Provider
from abaops.models.user import User
from abaops.schemas.master import ImportResult, ProviderCreate, ProviderRead, ProviderUpdate
from abaops.services.activity import log_audit, snapshot
from abaops.services.master_data import import_providers

router = APIRouter(prefix="/api/providers", tags=["providers"])

AUDIT_FIELDS = ("name", "email", "phone", "active")


def _get_provider_or_404(db: Session, provider_id: int) -> Provider:
    provider = db.get(Provider, provider_id)
    if not provider or provider.deleted_at is not None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Provider not found")
    return provider


def read_upload_text(file: UploadFile) -> str:
    try:
        return file.file.read().decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File must be UTF-8 encoded CSV") from exc


@router.get("", response_model=List[ProviderRead])
def list_providers(
    search: Optional[str] = Query(None),
    active: Optional[bool] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[ProviderRead]:
    rbac.require_permission(current_user, "providers.view", "view")
    query = db.query(Provider).filter(Provider.not_deleted())
    if search:
        query = query.filter(Provider.name.ilike(f"%{search.strip()}%"))
    if active is not None:
        query = query.filter(Provider.active.is_(active))
    providers = query.order_by(Provider.name.asc()).all()
    return [ProviderRead.model_validate(provider) for provider in providers]


@router.get("/{provider_id}", response_model=ProviderRead)
def get_provider(
    provider_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ProviderRead:
    rbac.require_permission(current_user, "providers.view", "view")
    return ProviderRead.model_validate(_get_provider_or_404(db, provider_id))


@router.post("", response_model=ProviderRead, status_code=status.HTTP_201_CREATED)
def create_provider(
    provider_in: ProviderCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ProviderRead:
    rbac.require_permission(current_user, "providers.manage", "create")
    provider = Provider(**provider_in.model_dump())
    provider.name = provider.name.strip()
    db.add(provider)
    db.flush()
    log_audit(
        db,
        action=AuditAction.CREATE,
        entity_type="Provider",
        entity_id=provider.id,
        user_id=current_user.id,
        new_values=snapshot(provider, AUDIT_FIELDS),
    )
    db.commit()
    db.refresh(provider)
    return ProviderRead.model_validate(provider)


@router.patch("/{provider_id}", response_model=ProviderRead)
def update_provider(
    provider_id: int,
    provider_update: ProviderUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ProviderRead:
    rbac.require_permission(current_user, "providers.manage", "update")
    provider = _get_provider_or_404(db, provider_id)
    before = snapshot(provider, AUDIT_FIELDS)
    for field, value in provider_update.model_dump(exclude_unset=True).items():
        setattr(provider, field, value)
    db.add(provider)
    db.flush()
    log_audit(
        db,
        action=AuditAction.UPDATE,
        entity_type="Provider",
        entity_id=provider.id,
        user_id=current_user.id,
        old_values=before,
        new_values=snapshot(provider, AUDIT_FIELDS),
    )
    db.commit()
    db.refresh(provider)
    return ProviderRead.model_validate(provider)


@router.delete("/{provider_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_provider(
    provider_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    rbac.require_permission(current_user, "providers.manage", "delete")
    require_destructive_allowed("delete_provider")
    provider = _get_provider_or_404(db, provider_id)
    provider.soft_delete()
    db.add(provider)
    log_audit(
        db,
        action=AuditAction.DELETE,
        entity_type="Provider",
        entity_id=provider.id,
        user_id=current_user.id,
        old_values=snapshot(provider, AUDIT_FIELDS),
    )
    db.commit()


@router.post("/import", response_model=ImportResult)
def import_providers_csv(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ImportResult:
    rbac.require_permission(current_user, "providers.manage", "create")
    outcome = import_providers(db, content=read_upload_text(file), user=current_user)
    db.commit()
    return ImportResult(created=outcome.created, skipped=outcome.skipped, errors=outcome.errors)
