from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from abaops.core.deps import get_current_user
from abaops.db.session import get_db
from abaops.models.user import User
from abaops.schemas.search import SearchResult
from abaops.services import search as search_service

router = APIRouter(prefix="/api/search", tags=["search"])


@router.get("", response_model=SearchResult)
def search(
    q: str = Query(""),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> SearchResult:
    try:
        return search_service.search(db, q, current_user)
    except search_service.SearchError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)
