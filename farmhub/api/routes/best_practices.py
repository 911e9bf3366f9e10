"""
farmhub.api.routes.best_practices — Editorial articles
=======================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from farmhub.api.deps import get_optional_user, get_session, service_errors
from farmhub.api.rate_limit import rate_limited_admin
from farmhub.services import best_practice_service

router = APIRouter(prefix="/best-practices", tags=["best-practices"])


class PracticeCreate(BaseModel):
    title: str
    description: str = ""
    steps: list[str] = Field(default_factory=list)
    benefits: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    language: str = "en"
    is_published: bool = True


class PracticeUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    steps: list[str] | None = None
    benefits: list[str] | None = None
    categories: list[str] | None = None
    language: str | None = None
    is_published: bool | None = None


@router.get("")
def list_practices(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    search: str | None = Query(None),
    category: str | None = Query(None),
    language: str | None = Query(None),
    user: dict | None = Depends(get_optional_user),
    session: Session = Depends(get_session),
):
    return best_practice_service.list_practices(
        session,
        viewer_id=user["id"] if user else None,
        page=page,
        limit=limit,
        search=search,
        category=category,
        language=language,
    )


@router.get("/categories")
def list_categories(session: Session = Depends(get_session)):
    return {"categories": best_practice_service.list_categories(session)}


@router.get("/{best_practice_id}")
def read_practice(
    best_practice_id: str,
    user: dict | None = Depends(get_optional_user),
    session: Session = Depends(get_session),
):
    """Return an article.  Signed-in readers get a read receipt and scoring."""
    with service_errors():
        result = best_practice_service.read_practice(
            session, best_practice_id, user["id"] if user else None
        )
        session.commit()
    return result


@router.post("", status_code=201)
def create_practice(
    body: PracticeCreate,
    admin: dict = Depends(rate_limited_admin),
    session: Session = Depends(get_session),
):
    with service_errors():
        bp = best_practice_service.create_practice(session, admin["id"], **body.model_dump())
        session.commit()
    return {"practice": best_practice_service.practice_to_dict(bp)}


@router.put("/{best_practice_id}")
def update_practice(
    best_practice_id: str,
    body: PracticeUpdate,
    admin: dict = Depends(rate_limited_admin),
    session: Session = Depends(get_session),
):
    with service_errors():
        bp = best_practice_service.update_practice(
            session, best_practice_id, admin["id"], **body.model_dump(exclude_unset=True)
        )
        session.commit()
    return {"practice": best_practice_service.practice_to_dict(bp)}


@router.delete("/{best_practice_id}")
def delete_practice(
    best_practice_id: str,
    admin: dict = Depends(rate_limited_admin),
    session: Session = Depends(get_session),
):
    with service_errors():
        best_practice_service.delete_practice(session, best_practice_id, admin["id"])
        session.commit()
    return {"deleted": True, "id": best_practice_id}
