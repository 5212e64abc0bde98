from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from ..auth.deps import current_user
from ..auth.tokens import AuthUser
from ..observability.logging import get_logger
from ..repositories import books_repo, templates_repo
from ..responses import ok
from ..services import templates as template_service

router = APIRouter(tags=["templates"])
log = get_logger("templates")


class TemplateCreateRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    category: str = "custom"


class CloneRequest(BaseModel):
    name: str | None = Field(default=None, max_length=100)


class ApplyTemplateRequest(BaseModel):
    templateId: str = Field(..., min_length=1)


class SaveAsTemplateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    category: str = "custom"


def _api(items: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [templates_repo.normalize_template_for_api(t) or {} for t in items]


def _check_category(category: str | None) -> None:
    if category and category not in template_service.CATEGORIES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid category. Must be one of: {', '.join(template_service.CATEGORIES)}",
        )


def _check_page_size(fields: dict[str, Any]) -> None:
    size = (fields.get("pageLayout") or {}).get("pageSize") if isinstance(fields.get("pageLayout"), dict) else None
    if size and size not in template_service.PAGE_SIZES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid page size. Must be one of: {', '.join(template_service.PAGE_SIZES)}",
        )


def _owned_book(book_id: str, user: AuthUser) -> dict[str, Any]:
    book = books_repo.get_book(book_id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    if str(book.get("authorId")) != user.id:
        raise HTTPException(status_code=403, detail="You do not have permission to update this book")
    return book


@router.get("")
@router.get("/", include_in_schema=False)
def list_templates(category: str | None = None):
    _check_category(category)
    items = template_service.list_all(category)
    return ok({"templates": _api(items), "count": len(items)})


@router.get("/system")
def list_system_templates():
    return ok({"templates": _api(template_service.list_system())})


@router.get("/search")
def search_templates(q: str = "", category: str | None = None, limit: int = 10):
    if not q.strip():
        raise HTTPException(status_code=400, detail="Search query is required")
    items = template_service.search(q, category=category, limit=max(1, min(50, limit)))
    return ok({"templates": _api(items), "count": len(items)})


@router.get("/recommendations")
def recommend_templates(genre: str = "", targetAudience: str | None = None):
    return ok({"templates": _api(template_service.recommend(genre, targetAudience))})


@router.get("/category/{category}")
def list_category(category: str):
    _check_category(category)
    return ok({"templates": _api(template_service.list_by_category(category))})


@router.get("/user/my-templates")
def my_templates(user: AuthUser = Depends(current_user)):
    return ok({"templates": _api(template_service.list_for_user(user.id))})


@router.get("/{templateId}")
def get_template(templateId: str):
    template = templates_repo.get_template(templateId)
    if not template:
        raise HTTPException(status_code=404, detail="Template not found")
    return ok({"template": templates_repo.normalize_template_for_api(template)})


@router.post("", status_code=201)
@router.post("/", status_code=201, include_in_schema=False)
def create_template(body: TemplateCreateRequest, user: AuthUser = Depends(current_user)):
    fields = body.model_dump(exclude_none=True)
    _check_category(fields.get("category"))
    _check_page_size(fields)
    template = template_service.create(fields, user.id)
    log.info("template_created", template_id=template["templateId"], user_id=user.id)
    return ok({"template": templates_repo.normalize_template_for_api(template)}, message="Template created successfully")


@router.put("/{templateId}")
def update_template(templateId: str, body: dict[str, Any], user: AuthUser = Depends(current_user)):
    _check_category(body.get("category"))
    _check_page_size(body)
    try:
        updated = template_service.update(templateId, body, user.id)
    except template_service.TemplateAccessError as e:
        raise HTTPException(status_code=403, detail=str(e))
    if updated is None:
        raise HTTPException(status_code=404, detail="Template not found")
    return ok({"template": templates_repo.normalize_template_for_api(updated)}, message="Template updated successfully")


@router.delete("/{templateId}")
def delete_template(templateId: str, user: AuthUser = Depends(current_user)):
    try:
        deleted = template_service.delete(templateId, user.id)
    except template_service.TemplateAccessError as e:
        raise HTTPException(status_code=403, detail=str(e))
    if not deleted:
        raise HTTPException(status_code=404, detail="Template not found")
    log.info("template_deleted", template_id=templateId, user_id=user.id)
    return ok(message="Template deleted successfully")


@router.post("/{templateId}/clone", status_code=201)
def clone_template(templateId: str, body: CloneRequest | None = None, user: AuthUser = Depends(current_user)):
    clone = template_service.clone(templateId, user.id, body.name if body else None)
    if clone is None:
        raise HTTPException(status_code=404, detail="Template not found")
    return ok({"template": templates_repo.normalize_template_for_api(clone)}, message="Template cloned successfully")


@router.post("/books/{bookId}/apply-template")
def apply_template(bookId: str, body: ApplyTemplateRequest, user: AuthUser = Depends(current_user)):
    book = _owned_book(bookId, user)
    template = templates_repo.get_template(body.templateId)
    if not template:
        raise HTTPException(status_code=404, detail="Template not found")
    updated = template_service.apply_to_book(book, template)
    log.info("template_applied", template_id=body.templateId, book_id=bookId)
    return ok(
        {"book": books_repo.normalize_book_for_api(updated, include_content=False)},
        message="Template applied successfully",
    )


@router.post("/books/{bookId}/save-as-template", status_code=201)
def save_as_template(bookId: str, body: SaveAsTemplateRequest, user: AuthUser = Depends(current_user)):
    _check_category(body.category)
    book = _owned_book(bookId, user)
    template = template_service.save_book_as_template(book, user.id, name=body.name, category=body.category)
    return ok({"template": templates_repo.normalize_template_for_api(template)}, message="Template saved successfully")
