"""
api/routes/v1/categories.py -- Category REST endpoints.

Routes:
  GET    /api/v1/categories         -- active categories with task counts (any role)
  POST   /api/v1/categories         -- create (Manager or Admin)
  DELETE /api/v1/categories/{id}    -- soft delete (Admin)

Role rules live in auth.access.authorize_category().
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from api.errors import http_error, not_found
from api.models import CategoryCreate, CategoryResponse, MessageResponse
from auth.access import CategoryOperation, authorize_category
from auth.dependencies import get_current_principal
from auth.models import Principal
from tasks.models import Category
from tasks.store import TaskStore

logger = logging.getLogger("taskmanager.api")

router = APIRouter()


def _authorize(principal: Principal, operation: CategoryOperation) -> None:
    decision = authorize_category(principal, operation)
    if not decision.ok:
        raise http_error(decision)


@router.get("/categories", response_model=list[CategoryResponse])
def list_categories(request: Request, principal: Principal = Depends(get_current_principal)) -> list[CategoryResponse]:
    _authorize(principal, CategoryOperation.READ)
    store: TaskStore = request.app.state.task_store
    return [CategoryResponse.from_category(c) for c in store.list_categories()]


@router.post("/categories", response_model=CategoryResponse, status_code=201)
def create_category(
    request: Request, body: CategoryCreate, principal: Principal = Depends(get_current_principal)
) -> CategoryResponse:
    _authorize(principal, CategoryOperation.CREATE)
    store: TaskStore = request.app.state.task_store
    category_id = store.create_category(Category(name=body.name, description=body.description, color=body.color))
    logger.info("User %d created category %d", principal.user_id, category_id)
    return CategoryResponse.from_category(store.get_category(category_id))


@router.delete("/categories/{category_id}", response_model=MessageResponse)
def delete_category(
    request: Request, category_id: int, principal: Principal = Depends(get_current_principal)
) -> MessageResponse:
    """Deactivate a category. Tasks that reference it keep the reference."""
    _authorize(principal, CategoryOperation.DELETE)
    store: TaskStore = request.app.state.task_store
    if not store.deactivate_category(category_id):
        raise not_found("Category not found.")
    return MessageResponse(message="Category deleted.")
