"""
CardSnap — Card Route Handlers
===============================

What:  Card CRUD, search, sharing, image replacement and image serving.
How:   Thin handlers; visibility and ownership rules live in CardService.

Route Inventory:
    GET    /api/cards                  list/search visible cards
    POST   /api/cards                  save a confirmed draft
    GET    /api/cards/{id}             owner or recipient
    PATCH  /api/cards/{id}             owner only
    PUT    /api/cards/{id}/image       owner only; old image removed
    DELETE /api/cards/{id}             owner only; image removed
    POST   /api/cards/{id}/share       owner only
    GET    /api/files/{path}           stored card images

Blob cleanup after a replace or delete runs as a background task so the
response is not delayed by disk I/O.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Response
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from cardsnap.database import get_db_session
from cardsnap.exceptions import NotFoundError
from cardsnap.identity import get_current_user
from cardsnap.models.user import User
from cardsnap.schemas.card import (
    CardCreate,
    CardListResponse,
    CardResponse,
    CardUpdate,
    ErrorResponse,
    ImageUpdateRequest,
    ShareRequest,
    ShareResponse,
)
from cardsnap.services.card_service import card_service
from cardsnap.services.file_service import FileService, get_file_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Cards"])

NOT_FOUND = {404: {"description": "Card not found", "model": ErrorResponse}}
FORBIDDEN = {403: {"description": "Not the owner of the card", "model": ErrorResponse}}


@router.get(
    "/cards",
    response_model=CardListResponse,
    summary="List and search cards",
    description=(
        "Cards owned by or shared with the current user, newest first. "
        "`q` searches name, title, company, email, phone, notes and category."
    ),
)
async def list_cards(
    response: Response,
    q: Optional[str] = Query(default=None, max_length=200, description="Free-text search"),
    category: Optional[str] = Query(default=None, max_length=100),
    limit: int = Query(default=20, ge=1, le=100, description="Items per page (max 100)"),
    offset: int = Query(default=0, ge=0),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> CardListResponse:
    cards, total = await card_service.list_cards(
        db, user.id, q=q, category=category, limit=limit, offset=offset
    )
    response.headers["X-Total-Count"] = str(total)
    return CardListResponse(
        cards=[card_service.to_response(card, user.id) for card in cards],
        total_count=total,
        limit=limit,
        offset=offset,
        has_more=offset + len(cards) < total,
    )


@router.post(
    "/cards",
    status_code=201,
    response_model=CardResponse,
    responses={400: {"description": "Invalid card data", "model": ErrorResponse}},
    summary="Save a confirmed card",
)
async def create_card(
    data: CardCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    file_service: FileService = Depends(get_file_service),
) -> CardResponse:
    card = await card_service.create_card(db, user.id, data, file_service)
    return card_service.to_response(card, user.id)


@router.get(
    "/cards/{card_id}",
    response_model=CardResponse,
    responses=NOT_FOUND,
    summary="Get a single card",
)
async def get_card(
    card_id: UUID,
    response: Response,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> CardResponse:
    card = await card_service.get_card(db, user.id, card_id)
    # Cards are editable, so clients revalidate; never stored by shared caches
    response.headers["Cache-Control"] = "private, no-cache"
    return card_service.to_response(card, user.id)


@router.patch(
    "/cards/{card_id}",
    response_model=CardResponse,
    responses={**NOT_FOUND, **FORBIDDEN},
    summary="Edit a card",
)
async def update_card(
    card_id: UUID,
    data: CardUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> CardResponse:
    card = await card_service.update_card(db, user.id, card_id, data)
    return card_service.to_response(card, user.id)


@router.put(
    "/cards/{card_id}/image",
    response_model=CardResponse,
    responses={**NOT_FOUND, **FORBIDDEN},
    summary="Replace the card image with a new capture",
)
async def update_card_image(
    card_id: UUID,
    data: ImageUpdateRequest,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    file_service: FileService = Depends(get_file_service),
) -> CardResponse:
    card, previous = await card_service.update_image(
        db, user.id, card_id, data.image_path, file_service
    )
    if previous:
        background_tasks.add_task(file_service.cleanup_file, previous)
    return card_service.to_response(card, user.id)


@router.delete(
    "/cards/{card_id}",
    status_code=204,
    responses={**NOT_FOUND, **FORBIDDEN},
    summary="Delete a card",
)
async def delete_card(
    card_id: UUID,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    file_service: FileService = Depends(get_file_service),
) -> Response:
    image_path = await card_service.delete_card(db, user.id, card_id)
    if image_path:
        background_tasks.add_task(file_service.cleanup_file, image_path)
    return Response(status_code=204)


@router.post(
    "/cards/{card_id}/share",
    response_model=ShareResponse,
    responses={
        **NOT_FOUND,
        **FORBIDDEN,
        400: {"description": "Cannot share with yourself", "model": ErrorResponse},
    },
    summary="Share a card with another user",
)
async def share_card(
    card_id: UUID,
    data: ShareRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ShareResponse:
    card = await card_service.share_card(db, user.id, card_id, data.email)
    return ShareResponse(
        card_id=card.id,
        shared_with=sorted(u.email for u in card.shared_with),
    )


@router.get(
    "/files/{file_path:path}",
    summary="Serve stored card images",
    responses={
        200: {"description": "Image file"},
        400: {"description": "Invalid path", "model": ErrorResponse},
        404: {"description": "File not found", "model": ErrorResponse},
    },
)
async def serve_file(
    file_path: str,
    file_service: FileService = Depends(get_file_service),
) -> FileResponse:
    """
    Serve a stored image. Paths are UUID-named, so a URL is only known to
    the users the card is visible to.
    """
    full_path = file_service.resolve_path(file_path)
    if not full_path.is_file():
        raise NotFoundError(resource="file", resource_id=file_path)

    return FileResponse(
        path=str(full_path),
        headers={"Cache-Control": "private, max-age=86400"},
    )
