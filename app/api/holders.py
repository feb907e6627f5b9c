# ============================================================================
# Arbitrage Ledger
# Holder API Endpoints
# ============================================================================
#
# Endpoints:
#   GET    /api/holders                 - all holders, sorted by name
#   POST   /api/holders                 - create (names are unique, trimmed)
#   GET    /api/holders/{id}            - single holder
#   PATCH  /api/holders/{id}            - rename and/or investor flag
#   DELETE /api/holders/{id}            - delete; transactions keep no reference
#   GET    /api/holders/{id}/notes      - notes, newest first
#   POST   /api/holders/{id}/notes      - add a note
#
# ============================================================================

from typing import List

from fastapi import APIRouter, Depends, Response, status

from app.api.dependencies import get_holder_registry
from app.schemas.transaction import HolderCreate, HolderOut, HolderUpdate, NoteCreate, NoteOut
from services.holder_registry import HolderRegistry

router = APIRouter()


@router.get("", response_model=List[HolderOut], tags=["Holders"])
def list_holders(
    registry: HolderRegistry = Depends(get_holder_registry),
) -> List[HolderOut]:
    return [HolderOut.from_holder(h) for h in registry.list_holders()]


@router.post(
    "",
    response_model=HolderOut,
    status_code=status.HTTP_201_CREATED,
    tags=["Holders"],
)
def create_holder(
    body: HolderCreate,
    registry: HolderRegistry = Depends(get_holder_registry),
) -> HolderOut:
    return HolderOut.from_holder(registry.create_holder(body.name, is_investor=body.is_investor))


@router.get("/{holder_id}", response_model=HolderOut, tags=["Holders"])
def get_holder(
    holder_id: str,
    registry: HolderRegistry = Depends(get_holder_registry),
) -> HolderOut:
    return HolderOut.from_holder(registry.get_holder(holder_id))


@router.patch("/{holder_id}", response_model=HolderOut, tags=["Holders"])
def update_holder(
    holder_id: str,
    body: HolderUpdate,
    registry: HolderRegistry = Depends(get_holder_registry),
) -> HolderOut:
    holder = registry.get_holder(holder_id)
    if body.name is not None:
        holder = registry.rename_holder(holder_id, body.name)
    if body.is_investor is not None:
        holder = registry.set_investor(holder_id, body.is_investor)
    return HolderOut.from_holder(holder)


@router.delete(
    "/{holder_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Holders"],
)
def delete_holder(
    holder_id: str,
    registry: HolderRegistry = Depends(get_holder_registry),
) -> Response:
    registry.delete_holder(holder_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{holder_id}/notes", response_model=List[NoteOut], tags=["Holders"])
def list_notes(
    holder_id: str,
    registry: HolderRegistry = Depends(get_holder_registry),
) -> List[NoteOut]:
    return [NoteOut.from_note(n) for n in registry.list_notes(holder_id)]


@router.post(
    "/{holder_id}/notes",
    response_model=NoteOut,
    status_code=status.HTTP_201_CREATED,
    tags=["Holders"],
)
def add_note(
    holder_id: str,
    body: NoteCreate,
    registry: HolderRegistry = Depends(get_holder_registry),
) -> NoteOut:
    return NoteOut.from_note(registry.add_note(holder_id, body.content))
