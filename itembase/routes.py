"""
HTTP routes for the item API. Responses wrap payloads in ``{"data": ...}``;
errors are rendered by the handlers registered in ``itembase.app``.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends

from itembase.dependencies import get_bearer_token, get_data_service
from itembase.schemas import CreateItemRequest, LoginRequest, UpdateItemRequest
from itembase.service import DELETE_MESSAGE, DataService

router = APIRouter()


@router.get("/health")
async def health(service: DataService = Depends(get_data_service)):
    return service.health()


@router.post("/auth/login")
async def login(
    payload: Optional[LoginRequest] = None,
    service: DataService = Depends(get_data_service),
):
    payload = payload or LoginRequest()
    session = await service.login(payload.email, payload.password)
    return {"data": {"session": session.as_dict()}}


@router.post("/auth/logout")
async def logout(
    token: Optional[str] = Depends(get_bearer_token),
    service: DataService = Depends(get_data_service),
):
    message = await service.logout(token)
    return {"data": {"message": message}}


@router.get("/auth/session")
async def get_session(
    token: Optional[str] = Depends(get_bearer_token),
    service: DataService = Depends(get_data_service),
):
    session = await service.get_session(token)
    return {"data": {"session": session.as_dict() if session else None}}


@router.get("/data")
async def fetch_data(
    token: Optional[str] = Depends(get_bearer_token),
    service: DataService = Depends(get_data_service),
):
    items = await service.fetch_data(token)
    return {"data": [item.as_dict() for item in items]}


@router.post("/data", status_code=201)
async def create_item(
    payload: Optional[CreateItemRequest] = None,
    token: Optional[str] = Depends(get_bearer_token),
    service: DataService = Depends(get_data_service),
):
    body = payload.model_dump(exclude_unset=True) if payload else {}
    item = await service.create_item(token, body)
    return {"data": item.as_dict()}


@router.put("/data")
@router.put("/data/")
async def update_item_without_id(
    token: Optional[str] = Depends(get_bearer_token),
    service: DataService = Depends(get_data_service),
):
    await service.update_item(token, None, {})


@router.put("/data/{item_id}")
async def update_item(
    item_id: str,
    payload: Optional[UpdateItemRequest] = None,
    token: Optional[str] = Depends(get_bearer_token),
    service: DataService = Depends(get_data_service),
):
    patch = payload.model_dump(exclude_unset=True) if payload else {}
    item = await service.update_item(token, item_id, patch)
    return {"data": item.as_dict()}


@router.delete("/data")
@router.delete("/data/")
async def delete_item_without_id(
    token: Optional[str] = Depends(get_bearer_token),
    service: DataService = Depends(get_data_service),
):
    await service.delete_item(token, None)


@router.delete("/data/{item_id}")
async def delete_item(
    item_id: str,
    token: Optional[str] = Depends(get_bearer_token),
    service: DataService = Depends(get_data_service),
):
    item = await service.delete_item(token, item_id)
    return {"data": {"message": DELETE_MESSAGE, "item": item.as_dict()}}


@router.get("/backend/status")
async def backend_status(service: DataService = Depends(get_data_service)):
    return {"data": await service.backend_status()}


@router.post("/backend/recheck")
async def recheck_backend(service: DataService = Depends(get_data_service)):
    """Re-run backend selection on demand."""
    return {"data": await service.recheck_backend()}
