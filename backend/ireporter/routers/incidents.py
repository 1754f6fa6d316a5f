from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status

from ireporter.core.security import Caller, get_current_caller
from ireporter.schemas.incident import (
    IncidentCreate,
    IncidentOut,
    IncidentStatus,
    IncidentType,
    IncidentUpdate,
    MediaAppend,
    MediaOut,
    MessageResponse,
    StatusUpdate,
)
from ireporter.services.incidents import IncidentService

router = APIRouter(
    prefix="/incidents",
    tags=["incidents"],
    responses={404: {"description": "Not found"}},
)


def get_incident_service(request: Request) -> IncidentService:
    return request.app.state.incident_service


@router.post("", response_model=IncidentOut, status_code=status.HTTP_201_CREATED)
async def create_incident(
    payload: IncidentCreate,
    caller: Caller = Depends(get_current_caller),
    service: IncidentService = Depends(get_incident_service),
):
    return await service.create_incident(caller, payload)


@router.get("", response_model=List[IncidentOut])
async def get_incidents(
    status_filter: Optional[IncidentStatus] = Query(None, alias="status"),
    type_filter: Optional[IncidentType] = Query(None, alias="type"),
    caller: Caller = Depends(get_current_caller),
    service: IncidentService = Depends(get_incident_service),
):
    return await service.list_incidents(status=status_filter, incident_type=type_filter)


@router.get("/user/{user_id}", response_model=List[IncidentOut])
async def get_user_incidents(
    user_id: str,
    caller: Caller = Depends(get_current_caller),
    service: IncidentService = Depends(get_incident_service),
):
    return await service.list_incidents_for_user(caller, user_id)


@router.get("/{incident_id}", response_model=IncidentOut)
async def get_incident(
    incident_id: str,
    caller: Caller = Depends(get_current_caller),
    service: IncidentService = Depends(get_incident_service),
):
    return await service.get_incident(incident_id)


@router.put("/{incident_id}", response_model=IncidentOut)
async def update_incident(
    incident_id: str,
    payload: IncidentUpdate,
    caller: Caller = Depends(get_current_caller),
    service: IncidentService = Depends(get_incident_service),
):
    """Partial update; only fields present in the body change."""
    return await service.update_incident(caller, incident_id, payload)


@router.patch("/{incident_id}/status", response_model=IncidentOut)
async def update_incident_status(
    incident_id: str,
    payload: StatusUpdate,
    caller: Caller = Depends(get_current_caller),
    service: IncidentService = Depends(get_incident_service),
):
    """Admin triage: move an incident through its review states."""
    return await service.update_incident_status(caller, incident_id, payload.status, payload.admin_comment)


@router.get("/{incident_id}/media", response_model=List[MediaOut])
async def get_incident_media(
    incident_id: str,
    caller: Caller = Depends(get_current_caller),
    service: IncidentService = Depends(get_incident_service),
):
    await service.get_incident(incident_id)
    return await service.list_media(incident_id)


@router.post("/{incident_id}/media", response_model=IncidentOut)
async def append_incident_media(
    incident_id: str,
    payload: MediaAppend,
    caller: Caller = Depends(get_current_caller),
    service: IncidentService = Depends(get_incident_service),
):
    return await service.append_media(caller, incident_id, payload.media)


@router.delete("/{incident_id}", response_model=MessageResponse)
async def delete_incident(
    incident_id: str,
    caller: Caller = Depends(get_current_caller),
    service: IncidentService = Depends(get_incident_service),
):
    await service.delete_incident(caller, incident_id)
    return MessageResponse(message="Incident deleted successfully")
