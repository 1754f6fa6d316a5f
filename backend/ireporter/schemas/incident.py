from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator, model_validator

from .base import CamelModel


class IncidentType(str, Enum):
    red_flag = "red-flag"
    intervention = "intervention"


class IncidentStatus(str, Enum):
    draft = "draft"
    under_investigation = "under-investigation"
    resolved = "resolved"
    rejected = "rejected"


class MediaType(str, Enum):
    image = "image"
    video = "video"


class Location(CamelModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    address: Optional[str] = None


class MediaIn(CamelModel):
    type: MediaType
    url: str = Field(..., min_length=1)
    thumbnail: Optional[str] = None


def _require_text(v: Optional[str]) -> Optional[str]:
    if v is not None and not v.strip():
        raise ValueError("must not be blank")
    return v


class IncidentCreate(CamelModel):
    type: IncidentType
    title: str = Field(..., min_length=1, max_length=500)
    description: str = Field(..., min_length=1)
    location: Location
    # Entries are checked one by one in the service so that a bad entry is
    # dropped instead of failing the whole report.
    media: Optional[List[Any]] = None
    status: IncidentStatus = IncidentStatus.draft

    @field_validator("title", "description")
    @classmethod
    def not_blank(cls, v: str) -> str:
        return _require_text(v)


NON_NULLABLE_UPDATE_FIELDS = ("type", "title", "description", "location", "status")


class IncidentUpdate(CamelModel):
    type: Optional[IncidentType] = None
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = Field(None, min_length=1)
    location: Optional[Location] = None
    status: Optional[IncidentStatus] = None
    admin_comment: Optional[str] = None

    @field_validator("title", "description")
    @classmethod
    def not_blank(cls, v: Optional[str]) -> Optional[str]:
        return _require_text(v)

    @model_validator(mode="after")
    def reject_null_for_required_columns(self):
        for name in NON_NULLABLE_UPDATE_FIELDS:
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> Dict[str, Any]:
        """Fields present in the request body, keyed by attribute name."""
        return {name: getattr(self, name) for name in self.model_fields_set}


class StatusUpdate(CamelModel):
    status: IncidentStatus
    admin_comment: Optional[str] = None


class MediaAppend(CamelModel):
    media: List[Any]


class MediaOut(CamelModel):
    id: str
    type: MediaType
    url: str
    thumbnail: Optional[str] = None
    created_at: datetime


class UserSummary(CamelModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None


class IncidentOut(CamelModel):
    id: str
    type: IncidentType
    title: str
    description: str
    location: Location
    media: List[MediaOut] = []
    status: IncidentStatus
    admin_comment: Optional[str] = None
    user_id: str
    user: Optional[UserSummary] = None
    created_at: datetime
    updated_at: datetime


class MessageResponse(CamelModel):
    message: str
