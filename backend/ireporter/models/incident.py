from sqlalchemy import Column, String, DateTime, Float, ForeignKey, Text, Index
from sqlalchemy.orm import relationship

from ireporter.core.database import Base
from .common import new_id, utcnow


class Incident(Base):
    __tablename__ = "incidents"

    id = Column(String(36), primary_key=True, default=new_id)
    type = Column(String(32), nullable=False)  # red-flag, intervention
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=False)
    location_lat = Column(Float, nullable=False)
    location_lng = Column(Float, nullable=False)
    location_address = Column(String(500), nullable=True)
    status = Column(String(32), nullable=False, default="draft")
    admin_comment = Column(Text, nullable=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Loaded explicitly with selectinload; media rows are removed by explicit
    # DELETE statements, never through an ORM cascade.
    media = relationship(
        "MediaFile",
        order_by="MediaFile.created_at",
        lazy="raise",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_incidents_created_at", "created_at"),
    )


class MediaFile(Base):
    __tablename__ = "media_files"

    id = Column(String(36), primary_key=True, default=new_id)
    incident_id = Column(String(36), ForeignKey("incidents.id"), nullable=False, index=True)
    type = Column(String(16), nullable=False)  # image, video
    url = Column(Text, nullable=False)
    thumbnail = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
