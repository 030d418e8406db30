from sqlalchemy import Column, String, DateTime, Integer, Text, ForeignKey

from app.core.database import Base
from app.core.types import GUID, generate_uuid, utc_now


class Material(Base):
    """Course material uploaded by a teacher, downloadable by any signed-in user"""
    __tablename__ = "materials"

    id = Column(GUID, primary_key=True, default=generate_uuid)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    subject = Column(String(255), nullable=False)
    semester = Column(Integer, nullable=True)

    # Relative to UPLOAD_DIR, e.g. "materials/<generated name>.pdf"
    file_path = Column(String(500), nullable=False)
    file_type = Column(String(20), nullable=False)
    file_size = Column(Integer, nullable=True)

    owner_id = Column(GUID, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
