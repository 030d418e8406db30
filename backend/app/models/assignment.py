from sqlalchemy import Column, String, DateTime, Boolean, Integer, Text, ForeignKey

from app.core.database import Base
from app.core.types import GUID, generate_uuid, utc_now


class Assignment(Base):
    """
    Assignment handout. Students only see it once published; until then it
    is visible to its teacher and admins.
    """
    __tablename__ = "assignments"

    id = Column(GUID, primary_key=True, default=generate_uuid)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    subject = Column(String(255), nullable=False)
    due_date = Column(DateTime, nullable=True)
    is_published = Column(Boolean, default=False, nullable=False)

    # Relative to UPLOAD_DIR, e.g. "assignments/<generated name>.pdf"
    file_path = Column(String(500), nullable=False)
    file_type = Column(String(20), nullable=False)
    file_size = Column(Integer, nullable=True)

    owner_id = Column(GUID, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    published_at = Column(DateTime(timezone=True), nullable=True)
