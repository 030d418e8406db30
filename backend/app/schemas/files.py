from pydantic import BaseModel
from typing import Optional
from datetime import datetime


class MaterialResponse(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    subject: str
    semester: Optional[int] = None
    file_type: str
    file_size: Optional[int] = None
    owner_id: str
    created_at: datetime

    class Config:
        from_attributes = True


class AssignmentResponse(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    subject: str
    due_date: Optional[datetime] = None
    is_published: bool
    file_type: str
    file_size: Optional[int] = None
    owner_id: str
    created_at: datetime
    published_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class FileUploadResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    material: Optional[MaterialResponse] = None
    assignment: Optional[AssignmentResponse] = None
