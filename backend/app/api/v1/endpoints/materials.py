"""
Course materials: teachers upload, every signed-in role downloads.
"""

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from app.core.database import get_db
from app.core.exceptions import NotFoundError
from app.core.logging_config import logger
from app.core.rate_limiter import RateLimitCategory
from app.models.material import Material
from app.modules.auth.dependencies import (
    ANY_ROLE,
    STAFF_ROLES,
    get_security_services,
    rate_limit,
    require_roles,
)
from app.modules.auth.principal import Principal
from app.modules.files.gateway import StoredFileRef
from app.schemas.files import FileUploadResponse, MaterialResponse

router = APIRouter()


def can_download_material(principal: Principal) -> bool:
    return principal.role in ANY_ROLE


@router.post(
    "",
    response_model=FileUploadResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit(RateLimitCategory.STRICT))],
)
async def upload_material(
    request: Request,
    title: str = Form(..., min_length=1, max_length=255),
    subject: str = Form(..., min_length=1, max_length=255),
    description: Optional[str] = Form(None),
    semester: Optional[int] = Form(None, ge=1, le=12),
    file: UploadFile = File(...),
    principal: Principal = Depends(require_roles(*STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Upload a course material (teachers and admins)"""
    gateway = get_security_services(request).files
    stored = (await gateway.save_upload(file, principal.id, "materials")).unwrap()

    material = Material(
        title=title.strip(),
        subject=subject.strip(),
        description=description,
        semester=semester,
        file_path=stored.relative_path,
        file_type=stored.extension.lstrip("."),
        file_size=stored.size,
        owner_id=principal.id,
    )
    db.add(material)
    try:
        await db.commit()
    except Exception:
        # No row references the stored file
        await gateway.delete_stored(stored.relative_path)
        logger.error(f"Discarded upload {stored.relative_path} after a failed commit")
        raise
    await db.refresh(material)

    logger.info(f"Material {material.id} uploaded by {principal.id}")
    return FileUploadResponse(
        message="Material uploaded",
        material=MaterialResponse.model_validate(material),
    )


@router.get(
    "/{material_id}/download",
    dependencies=[Depends(rate_limit(RateLimitCategory.API))],
)
async def download_material(
    material_id: str,
    request: Request,
    principal: Principal = Depends(require_roles(*ANY_ROLE)),
    db: AsyncSession = Depends(get_db),
):
    """Stream a material file as an attachment"""
    material = await db.get(Material, material_id)
    if material is None:
        raise NotFoundError("Material", material_id)

    gateway = get_security_services(request).files
    ticket = gateway.prepare_download(
        StoredFileRef(material.file_path, owner_id=material.owner_id),
        title=material.title,
        principal=principal,
        policy=can_download_material,
    ).unwrap()
    return gateway.serve(ticket, principal)
