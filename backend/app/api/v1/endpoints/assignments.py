"""
Assignment handouts.

Unpublished assignments are visible only to the teacher who created them
and to admins; once published every signed-in role may download them.
"""

from datetime import datetime
from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Callable, Optional

from app.core.database import get_db
from app.core.exceptions import AuthorizationError, NotFoundError
from app.core.logging_config import logger
from app.core.rate_limiter import RateLimitCategory
from app.core.types import utc_now
from app.models.assignment import Assignment
from app.models.user import UserRole
from app.modules.auth.dependencies import (
    ANY_ROLE,
    STAFF_ROLES,
    get_security_services,
    rate_limit,
    require_roles,
)
from app.modules.auth.principal import Principal
from app.modules.files.gateway import StoredFileRef
from app.schemas.files import AssignmentResponse, FileUploadResponse

router = APIRouter()


def can_manage_assignment(principal: Principal, assignment: Assignment) -> bool:
    if principal.role == UserRole.ADMIN:
        return True
    return principal.role == UserRole.TEACHER and str(assignment.owner_id) == principal.id


def assignment_download_policy(assignment: Assignment) -> Callable[[Principal], bool]:
    def policy(principal: Principal) -> bool:
        if assignment.is_published:
            return principal.role in ANY_ROLE
        return can_manage_assignment(principal, assignment)
    return policy


async def _get_assignment(db: AsyncSession, assignment_id: str) -> Assignment:
    assignment = await db.get(Assignment, assignment_id)
    if assignment is None:
        raise NotFoundError("Assignment", assignment_id)
    return assignment


@router.post(
    "",
    response_model=FileUploadResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit(RateLimitCategory.STRICT))],
)
async def upload_assignment(
    request: Request,
    title: str = Form(..., min_length=1, max_length=255),
    subject: str = Form(..., min_length=1, max_length=255),
    description: Optional[str] = Form(None),
    due_date: Optional[datetime] = Form(None),
    is_published: bool = Form(False),
    file: UploadFile = File(...),
    principal: Principal = Depends(require_roles(*STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Upload an assignment handout (teachers and admins)"""
    gateway = get_security_services(request).files
    stored = (await gateway.save_upload(file, principal.id, "assignments")).unwrap()

    assignment = Assignment(
        title=title.strip(),
        subject=subject.strip(),
        description=description,
        due_date=due_date,
        is_published=is_published,
        published_at=utc_now() if is_published else None,
        file_path=stored.relative_path,
        file_type=stored.extension.lstrip("."),
        file_size=stored.size,
        owner_id=principal.id,
    )
    db.add(assignment)
    try:
        await db.commit()
    except Exception:
        # No row references the stored file
        await gateway.delete_stored(stored.relative_path)
        logger.error(f"Discarded upload {stored.relative_path} after a failed commit")
        raise
    await db.refresh(assignment)

    logger.info(f"Assignment {assignment.id} uploaded by {principal.id}")
    return FileUploadResponse(
        message="Assignment uploaded",
        assignment=AssignmentResponse.model_validate(assignment),
    )


@router.patch(
    "/{assignment_id}/publish",
    response_model=FileUploadResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(rate_limit(RateLimitCategory.STRICT))],
)
async def publish_assignment(
    assignment_id: str,
    request: Request,
    principal: Principal = Depends(require_roles(*STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Make an assignment visible to students"""
    assignment = await _get_assignment(db, assignment_id)
    if not can_manage_assignment(principal, assignment):
        logger.log_security_event(
            "publish_denied",
            path=request.url.path,
            principal_id=principal.id,
            assignment_id=assignment_id,
        )
        raise AuthorizationError()

    if not assignment.is_published:
        assignment.is_published = True
        assignment.published_at = utc_now()
        await db.commit()
        await db.refresh(assignment)
        logger.info(f"Assignment {assignment.id} published by {principal.id}")

    return FileUploadResponse(
        message="Assignment published",
        assignment=AssignmentResponse.model_validate(assignment),
    )


@router.get(
    "/{assignment_id}/download",
    dependencies=[Depends(rate_limit(RateLimitCategory.API))],
)
async def download_assignment(
    assignment_id: str,
    request: Request,
    principal: Principal = Depends(require_roles(*ANY_ROLE)),
    db: AsyncSession = Depends(get_db),
):
    """Stream an assignment file as an attachment"""
    assignment = await _get_assignment(db, assignment_id)

    gateway = get_security_services(request).files
    ticket = gateway.prepare_download(
        StoredFileRef(assignment.file_path, owner_id=assignment.owner_id),
        title=assignment.title,
        principal=principal,
        policy=assignment_download_policy(assignment),
    ).unwrap()
    return gateway.serve(ticket, principal)
