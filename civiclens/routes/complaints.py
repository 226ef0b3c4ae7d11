import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles
import aiofiles.os
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from pydantic import BaseModel

from civiclens.core.auth import get_complaint_service, get_current_user_id, get_dashboard_service
from civiclens.core.config import get_app_settings
from civiclens.core.errors import (
    CivicLensError,
    CommentNotFoundError,
    ComplaintNotFoundError,
    InvalidCommentError,
    InvalidStatusTransitionError,
    PermissionDeniedError,
    ServiceNotInitializedError,
    VerificationRejected,
    VerificationRejection,
)
from civiclens.services.complaint_service import ComplaintService
from civiclens.services.dashboard_service import DashboardService
from civiclens.utils.image_utils import detect_mime_from_path

logger = logging.getLogger(__name__)

router = APIRouter()

ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp"}

_REJECTION_STATUS = {
    VerificationRejection.NOT_RESOLVED: 400,
    VerificationRejection.SELF_VERIFICATION: 403,
    VerificationRejection.DUPLICATE_VERIFICATION: 409,
}


class StatusUpdateRequest(BaseModel):
    status: str
    note: Optional[str] = None
    after_image: Optional[str] = None


class CommentRequest(BaseModel):
    text: str


def http_error(e: CivicLensError) -> HTTPException:
    """Translate a core error into the HTTP response the client sees."""
    if isinstance(e, (ComplaintNotFoundError, CommentNotFoundError)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, VerificationRejected):
        return HTTPException(
            status_code=_REJECTION_STATUS[e.reason],
            detail={"reason": e.reason.value, "message": e.message},
        )
    if isinstance(e, PermissionDeniedError):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, (InvalidStatusTransitionError, InvalidCommentError)):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, ServiceNotInitializedError):
        return HTTPException(status_code=503, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def _dump(model) -> Dict[str, Any]:
    return model.model_dump(by_alias=True, mode="json")


async def save_upload(image: UploadFile, subdir: str) -> Dict[str, str]:
    """Store an uploaded image under the upload directory; returns its disk and public paths."""
    content_type = (image.content_type or "").lower() or detect_mime_from_path(image.filename or "")
    if content_type not in ALLOWED_IMAGE_TYPES:
        raise HTTPException(status_code=400, detail="Invalid image format")

    suffix = Path(image.filename or "").suffix.lower() or ".jpg"
    filename = f"{uuid.uuid4().hex}{suffix}"
    target_dir = Path(get_app_settings().upload_dir) / subdir
    target_dir.mkdir(parents=True, exist_ok=True)
    file_path = target_dir / filename

    content = await image.read()
    if not content:
        raise HTTPException(status_code=400, detail="Image is required")
    async with aiofiles.open(file_path, "wb") as f:
        await f.write(content)

    return {
        "file_path": str(file_path),
        "public_path": f"/uploads/{subdir}/{filename}",
        "mime_type": content_type,
    }


async def discard_upload(upload: Dict[str, str]) -> None:
    try:
        await aiofiles.os.remove(upload["file_path"])
    except OSError as e:
        logger.warning(f"⚠️ Could not remove upload {upload['file_path']}: {e}")


@router.post("/complaints", status_code=201)
async def create_complaint(
    title: str = Form(...),
    image: UploadFile = File(...),
    description: str = Form(""),
    location: Optional[str] = Form(None),
    address: str = Form(""),
    user_id: str = Depends(get_current_user_id),
    service: ComplaintService = Depends(get_complaint_service),
):
    if not title.strip():
        raise HTTPException(status_code=400, detail="Title is required")

    upload = await save_upload(image, "complaints")
    try:
        complaint = await service.create_complaint(
            citizen_id=user_id,
            title=title,
            image_path=upload["public_path"],
            file_path=upload["file_path"],
            mime_type=upload["mime_type"],
            description=description,
            location=location,
            address=address,
        )
    except CivicLensError as e:
        await discard_upload(upload)
        raise http_error(e)
    except Exception:
        await discard_upload(upload)
        raise
    return _dump(complaint)


@router.get("/complaints")
async def list_complaints(
    limit: int = Query(50, ge=1, le=200),
    skip: int = Query(0, ge=0),
    status: Optional[str] = None,
    category: Optional[str] = None,
    service: ComplaintService = Depends(get_complaint_service),
) -> List[Dict[str, Any]]:
    complaints = await service.list_complaints(limit=limit, skip=skip, status=status, category=category)
    return [_dump(c) for c in complaints]


@router.get("/complaints/{complaint_id}")
async def get_complaint(complaint_id: str, service: ComplaintService = Depends(get_complaint_service)):
    try:
        return _dump(await service.get_complaint(complaint_id))
    except CivicLensError as e:
        raise http_error(e)


@router.put("/complaints/{complaint_id}/vote")
async def toggle_vote(
    complaint_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ComplaintService = Depends(get_complaint_service),
):
    try:
        complaint, voted = await service.toggle_vote(complaint_id, user_id)
    except CivicLensError as e:
        raise http_error(e)
    return {"voted": voted, "complaint": _dump(complaint)}


@router.post("/complaints/{complaint_id}/comments", status_code=201)
async def add_comment(
    complaint_id: str,
    payload: CommentRequest,
    user_id: str = Depends(get_current_user_id),
    service: ComplaintService = Depends(get_complaint_service),
):
    try:
        complaint, comment = await service.add_comment(complaint_id, user_id, payload.text)
    except CivicLensError as e:
        raise http_error(e)
    return {"comment": _dump(comment), "complaint": _dump(complaint)}


@router.get("/complaints/{complaint_id}/comments")
async def list_comments(complaint_id: str, service: ComplaintService = Depends(get_complaint_service)):
    try:
        comments = await service.list_comments(complaint_id)
    except CivicLensError as e:
        raise http_error(e)
    return [_dump(c) for c in comments]


@router.put("/complaints/{complaint_id}/comments/{comment_id}/like")
async def toggle_comment_like(
    complaint_id: str,
    comment_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ComplaintService = Depends(get_complaint_service),
):
    try:
        comment, liked = await service.toggle_comment_like(comment_id, user_id, complaint_id)
    except CivicLensError as e:
        raise http_error(e)
    return {"liked": liked, "comment": _dump(comment)}


@router.put("/complaints/{complaint_id}/status")
async def update_status(
    complaint_id: str,
    payload: StatusUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    service: ComplaintService = Depends(get_complaint_service),
):
    try:
        complaint = await service.update_status(
            complaint_id,
            payload.status,
            user_id,
            note=payload.note,
            after_image=payload.after_image,
        )
    except CivicLensError as e:
        raise http_error(e)
    return _dump(complaint)


@router.post("/complaints/{complaint_id}/verify", status_code=201)
async def verify_complaint(
    complaint_id: str,
    image: UploadFile = File(...),
    location: Optional[str] = Form(None),
    address: Optional[str] = Form(None),
    user_id: str = Depends(get_current_user_id),
    service: ComplaintService = Depends(get_complaint_service),
):
    upload = await save_upload(image, "verifications")
    try:
        complaint, submission = await service.verify_complaint(
            complaint_id,
            user_id,
            upload["public_path"],
            verification_location=location,
            verification_address=address,
        )
    except CivicLensError as e:
        await discard_upload(upload)
        raise http_error(e)
    except Exception:
        await discard_upload(upload)
        raise
    return {"submission": _dump(submission), "complaint": _dump(complaint)}


@router.delete("/complaints/{complaint_id}")
async def delete_complaint(
    complaint_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ComplaintService = Depends(get_complaint_service),
):
    try:
        return await service.delete_complaint(complaint_id, user_id)
    except CivicLensError as e:
        raise http_error(e)


@router.get("/users/{user_id}/points")
async def get_user_points(user_id: str, service: ComplaintService = Depends(get_complaint_service)):
    return {"user_id": user_id, "total_points": await service.get_total_points(user_id)}


@router.get("/location/reverse")
async def reverse_geocode(
    request: Request,
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
):
    factory = getattr(request.app.state, "services", None)
    if factory is None:
        raise HTTPException(status_code=503, detail=str(ServiceNotInitializedError()))
    try:
        location_service = factory.get_location_service()
    except CivicLensError as e:
        raise http_error(e)
    return await location_service.reverse_geocode(lat, lon)


@router.get("/dashboard")
async def get_dashboard(
    user_id: str = Depends(get_current_user_id),
    service: DashboardService = Depends(get_dashboard_service),
):
    return await service.get_dashboard(user_id)
