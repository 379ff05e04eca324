from datetime import datetime
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, UploadFile
from loguru import logger
from sqlmodel import Session, select

from jerseynexus.core.errors import send_response
from jerseynexus.db.session import get_session
from jerseynexus.models import ProductImage, User
from jerseynexus.routers.auth import get_current_user, require_admin
from jerseynexus.schemas import CamelModel
from jerseynexus.serializers import serialize_user
from jerseynexus.services.notifier import manager
from jerseynexus.services.s3 import s3_service, upload_image

router = APIRouter()


class FileDelete(CamelModel):
    filepath: str


def _uploaded(key: str) -> dict:
    return {"key": key, "url": s3_service.get_public_url(key)}


@router.post("/profile")
def upload_profile_image(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Upload a profile image to S3 and make it the user's avatar."""
    key = upload_image(file, f"users/{current_user.id}")
    old_key = s3_service.key_from_url(current_user.avatar) if current_user.avatar else None

    current_user.avatar = key
    current_user.updated_at = datetime.utcnow()
    session.add(current_user)
    session.commit()
    session.refresh(current_user)

    if old_key and old_key.startswith(f"users/{current_user.id}/"):
        s3_service.delete_file(old_key)
    data = serialize_user(current_user)
    background_tasks.add_task(manager.profile_updated, current_user.id, data)
    return send_response("Profile image uploaded successfully", {**_uploaded(key), "user": data}, 201)


@router.post("/editor")
def upload_editor_image(file: UploadFile = File(...), admin: User = Depends(require_admin)):
    """Images embedded in blog posts from the rich-text editor."""
    key = upload_image(file, "editor")
    return send_response("Image uploaded successfully", _uploaded(key), 201)


@router.post("/products")
def upload_product_images(files: List[UploadFile] = File(...), admin: User = Depends(require_admin)):
    keys = [upload_image(file, "products") for file in files]
    return send_response("Images uploaded successfully", {"files": [_uploaded(key) for key in keys]}, 201)


@router.delete("/delete")
def delete_uploaded_file(payload: FileDelete, current_user: User = Depends(get_current_user),
                         session: Session = Depends(get_session)):
    key = s3_service.key_from_url(payload.filepath)
    if not key:
        raise HTTPException(status_code=400, detail="File is not stored in this bucket")

    owns_file = key.startswith(f"users/{current_user.id}/")
    if not (owns_file or current_user.is_admin):
        raise HTTPException(status_code=403, detail="Not authorized to delete this file")
    if not s3_service.delete_file(key):
        raise HTTPException(status_code=500, detail="Failed to delete file")

    if current_user.avatar and s3_service.key_from_url(current_user.avatar) == key:
        current_user.avatar = None
        session.add(current_user)
        session.commit()
    return send_response("File deleted successfully", {"key": key})


@router.post("/cleanup")
def cleanup_product_images(admin: User = Depends(require_admin), session: Session = Depends(get_session)):
    """Delete objects under products/ that no product image references."""
    referenced = {
        key for key in (s3_service.key_from_url(url) for url in session.exec(select(ProductImage.url)).all()) if key
    }
    orphans = [key for key in s3_service.list_keys("products/") if key not in referenced]
    deleted = [key for key in orphans if s3_service.delete_file(key)]
    logger.info(f"image cleanup removed {len(deleted)} of {len(orphans)} orphaned object(s)")
    return send_response("Cleanup completed", {
        "checked": len(referenced) + len(orphans),
        "orphaned": len(orphans),
        "deleted": deleted,
    })
