"""
Photo gallery endpoints. Listing is public; adding, editing and removing
entries is admin only. Images are referenced by URL.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from foundation_api.auth import admin_required
from foundation_api.db import get_db
from foundation_api.models import GalleryImage, User
from foundation_api.openapi_schemas import APIResponse
from foundation_api.schemas import GalleryImageCreate, GalleryImageOut, GalleryImageUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/gallery", tags=["Gallery"])


def _get_image_or_404(db: Session, image_id: int) -> GalleryImage:
    image = db.query(GalleryImage).filter(GalleryImage.id == image_id).first()
    if not image:
        raise HTTPException(status_code=404, detail="Image not found")
    return image


# PUBLIC_INTERFACE
@router.get("/", response_model=List[GalleryImageOut], summary="List gallery images")
def list_images(db: Session = Depends(get_db)):
    return db.query(GalleryImage).order_by(GalleryImage.created_at.desc(), GalleryImage.id.desc()).all()


# PUBLIC_INTERFACE
@router.post("/", response_model=GalleryImageOut, status_code=status.HTTP_201_CREATED, summary="Add gallery image")
def create_image(
    image_in: GalleryImageCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    image = GalleryImage(**image_in.model_dump(), uploaded_by_id=current_user.id)
    db.add(image)
    db.commit()
    db.refresh(image)
    logger.info("gallery image added", extra={"image_id": image.id})
    return image


# PUBLIC_INTERFACE
@router.put("/{image_id}", response_model=GalleryImageOut, summary="Update gallery image")
def update_image(
    image_id: int,
    image_in: GalleryImageUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    image = _get_image_or_404(db, image_id)
    for k, v in image_in.model_dump(exclude_unset=True).items():
        if v is not None:
            setattr(image, k, v)
    db.commit()
    db.refresh(image)
    return image


# PUBLIC_INTERFACE
@router.delete("/{image_id}", response_model=APIResponse, summary="Delete gallery image")
def delete_image(image_id: int, db: Session = Depends(get_db), current_user: User = Depends(admin_required)):
    image = _get_image_or_404(db, image_id)
    db.delete(image)
    db.commit()
    logger.info("gallery image deleted", extra={"image_id": image_id})
    return APIResponse(success=True, message="Image deleted successfully")
