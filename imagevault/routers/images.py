from fastapi import APIRouter, Body, Depends, Query, Response
from typing import Any, Optional
import logging

from imagevault.auth import Session, get_session
from imagevault.cache import PresignedUrlCache
from imagevault.storage.dynamodb import DynamoDBService
from imagevault.storage.s3 import S3Service
from imagevault.dependencies import get_s3_service, get_dynamodb_service, get_url_cache
from imagevault.image_service import service
from imagevault.image_service.models import (
    ImageRecord,
    ListImagesResponse,
    PresignedUrlResponse,
    UploadCredentials,
    UploadRequest,
    parse_payload,
)

log = logging.getLogger(__name__)

router = APIRouter(
    prefix="/images",
    tags=["images"]
)

@router.post("/uploads", response_model=UploadCredentials, status_code=201)
def create_upload(
    payload: Any = Body(...),
    response: Response = None,
    session: Session = Depends(get_session),
    s3: S3Service = Depends(get_s3_service),
):
    """
        Issues short-lived presigned POST credentials.

        The browser uploads the file straight to S3 with ``url`` and ``fields``
        and then calls ``POST /images`` with the returned ``key`` as ``imageId``.
    """
    if response:
        response.headers["Cache-Control"] = "no-store"
    request = parse_payload(UploadRequest, payload)
    return service.issue_upload_credentials(s3, session, request.file_name, request.file_type)

@router.post("", response_model=ImageRecord, response_model_exclude_none=True, status_code=201)
def create_image(
    payload: Any = Body(...),
    session: Session = Depends(get_session),
    db: DynamoDBService = Depends(get_dynamodb_service),
    s3: S3Service = Depends(get_s3_service),
):
    """Records metadata for an uploaded file. The owner is always the caller."""
    return service.create_image(db, s3, session, payload)

@router.get("", response_model=ListImagesResponse, response_model_exclude_none=True)
def list_images(
    page_size: Optional[int] = Query(None, alias="pageSize"),
    start_key: Optional[str] = Query(None, alias="startKey"),
    user_id: Optional[str] = Query(None, alias="userId"),
    session: Session = Depends(get_session),
    db: DynamoDBService = Depends(get_dynamodb_service),
    s3: S3Service = Depends(get_s3_service),
    cache: PresignedUrlCache = Depends(get_url_cache),
):
    """Lists one page of images; follow ``lastEvaluatedKey`` with ``startKey``."""
    return service.list_images(
        db, s3, cache, session,
        page_size=page_size,
        start_key=start_key,
        owner=user_id,
    )

@router.get("/{image_id}", response_model=ImageRecord, response_model_exclude_none=True)
def get_image(
    image_id: str,
    session: Session = Depends(get_session),
    db: DynamoDBService = Depends(get_dynamodb_service),
    s3: S3Service = Depends(get_s3_service),
    cache: PresignedUrlCache = Depends(get_url_cache),
):
    """Gets image metadata with a presigned URL."""
    return service.get_image(db, s3, cache, session, image_id)

@router.get("/{image_id}/download", response_model=PresignedUrlResponse)
def get_presigned_url(
    image_id: str,
    expires_in: Optional[int] = Query(
        None, alias="expiresIn", ge=60, le=86400, description="Expiration time in seconds (60-86400)"
    ),
    session: Session = Depends(get_session),
    db: DynamoDBService = Depends(get_dynamodb_service),
    s3: S3Service = Depends(get_s3_service),
    cache: PresignedUrlCache = Depends(get_url_cache),
):
    """
    Generates a presigned URL for downloading an image.

    The URL is valid for a limited time (default 15 minutes, max 24 hours).
    """
    return service.download_url(db, s3, cache, session, image_id, expires_in=expires_in)

@router.patch("/{image_id}", response_model=ImageRecord, response_model_exclude_none=True)
def update_image(
    image_id: str,
    payload: Any = Body(...),
    session: Session = Depends(get_session),
    db: DynamoDBService = Depends(get_dynamodb_service),
):
    """Updates title, tags and/or description. Owner or admin only."""
    return service.update_image(db, session, image_id, payload)

@router.delete("/{image_id}", status_code=204)
def delete_image(
    image_id: str,
    session: Session = Depends(get_session),
    db: DynamoDBService = Depends(get_dynamodb_service),
    s3: S3Service = Depends(get_s3_service),
    cache: PresignedUrlCache = Depends(get_url_cache),
):
    """Deletes an image file and its metadata. Owner or admin only."""
    service.delete_image(db, s3, session, image_id, cache=cache)
    return Response(status_code=204)
