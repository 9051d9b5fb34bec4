from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from functools import partial
from io import BytesIO
from typing import Any, Dict, List, Optional
import logging
import re
import uuid
from PIL import Image
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from imagevault.auth import Session, can_modify
from imagevault.cache import PresignedUrlCache
from imagevault.storage.dynamodb import DynamoDBService
from imagevault.storage.s3 import S3Service
from imagevault.image_service.models import (
    ImageCreate,
    ImageRecord,
    ImageUpdate,
    ListImagesResponse,
    PresignedUrlResponse,
    UploadCredentials,
    parse_payload,
)
from imagevault.settings import settings
from imagevault.exceptions import (
    ConfigurationException,
    ConflictException,
    ImageNotFoundException,
    UnauthorizedException,
    UpstreamException,
    ValidationException,
)

log = logging.getLogger(__name__)

UNSAFE_FILENAME_CHARS = re.compile(r"[^\w.\-]")

# Formats Pillow can confirm for the image types we accept
PIL_MIME_MAP = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
}

def _require_identity(session: Optional[Session]) -> Session:
    if session is None or not session.user_id:
        raise UnauthorizedException("Unauthorized: sign in required")
    return session

def _require_bucket():
    if not settings.s3_bucket_name:
        raise ConfigurationException("S3_BUCKET_NAME is not configured")

def _require_table():
    if not settings.images_table:
        raise ConfigurationException("IMAGES_TABLE is not configured")

def _is_condition_failure(e: Exception) -> bool:
    return (
        isinstance(e, ClientError)
        and e.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"
    )

def sanitize_filename(file_name: str) -> str:
    """Replaces anything other than word characters, dots and hyphens with ``_``."""
    return UNSAFE_FILENAME_CHARS.sub("_", file_name)

def new_object_key(file_name: str) -> str:
    """Generates a new unique object key, which doubles as the image ID."""
    return f"{uuid.uuid4()}-{sanitize_filename(file_name)}"

def validate_image_bytes(file_bytes: bytes, content_type: str) -> str:
    """Validate that the stored object is a real image of the declared type."""
    try:
        img = Image.open(BytesIO(file_bytes))
        img.load()
    except Exception:
        raise ValidationException("Invalid image file")
    mime_type = PIL_MIME_MAP.get((img.format or "").upper())
    if mime_type != content_type:
        raise ValidationException(f"Stored file is {mime_type or 'an unsupported image'}, not {content_type}")
    return mime_type

# -------------------------
# Upload credentials
# -------------------------
def issue_upload_credentials(
    s3: S3Service,
    session: Optional[Session],
    file_name: str,
    file_type: str,
) -> UploadCredentials:
    """Issues presigned POST credentials for a single freshly generated key."""
    _require_identity(session)
    if file_type not in settings.allowed_upload_types:
        raise ValidationException("Unsupported file type")
    _require_bucket()

    key = new_object_key(file_name)
    try:
        post = s3.generate_presigned_post(
            key,
            file_type,
            expires_in=settings.upload_expire_seconds,
            max_bytes=settings.max_upload_bytes,
        )
    except (BotoCoreError, ClientError) as e:
        log.error(f"S3 generate_presigned_post failed: {e}")
        raise UpstreamException("Failed to generate presigned POST")

    log.info("Issued upload credentials for %s to %s", key, session.user_id)
    return UploadCredentials(
        url=post["url"],
        fields=post["fields"],
        key=key,
        file_name=file_name,
        expires_in=settings.upload_expire_seconds,
    )

# -------------------------
# Create
# -------------------------
def _stored_object(s3: S3Service, key: str) -> Dict[str, Any]:
    """Confirms the uploaded object exists and, for images, that it really is one."""
    try:
        head = s3.head(key)
    except (BotoCoreError, ClientError) as e:
        log.error(f"S3 head failed: {e}")
        raise UpstreamException("Failed to check uploaded file")
    if head is None:
        raise ImageNotFoundException(key)

    content_type = head.get("ContentType")
    if content_type not in settings.allowed_upload_types:
        raise ValidationException("Unsupported file type")

    if settings.verify_uploaded_images and content_type in PIL_MIME_MAP.values():
        try:
            contents = s3.read(key)
        except (BotoCoreError, ClientError) as e:
            log.error(f"S3 read failed: {e}")
            raise UpstreamException("Failed to read uploaded file")
        validate_image_bytes(contents, content_type)

    return {"content_type": content_type, "size": head.get("ContentLength")}

def create_image(
    db: DynamoDBService,
    s3: S3Service,
    session: Optional[Session],
    payload: Any,
) -> ImageRecord:
    """Writes the metadata record for an object the caller has already uploaded."""
    _require_identity(session)
    _require_table()
    _require_bucket()

    data = parse_payload(ImageCreate, payload)
    stored = _stored_object(s3, data.image_id)

    image = ImageRecord(
        image_id=data.image_id,
        user_id=session.user_id,
        title=data.title,
        description=data.description,
        tags=data.tags,
        content_type=stored["content_type"],
        size=stored["size"],
        uploaded_at=datetime.now(timezone.utc),
    )
    item = image.model_dump(mode="json", by_alias=True, exclude={"url"}, exclude_none=True)
    try:
        db.put_metadata(item)
    except (BotoCoreError, ClientError) as e:
        if _is_condition_failure(e):
            raise ConflictException(f"Image with ID '{data.image_id}' already exists.")
        log.error(f"DynamoDB put_metadata failed: {e}")
        raise UpstreamException("Failed to create image")

    log.info("Saved image metadata %s for %s", image.image_id, image.user_id)
    return image

# -------------------------
# Read
# -------------------------
def presign_image(
    s3: S3Service,
    cache: PresignedUrlCache,
    key: str,
    expires_in: Optional[int] = None,
) -> str:
    """
    Returns a presigned GET URL for ``key``.

    URLs with the default lifetime are shared through ``cache``; a caller
    asking for a different lifetime always gets a freshly signed URL.
    """
    _require_bucket()
    ttl = expires_in or settings.presign_expire_seconds
    sign = partial(s3.generate_presigned_url, key, expires_in=ttl)
    if ttl != settings.presign_expire_seconds:
        return sign()
    return cache.get_or_sign(key, ttl, sign)

def _to_record(item: Dict[str, Any]) -> ImageRecord:
    try:
        return ImageRecord.model_validate(item)
    except ValidationError as e:
        log.error("Stored record %s is malformed: %s", item.get("imageId"), e)
        raise UpstreamException(f"Stored record for image '{item.get('imageId')}' is malformed")

def _with_url(s3: S3Service, cache: PresignedUrlCache, item: Dict[str, Any]) -> ImageRecord:
    image = _to_record(item)
    try:
        image.url = presign_image(s3, cache, image.image_id)
    except (BotoCoreError, ClientError) as e:
        log.warning("presign failed for %s: %s", image.image_id, e)
    return image

def _get_item(db: DynamoDBService, image_id: str) -> Dict[str, Any]:
    try:
        item = db.get_metadata(image_id)
    except (BotoCoreError, ClientError) as e:
        log.error(f"DynamoDB get_metadata failed: {e}")
        raise UpstreamException("Failed to fetch image")
    if not item:
        raise ImageNotFoundException(image_id)
    return item

def get_image(
    db: DynamoDBService,
    s3: S3Service,
    cache: PresignedUrlCache,
    session: Optional[Session],
    image_id: str,
) -> ImageRecord:
    _require_identity(session)
    _require_table()
    _require_bucket()
    return _with_url(s3, cache, _get_item(db, image_id))

def _listed(s3: S3Service, cache: PresignedUrlCache, item: Dict[str, Any]) -> Optional[ImageRecord]:
    try:
        return _with_url(s3, cache, item)
    except UpstreamException:
        return None

def _sign_all(s3: S3Service, cache: PresignedUrlCache, items: List[Dict[str, Any]]) -> List[ImageRecord]:
    """Signs a page of records; records that cannot be read back are left out."""
    if not items:
        return []
    workers = max(1, min(settings.sign_workers, len(items)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        return [image for image in pool.map(partial(_listed, s3, cache), items) if image is not None]

def list_images(
    db: DynamoDBService,
    s3: S3Service,
    cache: PresignedUrlCache,
    session: Optional[Session],
    page_size: Optional[int] = None,
    start_key: Optional[str] = None,
    owner: Optional[str] = None,
) -> ListImagesResponse:
    """Returns one page of records, each with a presigned URL where signing succeeded."""
    _require_identity(session)
    _require_table()
    _require_bucket()

    limit = settings.default_page_size if page_size is None else page_size
    if limit < 1 or limit > settings.max_page_size:
        raise ValidationException(f"pageSize: must be between 1 and {settings.max_page_size}")

    exclusive_start_key = {"imageId": start_key} if start_key else None
    try:
        resp = db.scan_metadata(limit=limit, exclusive_start_key=exclusive_start_key, owner=owner)
    except (BotoCoreError, ClientError) as e:
        log.error(f"DynamoDB scan_metadata failed: {e}")
        raise UpstreamException("Failed to list images")

    items = _sign_all(s3, cache, resp.get("Items", []))
    last = resp.get("LastEvaluatedKey")
    return ListImagesResponse(items=items, last_evaluated_key=last.get("imageId") if last else None)

# -------------------------
# Update
# -------------------------
def update_image(
    db: DynamoDBService,
    session: Optional[Session],
    image_id: str,
    payload: Any,
) -> ImageRecord:
    """Applies a partial title/tags/description update for the owner or an admin."""
    _require_identity(session)
    _require_table()

    changes = parse_payload(ImageUpdate, payload).changes()
    if not changes:
        raise ValidationException("No fields to update")

    item = _get_item(db, image_id)
    if not can_modify(session, item):
        raise UnauthorizedException("Unauthorized: only the owner or an admin may update this image")

    owner = None if session.is_admin else session.user_id
    try:
        attributes = db.update_metadata(image_id, changes, owner=owner)
    except (BotoCoreError, ClientError) as e:
        if _is_condition_failure(e):
            raise ImageNotFoundException(image_id)
        log.error(f"DynamoDB update_metadata failed: {e}")
        raise UpstreamException("Failed to update image")

    log.info("Updated image %s (%s)", image_id, ", ".join(changes))
    return _to_record(attributes)

# -------------------------
# Delete
# -------------------------
def delete_image(
    db: DynamoDBService,
    s3: S3Service,
    session: Optional[Session],
    image_id: str,
    cache: Optional[PresignedUrlCache] = None,
):
    """
    Removes the stored object and then its metadata record.

    If the object is deleted but the record is not, the error is reported
    and the dangling record is left for a repeated delete to clean up.
    """
    _require_identity(session)
    _require_table()
    _require_bucket()

    item = _get_item(db, image_id)
    if not can_modify(session, item):
        raise UnauthorizedException("Unauthorized: only the owner or an admin may delete this image")

    try:
        s3.delete(image_id)
    except (BotoCoreError, ClientError) as e:
        log.error(f"S3 delete failed: {e}")
        raise UpstreamException("Failed to delete file")

    if cache is not None:
        cache.invalidate(image_id)

    owner = None if session.is_admin else session.user_id
    try:
        db.delete_metadata(image_id, owner=owner)
    except (BotoCoreError, ClientError) as e:
        log.error("File %s deleted but metadata delete failed: %s", image_id, e)
        if _is_condition_failure(e):
            raise ConflictException(f"Image with ID '{image_id}' was changed or removed during delete.")
        raise UpstreamException("Failed to delete metadata")

    log.info("Deleted image %s", image_id)

def download_url(
    db: DynamoDBService,
    s3: S3Service,
    cache: PresignedUrlCache,
    session: Optional[Session],
    image_id: str,
    expires_in: Optional[int] = None,
) -> PresignedUrlResponse:
    """Presigned URL for an existing image, failing loudly if it cannot be signed."""
    _require_identity(session)
    _require_table()
    _get_item(db, image_id)

    ttl = expires_in or settings.presign_expire_seconds
    try:
        url = presign_image(s3, cache, image_id, expires_in=ttl)
    except (BotoCoreError, ClientError) as e:
        log.error(f"Failed to generate presigned URL: {e}")
        raise UpstreamException("Failed to generate download URL")
    return PresignedUrlResponse(image_id=image_id, url=url, expires_in=ttl)
