from typing import Any, Dict, List, Optional, Type, TypeVar
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from imagevault.exceptions import ValidationException, first_error_message

ModelT = TypeVar("ModelT", bound=BaseModel)

def normalize_tags(tags: List[str]) -> List[str]:
    """Strips tags, drops empty ones and removes exact duplicates, keeping first-seen order."""
    seen = set()
    result = []
    for tag in tags:
        tag = tag.strip()
        if tag and tag not in seen:
            seen.add(tag)
            result.append(tag)
    return result

def parse_payload(model: Type[ModelT], data: Any) -> ModelT:
    """Validates ``data`` against ``model``, reporting only the first offending field."""
    if not isinstance(data, dict):
        raise ValidationException("Payload must be a JSON object")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ValidationException(first_error_message(e.errors())) from e

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class ImageRecord(CamelModel):
    image_id: str
    user_id: str
    title: str = ""
    description: str = ""
    tags: List[str] = []
    content_type: Optional[str] = None
    size: Optional[int] = None
    uploaded_at: Optional[datetime] = None
    url: Optional[str] = None

class UploadRequest(CamelModel):
    file_name: str = Field(min_length=1)
    file_type: str = Field(min_length=1)

class UploadCredentials(CamelModel):
    url: str
    fields: Dict[str, str]
    key: str
    file_name: str
    expires_in: int

class ImageCreate(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    image_id: str = Field(min_length=1)
    title: str = ""
    tags: List[str] = []
    description: str = ""

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, value: List[str]) -> List[str]:
        return normalize_tags(value)

class ImageUpdate(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    title: Optional[str] = None
    tags: Optional[List[str]] = None
    description: Optional[str] = None

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        return normalize_tags(value) if value is not None else None

    def changes(self) -> Dict[str, Any]:
        """Stored attribute names and values for the fields actually supplied."""
        return self.model_dump(by_alias=True, exclude_none=True)

class ListImagesResponse(CamelModel):
    items: List[ImageRecord]
    last_evaluated_key: Optional[str] = None

class PresignedUrlResponse(CamelModel):
    image_id: str
    url: str
    expires_in: int

class SessionInfo(CamelModel):
    email: Optional[str] = None
    name: Optional[str] = None
    is_admin: bool = False
