from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import List, Optional

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_title: str = Field("Image Vault")
    log_level: str = Field("INFO")

    # AWS
    aws_region: str = Field("us-east-1")
    aws_endpoint_url: Optional[str] = Field(None)
    external_endpoint: Optional[str] = Field(None)
    aws_access_key_id: str = Field("test")
    aws_secret_access_key: str = Field("test")
    auto_create_resources: bool = Field(False)

    # An empty name means "not configured"
    s3_bucket_name: str = Field("image-vault-bucket")
    images_table: str = Field("Images")
    email_table: str = Field("Users")

    # Uploads
    upload_expire_seconds: int = Field(600)
    max_upload_bytes: int = Field(5 * 1024 * 1024)
    allowed_upload_types: List[str] = Field(
        default_factory=lambda: ["image/png", "image/jpeg", "image/webp", "video/mp4"]
    )
    verify_uploaded_images: bool = Field(True)

    # Signed read URLs
    presign_expire_seconds: int = Field(900)
    presign_cache_capacity: int = Field(1024)
    presign_cache_lookup_margin: float = Field(1.0)
    presign_cache_expiry_margin: float = Field(2.0)
    sign_workers: int = Field(8)

    # Listing
    default_page_size: int = Field(10)
    max_page_size: int = Field(100)

    # Sessions are JWTs minted by the sign-in flow with a shared secret
    nextauth_secret: str = Field("change-this-secret")
    session_algorithm: str = Field("HS256")

settings = Settings()
