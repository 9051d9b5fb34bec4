from fastapi import Request
from imagevault.cache import PresignedUrlCache
from imagevault.storage.dynamodb import AllowlistService, DynamoDBService
from imagevault.storage.s3 import S3Service

def get_s3_service(request: Request) -> S3Service:
    """Dependency provider for S3Service"""
    return request.app.state.s3

def get_dynamodb_service(request: Request) -> DynamoDBService:
    """Dependency provider for DynamoDBService"""
    return request.app.state.db

def get_allowlist_service(request: Request) -> AllowlistService:
    """Dependency provider for AllowlistService"""
    return request.app.state.allowlist

def get_url_cache(request: Request) -> PresignedUrlCache:
    """Dependency provider for the process-wide presigned URL cache"""
    return request.app.state.url_cache
