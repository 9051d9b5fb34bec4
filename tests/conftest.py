import io
import os
import pytest
from moto import mock_aws
from fastapi.testclient import TestClient
from PIL import Image
import boto3
import jwt
from datetime import datetime, timedelta, timezone

# Set test environment variables BEFORE importing app modules
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
os.environ["AWS_SECURITY_TOKEN"] = "testing"
os.environ["AWS_SESSION_TOKEN"] = "testing"
os.environ["AWS_REGION"] = "us-east-1"
os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
os.environ["S3_BUCKET_NAME"] = "image-vault-bucket"
os.environ["IMAGES_TABLE"] = "Images"
os.environ["EMAIL_TABLE"] = "Users"
os.environ["NEXTAUTH_SECRET"] = "test-secret"
os.environ["AUTO_CREATE_RESOURCES"] = "false"
# Clear the AWS_ENDPOINT_URL so moto mocks are used instead of localstack
os.environ.pop("AWS_ENDPOINT_URL", None)

from imagevault.main import app
from imagevault.auth import Session
from imagevault.settings import settings
from imagevault.cache import PresignedUrlCache
from imagevault.storage.s3 import S3Service
from imagevault.storage.dynamodb import AllowlistService, DynamoDBService

BUCKET = "image-vault-bucket"
OWNER = "owner@example.com"
OTHER = "other@example.com"
ADMIN = "admin@example.com"


def make_png_bytes(color="red"):
    """Generate a simple valid PNG in-memory."""
    img = Image.new("RGB", (10, 10), color=color)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture(scope="function")
def aws_credentials():
    """Mocked AWS Credentials for moto."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"


@pytest.fixture(scope="function")
def aws(aws_credentials):
    """Bucket, images table and a seeded allow-list inside a moto context."""
    with mock_aws():
        s3 = boto3.client("s3", region_name="us-east-1")
        s3.create_bucket(Bucket=BUCKET)

        dynamodb = boto3.client("dynamodb", region_name="us-east-1")
        dynamodb.create_table(
            TableName="Images",
            KeySchema=[{"AttributeName": "imageId", "KeyType": "HASH"}],
            AttributeDefinitions=[{"AttributeName": "imageId", "AttributeType": "S"}],
            BillingMode="PAY_PER_REQUEST",
        )
        dynamodb.create_table(
            TableName="Users",
            KeySchema=[{"AttributeName": "email", "KeyType": "HASH"}],
            AttributeDefinitions=[{"AttributeName": "email", "AttributeType": "S"}],
            BillingMode="PAY_PER_REQUEST",
        )
        users = boto3.resource("dynamodb", region_name="us-east-1").Table("Users")
        users.put_item(Item={"email": OWNER, "isAdmin": False})
        users.put_item(Item={"email": OTHER, "isAdmin": False})
        users.put_item(Item={"email": ADMIN, "isAdmin": True})

        yield s3


@pytest.fixture
def s3_service(aws):
    return S3Service()


@pytest.fixture
def db_service(aws):
    return DynamoDBService()


@pytest.fixture
def allowlist(aws):
    return AllowlistService()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def url_cache(clock):
    return PresignedUrlCache(capacity=100, lookup_margin=1.0, expiry_margin=2.0, clock=clock)


@pytest.fixture
def owner():
    return Session(email=OWNER, name="Owner")


@pytest.fixture
def other():
    return Session(email=OTHER, name="Other")


@pytest.fixture
def admin():
    return Session(email=ADMIN, name="Admin", is_admin=True)


@pytest.fixture
def upload_object(aws):
    """Stores an object the way a browser upload would."""
    def _upload(key, body=None, content_type="image/png"):
        aws.put_object(
            Bucket=BUCKET,
            Key=key,
            Body=make_png_bytes() if body is None else body,
            ContentType=content_type,
        )
        return key
    return _upload


def make_session_token(email, name=None, is_admin=False, ttl_seconds=3600):
    """Mints a bearer token the way the identity provider's sign-in flow does."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": email,
        "email": email,
        "name": name,
        "isAdmin": is_admin,
        "iat": now,
        "exp": now + timedelta(seconds=ttl_seconds),
    }
    return jwt.encode(payload, settings.nextauth_secret, algorithm=settings.session_algorithm)


@pytest.fixture
def session_token():
    return make_session_token


@pytest.fixture
def auth_headers():
    def _headers(email=OWNER, name=None):
        return {"Authorization": f"Bearer {make_session_token(email, name)}"}
    return _headers


@pytest.fixture(scope="function")
def test_client(s3_service, db_service, allowlist, url_cache):
    # Replace the original services with mocked ones
    app.state.s3 = s3_service
    app.state.db = db_service
    app.state.allowlist = allowlist
    app.state.url_cache = url_cache

    with TestClient(app) as client:
        yield client
