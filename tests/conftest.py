import mongomock
import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient

from builders import now
from database import Database
from mailer import MailError
from main import app
from security import create_token, hash_password
from storage import ImageStorage

CDN = "https://cdn.test"


class FakeS3Client:
    """In-memory stand-in for the boto3 S3 client calls ImageStorage makes."""

    def __init__(self):
        self.objects = {}
        self.deleted = []
        self.failing_deletes = set()
        self.fail_puts = None

    def put_object(self, Bucket, Key, Body, ContentType=None, Metadata=None):
        if self.fail_puts:
            raise ClientError({"Error": {"Code": self.fail_puts, "Message": "rejected"}}, "PutObject")
        self.objects[Key] = {"body": Body, "content_type": ContentType, "metadata": Metadata or {}}
        return {"ETag": '"etag"'}

    def delete_object(self, Bucket, Key):
        if Key in self.failing_deletes:
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "DeleteObject")
        self.objects.pop(Key, None)
        self.deleted.append(Key)
        return {}


class FakeMailer:
    def __init__(self):
        self.sent = []
        self.code = "ABC123"
        self.fail = False

    def send_password_reset_email(self, to_email):
        if self.fail:
            raise MailError("Failed to send password reset email")
        self.sent.append((to_email, self.code))
        return self.code


@pytest.fixture
def db():
    return Database(client=mongomock.MongoClient(), name="ecommerce_test")


@pytest.fixture
def s3():
    return FakeS3Client()


@pytest.fixture
def storage(s3):
    return ImageStorage(client=s3, bucket="assets", base_url=CDN)


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def client(db, storage, mailer, monkeypatch):
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    monkeypatch.delenv("APP_ENV", raising=False)
    saved = (app.state.db, getattr(app.state, "storage", None), getattr(app.state, "mailer", None))
    app.state.db = db
    app.state.storage = storage
    app.state.mailer = mailer
    yield TestClient(app)
    app.state.db, app.state.storage, app.state.mailer = saved


@pytest.fixture
def admin_user(db):
    doc = {
        "username": "admin",
        "email": "admin@shopmail.com",
        "password": hash_password("secret123"),
        "role": "admin",
        "permissions": [],
        "createdAt": now(),
    }
    doc["_id"] = db["admin"].insert_one(doc).inserted_id
    return doc


@pytest.fixture
def auth(client, admin_user):
    return {"Authorization": f"Bearer {create_token(admin_user)}"}
