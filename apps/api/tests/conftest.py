"""
Shared fixtures: in-memory SQLite database built from the models, an
in-memory Supabase Storage fake behind httpx.MockTransport, PyJWT-minted
access tokens and an ASGI client for the full application.

Settings are read once at import time, so the environment is set before
anything from complisite is imported.
"""

import os

os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SUPABASE_URL"] = "https://test-project.supabase.co"
os.environ["SUPABASE_ANON_KEY"] = "test-anon-key"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret-that-is-at-least-32-chars"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["DIAGNOSTICS_ENABLED"] = "true"
os.environ["LOG_LEVEL"] = "WARNING"

import json  # noqa: E402
import uuid  # noqa: E402
from datetime import date, datetime, timedelta, timezone  # noqa: E402
from typing import Dict, List, Optional, Tuple  # noqa: E402
from urllib.parse import unquote  # noqa: E402

import httpx  # noqa: E402
import jwt  # noqa: E402
import pytest  # noqa: E402

from complisite.core.config import settings  # noqa: E402
from complisite.core.enums import (  # noqa: E402
    CertificateStatus,
    MemberStatus,
    OrgRole,
    ProjectMemberStatus,
    ProjectRole,
)
from complisite.db.models import (  # noqa: E402
    CertificateType,
    ComplianceChecklistItem,
    ComplianceTemplate,
    Organization,
    OrganizationMember,
    Project,
    ProjectMember,
    ProjectRequiredCertificate,
    User,
    UserCertificate,
    UserProfile,
)
from complisite.db.session import Database, build_engine  # noqa: E402
from complisite.storage.client import StorageClient  # noqa: E402


# ────────────────────────────────────────────────
# Database
# ────────────────────────────────────────────────
@pytest.fixture
async def database():
    database = Database(build_engine("sqlite+aiosqlite://"))
    await database.create_all()
    yield database
    await database.dispose()


@pytest.fixture
async def db(database):
    async with database.session() as session:
        yield session


class Factory:
    """Seed helpers; everything is flushed, commit is up to the test."""

    def __init__(self, db):
        self.db = db

    async def user(self, email: Optional[str] = None, full_name: Optional[str] = None) -> User:
        user = User(email=email or f"{uuid.uuid4().hex[:10]}@example.com")
        self.db.add(user)
        await self.db.flush()
        if full_name:
            self.db.add(UserProfile(user_id=user.id, full_name=full_name, email=user.email))
            await self.db.flush()
        return user

    async def organization(self, admin: Optional[User] = None, name: str = "Acme Builders") -> Organization:
        org = Organization(name=name, slug=f"acme-{uuid.uuid4().hex[:8]}")
        self.db.add(org)
        await self.db.flush()
        if admin is not None:
            await self.member(org, admin, OrgRole.ADMIN)
        return org

    async def member(
        self,
        org: Organization,
        user: User,
        role: OrgRole = OrgRole.WORKER,
        status: MemberStatus = MemberStatus.ACTIVE,
    ) -> OrganizationMember:
        member = OrganizationMember(organization_id=org.id, user_id=user.id, role=role, status=status)
        self.db.add(member)
        await self.db.flush()
        return member

    async def project(self, org: Organization, name: str = "Harbour Tower") -> Project:
        project = Project(name=name, organization_id=org.id)
        self.db.add(project)
        await self.db.flush()
        return project

    async def project_member(
        self,
        project: Project,
        user: User,
        role: ProjectRole = ProjectRole.MEMBER,
        status: ProjectMemberStatus = ProjectMemberStatus.ACTIVE,
    ) -> ProjectMember:
        member = ProjectMember(project_id=project.id, user_id=user.id, role=role, status=status)
        self.db.add(member)
        await self.db.flush()
        return member

    async def template(
        self, name: str = "Working at Heights", category: str = "safety", items: int = 4
    ) -> Tuple[ComplianceTemplate, List[ComplianceChecklistItem]]:
        template = ComplianceTemplate(name=name, category=category)
        self.db.add(template)
        await self.db.flush()
        rows = [
            ComplianceChecklistItem(
                template_id=template.id,
                description=f"{name} check {i + 1}",
                position=i,
            )
            for i in range(items)
        ]
        self.db.add_all(rows)
        await self.db.flush()
        return template, rows

    async def certificate_type(self, name: str = "White Card", category: str = "induction") -> CertificateType:
        cert_type = CertificateType(name=name, category=category, issuing_bodies=["SafeWork NSW"])
        self.db.add(cert_type)
        await self.db.flush()
        return cert_type

    async def certificate(
        self,
        user: User,
        cert_type: CertificateType,
        expiry_date: Optional[date] = None,
        status: CertificateStatus = CertificateStatus.VERIFIED,
        issue_date: date = date(2024, 1, 15),
    ) -> UserCertificate:
        cert = UserCertificate(
            user_id=user.id,
            certificate_type_id=cert_type.id,
            issue_date=issue_date,
            expiry_date=expiry_date,
            status=status,
        )
        self.db.add(cert)
        await self.db.flush()
        await self.db.refresh(cert, ["certificate_type"])
        return cert

    async def requirement(self, project: Project, cert_type: CertificateType) -> ProjectRequiredCertificate:
        required = ProjectRequiredCertificate(project_id=project.id, certificate_type_id=cert_type.id)
        self.db.add(required)
        await self.db.flush()
        return required


@pytest.fixture
def factory(db):
    return Factory(db)


# ────────────────────────────────────────────────
# Storage
# ────────────────────────────────────────────────
class FakeStorage:
    """In-memory Supabase Storage REST API for httpx.MockTransport."""

    def __init__(self, buckets=("evidence", "certificates", "project-files")):
        self.buckets = list(buckets)
        self.objects: Dict[str, Dict[str, bytes]] = {b: {} for b in self.buckets}
        self.content_types: Dict[Tuple[str, str], str] = {}
        self.requests: List[httpx.Request] = []
        self.fail_with: Optional[int] = None

    def _error(self, status: int, message: str) -> httpx.Response:
        return httpx.Response(status, json={"statusCode": str(status), "error": "Error", "message": message})

    def _listing(self, bucket: str, prefix: str, limit: int) -> List[dict]:
        folder = prefix.strip("/")
        entries, folders = [], set()
        for key in sorted(self.objects[bucket]):
            if folder:
                if not key.startswith(folder + "/"):
                    continue
                rest = key[len(folder) + 1:]
            else:
                rest = key
            if "/" in rest:
                folders.add(rest.split("/", 1)[0])
                continue
            data = self.objects[bucket][key]
            entries.append(
                {
                    "name": rest,
                    "id": str(uuid.uuid5(uuid.NAMESPACE_URL, f"{bucket}/{key}")),
                    "created_at": "2025-03-01T08:30:00Z",
                    "updated_at": "2025-03-01T08:30:00Z",
                    "metadata": {
                        "size": len(data),
                        "mimetype": self.content_types.get((bucket, key), "application/octet-stream"),
                    },
                }
            )
        placeholders = [{"name": name, "id": None, "metadata": None} for name in sorted(folders)]
        return (placeholders + entries)[:limit]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            return self._error(self.fail_with, "Simulated storage failure")

        path = unquote(request.url.path)
        assert path.startswith("/storage/v1/"), path
        route = path[len("/storage/v1/"):]
        method = request.method

        if method == "GET" and route == "bucket":
            return httpx.Response(
                200,
                json=[{"id": b, "name": b, "public": b == "evidence"} for b in self.buckets],
            )

        if method == "POST" and route.startswith("object/list/"):
            bucket = route[len("object/list/"):]
            if bucket not in self.objects:
                return self._error(404, "Bucket not found")
            body = json.loads(request.content or b"{}")
            return httpx.Response(200, json=self._listing(bucket, body.get("prefix", ""), body.get("limit", 100)))

        if method == "POST" and route.startswith("object/sign/"):
            bucket, key = route[len("object/sign/"):].split("/", 1)
            if key not in self.objects.get(bucket, {}):
                return self._error(404, "Object not found")
            return httpx.Response(200, json={"signedURL": f"/object/sign/{bucket}/{key}?token=signed-token"})

        if method == "POST" and route in ("object/copy", "object/move"):
            body = json.loads(request.content)
            bucket = self.objects[body["bucketId"]]
            if body["sourceKey"] not in bucket:
                return self._error(404, "Object not found")
            bucket[body["destinationKey"]] = bucket[body["sourceKey"]]
            if route == "object/move":
                del bucket[body["sourceKey"]]
            return httpx.Response(200, json={"message": "Successfully copied"})

        if method == "POST" and route.startswith("object/"):
            bucket, key = route[len("object/"):].split("/", 1)
            if bucket not in self.objects:
                return self._error(404, "Bucket not found")
            if key in self.objects[bucket] and request.headers.get("x-upsert") != "true":
                return self._error(409, "The resource already exists")
            self.objects[bucket][key] = request.content
            self.content_types[(bucket, key)] = request.headers.get("content-type", "")
            return httpx.Response(200, json={"Key": f"{bucket}/{key}"})

        if method == "DELETE" and route.startswith("object/"):
            bucket = route[len("object/"):]
            body = json.loads(request.content)
            removed = []
            for key in body["prefixes"]:
                if self.objects.get(bucket, {}).pop(key, None) is not None:
                    removed.append({"name": key, "id": str(uuid.uuid4()), "metadata": {}})
            return httpx.Response(200, json=removed)

        return self._error(400, f"Unhandled route {method} {route}")


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
async def storage(fake_storage):
    client = StorageClient.from_settings(settings, transport=httpx.MockTransport(fake_storage))
    yield client
    await client.close()


# ────────────────────────────────────────────────
# Auth & HTTP
# ────────────────────────────────────────────────
def mint_token(
    user_id: uuid.UUID,
    email: Optional[str] = "worker@example.com",
    expires_in: timedelta = timedelta(hours=1),
    secret: Optional[str] = None,
    audience: str = "authenticated",
) -> str:
    payload = {
        "sub": str(user_id),
        "aud": audience,
        "role": "authenticated",
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    if email is not None:
        payload["email"] = email
    return jwt.encode(
        payload,
        secret or settings.SUPABASE_JWT_SECRET.get_secret_value(),
        algorithm="HS256",
    )


def auth_headers(user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {mint_token(user.id, user.email)}"}


@pytest.fixture
def app(database, storage):
    from complisite.main import create_app

    return create_app(database=database, storage=storage)


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.fixture
def auth():
    """auth(user) -> Authorization header for that user."""
    return auth_headers


@pytest.fixture
def token():
    """token(user_id, email=..., expires_in=..., secret=..., audience=...) -> signed JWT."""
    return mint_token
