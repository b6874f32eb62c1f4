"""
Supabase Storage client - Complisite

Thin async wrapper over the Storage REST API (``<SUPABASE_URL>/storage/v1``).
One httpx.AsyncClient per process, created explicitly in the app lifespan
and injected into routes through ``get_storage``.

Operations: list buckets, list objects, upload, remove, copy, move,
signed URL, public URL. Every failure raises StorageError carrying the
upstream HTTP status (None for transport failures).
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
from fastapi import Request, status
from pydantic import BaseModel

from complisite.core.config import Settings
from complisite.core.enums import ErrorKind
from complisite.core.errors import AppError
from complisite.monitoring.metrics import storage_requests_total

logger = logging.getLogger(__name__)


class StorageError(AppError):
    kind = ErrorKind.STORAGE_ERROR
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        super().__init__(message)
        self.upstream_status = upstream_status


class Bucket(BaseModel):
    id: str
    name: str
    public: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class StoredObject(BaseModel):
    name: str
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None   # null for folder placeholders

    @property
    def size(self) -> Optional[int]:
        return (self.metadata or {}).get("size")

    @property
    def mimetype(self) -> Optional[str]:
        return (self.metadata or {}).get("mimetype")

    @property
    def is_folder(self) -> bool:
        # Folders are listed as placeholder entries without an id
        return self.id is None


def _object_path(path: str) -> str:
    return quote(path.lstrip("/"), safe="/")


class StorageClient:
    """
    Usage:
        storage = StorageClient.from_settings(settings)
        objects = await storage.list_objects("evidence", prefix="checklist-evidence")
        await storage.close()
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {api_key}", "apikey": api_key},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "StorageClient":
        return cls(
            settings.storage_url,
            settings.storage_key(),
            timeout=settings.STORAGE_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def close(self) -> None:
        await self._http.aclose()

    # ────────────────────────────────────────────────
    # Transport
    # ────────────────────────────────────────────────
    async def _request(self, operation: str, method: str, url: str, **kwargs) -> Any:
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            storage_requests_total.labels(operation=operation, outcome="transport_error").inc()
            logger.error(f"Storage {operation} failed: {exc}", extra={"url": url})
            raise StorageError(f"Storage unreachable: {exc}") from exc

        if response.is_error:
            storage_requests_total.labels(operation=operation, outcome="error").inc()
            message = self._error_message(response)
            logger.warning(
                f"Storage {operation} returned {response.status_code}: {message}",
                extra={"url": url, "status": response.status_code},
            )
            raise StorageError(message, upstream_status=response.status_code)

        storage_requests_total.labels(operation=operation, outcome="ok").inc()
        if not response.content:
            return None
        return response.json()

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        if isinstance(body, dict):
            return str(body.get("message") or body.get("error") or body)
        return str(body)

    # ────────────────────────────────────────────────
    # Buckets & objects
    # ────────────────────────────────────────────────
    async def list_buckets(self) -> List[Bucket]:
        data = await self._request("list_buckets", "GET", "/bucket")
        return [Bucket.model_validate(item) for item in data or []]

    async def list_objects(
        self,
        bucket: str,
        prefix: str = "",
        limit: int = 100,
        offset: int = 0,
        sort_by: str = "name",
        order: str = "asc",
    ) -> List[StoredObject]:
        data = await self._request(
            "list_objects",
            "POST",
            f"/object/list/{bucket}",
            json={
                "prefix": prefix,
                "limit": limit,
                "offset": offset,
                "sortBy": {"column": sort_by, "order": order},
            },
        )
        return [StoredObject.model_validate(item) for item in data or []]

    async def upload(
        self,
        bucket: str,
        path: str,
        content: bytes,
        content_type: str = "application/octet-stream",
        upsert: bool = False,
        cache_control: str = "3600",
    ) -> str:
        """Upload bytes and return the stored object key (``<bucket>/<path>``)."""
        data = await self._request(
            "upload",
            "POST",
            f"/object/{bucket}/{_object_path(path)}",
            content=content,
            headers={
                "Content-Type": content_type,
                "x-upsert": "true" if upsert else "false",
                "cache-control": f"max-age={cache_control}",
            },
        )
        return (data or {}).get("Key", f"{bucket}/{path}")

    async def remove(self, bucket: str, paths: List[str]) -> List[StoredObject]:
        data = await self._request(
            "remove",
            "DELETE",
            f"/object/{bucket}",
            json={"prefixes": paths},
        )
        return [StoredObject.model_validate(item) for item in data or []]

    async def copy(self, bucket: str, source: str, destination: str) -> None:
        await self._request(
            "copy",
            "POST",
            "/object/copy",
            json={"bucketId": bucket, "sourceKey": source, "destinationKey": destination},
        )

    async def move(self, bucket: str, source: str, destination: str) -> None:
        await self._request(
            "move",
            "POST",
            "/object/move",
            json={"bucketId": bucket, "sourceKey": source, "destinationKey": destination},
        )

    async def create_signed_url(self, bucket: str, path: str, expires_in: int = 3600) -> str:
        data = await self._request(
            "create_signed_url",
            "POST",
            f"/object/sign/{bucket}/{_object_path(path)}",
            json={"expiresIn": expires_in},
        )
        signed = (data or {}).get("signedURL")
        if not signed:
            raise StorageError("Storage did not return a signed URL")
        return f"{self.base_url}/{signed.lstrip('/')}"

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/object/public/{bucket}/{_object_path(path)}"


# ────────────────────────────────────────────────
# FastAPI Dependency
# ────────────────────────────────────────────────
def get_storage(request: Request) -> StorageClient:
    return request.app.state.storage
