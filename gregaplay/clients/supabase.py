"""Supabase REST client for table rows and storage objects.

This module provides a thin async client over the two platform APIs the
pipeline needs:
- PostgREST (``/rest/v1``): select and filtered update of table rows
- Storage (``/storage/v1``): object download, upsert upload, public URLs

Architecture Pattern:
    Simple HTTP client wrapper - no retry logic (handled at gateway layer)
    Async-only interface using httpx.AsyncClient

Usage:
    client = SupabaseClient(url, service_key, timeout=60.0)
    rows = await client.select("videos", {"event_id": "eq.E1"}, order="created_at.asc")
    data = await client.download("videos", rows[0]["storage_path"])
    await client.close()

Security:
    The service role key is sent as both ``apikey`` and bearer token and is
    never logged.
"""

from typing import Any
from urllib.parse import quote

import httpx

from gregaplay.utils.logging import get_logger

log = get_logger(__name__)


class SupabaseAPIError(Exception):
    """Raised when the platform answers with a non-2xx status.

    Attributes:
        status_code: HTTP status returned by the platform
        response_body: Raw response text (truncated)
    """

    def __init__(self, message: str, response: httpx.Response):
        self.message = message
        self.status_code = response.status_code
        self.response_body = response.text[:500]
        super().__init__(f"{message} - Status: {response.status_code}")

    @property
    def is_retriable(self) -> bool:
        return self.status_code in (408, 429, 500, 502, 503, 504)


class SupabaseClient:
    """Async client for Supabase PostgREST and Storage endpoints.

    Attributes:
        base_url: Platform base URL (e.g. "https://abc.supabase.co")
        client: Async HTTP client carrying auth headers and timeout
    """

    def __init__(
        self,
        base_url: str,
        service_key: str,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: Platform base URL
            service_key: Service role key
            timeout: Network timeout in seconds applied to every request
            transport: Optional transport override (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "apikey": service_key,
                "Authorization": f"Bearer {service_key}",
            },
        )

    @staticmethod
    def _object_path(bucket: str, path: str) -> str:
        return f"{quote(bucket, safe='')}/{quote(path.lstrip('/'), safe='/')}"

    @staticmethod
    def _raise_for_status(response: httpx.Response, operation: str) -> None:
        if response.is_success:
            return
        log.warning(
            "supabase_request_failed",
            operation=operation,
            status_code=response.status_code,
            body=response.text[:200],
        )
        raise SupabaseAPIError(f"{operation} failed", response)

    async def select(
        self,
        table: str,
        filters: dict[str, str],
        columns: str = "*",
        order: str | None = None,
    ) -> list[dict[str, Any]]:
        """Select rows from a table.

        Args:
            table: Table name
            filters: PostgREST filters, e.g. {"event_id": "eq.E1"}
            columns: Column selection
            order: PostgREST order expression, e.g. "created_at.asc"

        Returns:
            List of row dicts.

        Raises:
            SupabaseAPIError: On non-2xx responses
            httpx.HTTPError: On network failures and timeouts
        """
        params: dict[str, str] = {"select": columns, **filters}
        if order:
            params["order"] = order
        response = await self.client.get(f"/rest/v1/{table}", params=params)
        self._raise_for_status(response, f"select {table}")
        return response.json()  # type: ignore[no-any-return]

    async def update(
        self, table: str, filters: dict[str, str], fields: dict[str, Any]
    ) -> list[dict[str, Any]]:
        """Update rows matching ``filters`` and return the updated rows.

        An empty list means no row matched, which callers use for
        compare-and-set updates.
        """
        response = await self.client.patch(
            f"/rest/v1/{table}",
            params=filters,
            json=fields,
            headers={"Prefer": "return=representation"},
        )
        self._raise_for_status(response, f"update {table}")
        return response.json()  # type: ignore[no-any-return]

    async def download(self, bucket: str, path: str) -> bytes:
        """Download an object's bytes."""
        response = await self.client.get(
            f"/storage/v1/object/{self._object_path(bucket, path)}"
        )
        self._raise_for_status(response, "download")
        return response.content

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str,
        upsert: bool = True,
    ) -> str:
        """Upload an object, overwriting any existing object when ``upsert``.

        Returns:
            The storage key reported by the platform.
        """
        response = await self.client.post(
            f"/storage/v1/object/{self._object_path(bucket, path)}",
            content=data,
            headers={
                "Content-Type": content_type,
                "x-upsert": "true" if upsert else "false",
                "cache-control": "max-age=3600",
            },
        )
        self._raise_for_status(response, "upload")
        payload = response.json() if response.content else {}
        return str(payload.get("Key", f"{bucket}/{path}"))

    def public_url(self, bucket: str, path: str) -> str:
        """Public URL of an object; a pure function of bucket and path."""
        return f"{self.base_url}/storage/v1/object/public/{self._object_path(bucket, path)}"

    async def close(self) -> None:
        """Close HTTP client connection."""
        await self.client.aclose()
