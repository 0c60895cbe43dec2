"""platform_copilot/platform/client.py

Thin async client for the data platform REST API.

Every operation handler in the catalog goes through ``PlatformClient`` so the
handler boundary is uniform: HTTP 404 becomes ``NotFoundError``, any other
non-2xx status or transport failure becomes ``UpstreamError`` carrying the
status code and the start of the response body.
"""

from __future__ import annotations

# Standard Library
import logging
from typing import Any

# Third-Party Libraries
import httpx

# Local Modules
from platform_copilot.errors import NotFoundError, UpstreamError
from platform_copilot.settings import CopilotSettings

logger = logging.getLogger(__name__)

_BODY_EXCERPT: int = 500


class PlatformClient:
    """Authenticated ``httpx.AsyncClient`` wrapper.

    Args:
        base_url: Platform API root.
        access_token: Bearer token; acquiring it is the caller's concern.
        api_key: Client id sent as ``x-api-key``.
        org_id: Organization id sent as ``x-gw-ims-org-id``.
        sandbox: Sandbox sent as ``x-sandbox-name``.
        timeout: Per-request timeout in seconds.
        transport: Optional transport override (``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        base_url: str,
        *,
        access_token: str = "",
        api_key: str = "",
        org_id: str = "",
        sandbox: str = "prod",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.sandbox = sandbox
        headers = {
            "Accept": "application/json",
            "x-api-key": api_key,
            "x-gw-ims-org-id": org_id,
            "x-sandbox-name": sandbox,
        }
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        self._client = httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=timeout, transport=transport
        )

    @classmethod
    def from_settings(cls, settings: CopilotSettings) -> PlatformClient:
        return cls(
            settings.platform_url,
            access_token=settings.platform_access_token,
            api_key=settings.platform_api_key,
            org_id=settings.platform_org_id,
            sandbox=settings.sandbox_name,
            timeout=settings.platform_timeout,
        )

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Perform one call and return the decoded body.

        ``None`` values in ``params`` are omitted.  An empty body decodes to
        ``{}``; a non-JSON body is returned as text.

        Raises:
            NotFoundError: On HTTP 404.
            UpstreamError: On any other error status or transport failure.
        """
        query = {k: v for k, v in (params or {}).items() if v is not None}
        try:
            response = await self._client.request(
                method, path, params=query, json=json, headers=headers
            )
        except httpx.HTTPError as exc:
            logger.warning("[platform] %s %s failed: %s", method, path, exc)
            raise UpstreamError(f"{method} {path} failed: {exc}") from exc

        if response.status_code == 404:
            raise NotFoundError(f"{method} {path}: resource not found")
        if response.is_error:
            body = response.text[:_BODY_EXCERPT]
            logger.warning(
                "[platform] %s %s returned %d: %s", method, path, response.status_code, body
            )
            raise UpstreamError(
                f"{method} {path} returned HTTP {response.status_code}: {body}",
                status_code=response.status_code,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return response.text

    async def get(self, path: str, **params: Any) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, body: Any) -> Any:
        return await self.request(
            "POST", path, json=body, headers={"Content-Type": "application/json"}
        )

    async def aclose(self) -> None:
        await self._client.aclose()
