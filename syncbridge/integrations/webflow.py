"""
Webflow CMS integration - Data API v2.

Auth: Bearer site token (stored encrypted on the connection).
Docs: https://developers.webflow.com/data/reference
All calls have a 30-second timeout.
"""
import logging
from typing import Optional

import httpx

from syncbridge.integrations.target_base import TargetCMS
from syncbridge.utils.errors import UpstreamError, UpstreamTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.webflow.com/v2"
TIMEOUT = 30.0


class WebflowClient(TargetCMS):
    """Webflow collection items client."""

    def __init__(self, api_base: str = DEFAULT_API_BASE, timeout: float = TIMEOUT):
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    async def _request(
        self,
        method: str,
        endpoint: str,
        token: str,
        json: Optional[dict] = None,
    ) -> Optional[dict]:
        """Send one request. Non-2xx raises UpstreamError with status and body."""
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method, f"{self.api_base}{endpoint}", headers=headers, json=json,
                )
        except httpx.TimeoutException:
            logger.error("Webflow API request timeout: %s %s", method, endpoint)
            raise UpstreamTimeoutError("Webflow request timeout")

        if response.status_code >= 400:
            logger.error(
                "Webflow API error: %s %s -> %d",
                method, endpoint, response.status_code,
                extra={"status_code": response.status_code},
            )
            raise UpstreamError(
                f"Webflow API error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
                body=response.text,
            )

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def create_item(self, token: str, collection_id: str, field_data: dict) -> dict:
        return await self._request(
            "POST", f"/collections/{collection_id}/items/live", token,
            json={"fieldData": field_data},
        )

    async def update_item(
        self, token: str, collection_id: str, item_id: str, field_data: dict
    ) -> dict:
        return await self._request(
            "PATCH", f"/collections/{collection_id}/items/{item_id}/live", token,
            json={"fieldData": field_data},
        )

    async def get_item(self, token: str, collection_id: str, item_id: str) -> Optional[dict]:
        try:
            return await self._request(
                "GET", f"/collections/{collection_id}/items/{item_id}", token,
            )
        except UpstreamError as e:
            if e.status_code == 404:
                return None
            raise

    async def delete_item(self, token: str, collection_id: str, item_id: str) -> None:
        await self._request("DELETE", f"/collections/{collection_id}/items/{item_id}", token)


def get_target_client() -> WebflowClient:
    from syncbridge.config import get_settings
    settings = get_settings()
    return WebflowClient(
        api_base=settings.webflow_api_base,
        timeout=settings.upstream_timeout_seconds,
    )
