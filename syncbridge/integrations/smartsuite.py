"""
SmartSuite integration - REST API v1, read side only.

Auth: "Authorization: Token <api key>" plus "Account-Id: <workspace id>".
Used by the manual re-sync action to fetch the current state of a record.
"""
import logging
from typing import Optional

import httpx

from syncbridge.utils.errors import UpstreamError, UpstreamTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://app.smartsuite.com/api/v1"
TIMEOUT = 30.0


class SmartSuiteClient:
    """SmartSuite records client."""

    def __init__(self, api_base: str = DEFAULT_API_BASE, timeout: float = TIMEOUT):
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    async def _request(
        self,
        method: str,
        endpoint: str,
        api_key: str,
        account_id: Optional[str] = None,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
    ):
        headers = {
            "Authorization": f"Token {api_key}",
            "Content-Type": "application/json",
        }
        if account_id:
            headers["Account-Id"] = account_id

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method, f"{self.api_base}{endpoint}",
                    headers=headers, json=json, params=params,
                )
        except httpx.TimeoutException:
            logger.error("SmartSuite API request timeout: %s", endpoint)
            raise UpstreamTimeoutError("SmartSuite request timeout")

        if response.status_code >= 400:
            logger.error(
                "SmartSuite API error: %s -> %d", endpoint, response.status_code,
                extra={"status_code": response.status_code},
            )
            raise UpstreamError(
                f"SmartSuite API error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
                body=response.text,
            )
        return response.json()

    async def get_record(
        self,
        api_key: str,
        table_id: str,
        record_id: str,
        account_id: Optional[str] = None,
    ) -> dict:
        """Fetch one record by id."""
        return await self._request(
            "GET", f"/applications/{table_id}/records/{record_id}/",
            api_key, account_id=account_id,
        )

    async def list_records(
        self,
        api_key: str,
        table_id: str,
        account_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
        filter: Optional[dict] = None,
    ) -> list[dict]:
        """List records, optionally filtered. Returns the `items` array."""
        body = {"filter": filter} if filter else {}
        data = await self._request(
            "POST", f"/applications/{table_id}/records/list/",
            api_key, account_id=account_id, json=body,
            params={"limit": limit, "offset": offset},
        )
        if isinstance(data, dict):
            return data.get("items", [])
        return data or []


def get_source_client() -> SmartSuiteClient:
    from syncbridge.config import get_settings
    settings = get_settings()
    return SmartSuiteClient(
        api_base=settings.smartsuite_api_base,
        timeout=settings.upstream_timeout_seconds,
    )
