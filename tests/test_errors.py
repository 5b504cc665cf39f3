"""
Tests for syncbridge/utils/errors.py - retriable classification.
"""
import asyncio
import socket

import httpx
import pytest

from syncbridge.utils.errors import (
    ConflictError,
    UpstreamError,
    UpstreamTimeoutError,
    ValidationError,
    is_retriable_error,
)


def _status_error(status_code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://api.webflow.com/v2/collections/c/items")
    response = httpx.Response(status_code, request=request)
    return httpx.HTTPStatusError("error", request=request, response=response)


class TestIsRetriableError:
    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503])
    def test_retriable_statuses(self, status):
        assert is_retriable_error(UpstreamError("x", status_code=status)) is True
        assert is_retriable_error(_status_error(status)) is True

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 409, 422])
    def test_client_errors_not_retriable(self, status):
        assert is_retriable_error(UpstreamError("x", status_code=status)) is False
        assert is_retriable_error(_status_error(status)) is False

    @pytest.mark.parametrize("error", [
        UpstreamTimeoutError(),
        httpx.ConnectTimeout("slow"),
        httpx.ConnectError("refused"),
        asyncio.TimeoutError(),
        ConnectionRefusedError(),
        ConnectionResetError(),
        socket.gaierror("dns"),
    ])
    def test_network_failures_retriable(self, error):
        assert is_retriable_error(error) is True

    @pytest.mark.parametrize("error", [
        ValueError("bad"),
        ValidationError("Missing required fields: name"),
        ConflictError("in flight"),
        UpstreamError("no status"),
    ])
    def test_everything_else_not_retriable(self, error):
        assert is_retriable_error(error) is False

    def test_foreign_error_with_status_attribute(self):
        error = RuntimeError("rate limited")
        error.status = 429
        assert is_retriable_error(error) is True
        error.status = 422
        assert is_retriable_error(error) is False
