"""
Edgeserver — Body Parser Tests
===============================

What:  Size and syntax checks on JSON / form request bodies.
"""

import json

import pytest


class TestBodyParser:

    @pytest.mark.asyncio
    async def test_valid_json_reaches_handler(self, dev_client):
        payload = {"name": "Café", "tags": ["a", "b"]}
        response = await dev_client.post("/api/echo", json=payload)
        assert response.status_code == 200
        assert response.json() == payload

    @pytest.mark.asyncio
    async def test_malformed_json_rejected(self, dev_client):
        response = await dev_client.post(
            "/api/echo",
            content=b'{"name": ',
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json() == {"message": "Malformed JSON body"}

    @pytest.mark.asyncio
    async def test_oversized_body_rejected(self, dev_client, dev_settings):
        payload = json.dumps({"data": "x" * (dev_settings.body_limit_bytes + 1)})
        response = await dev_client.post(
            "/api/echo",
            content=payload.encode(),
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 413
        assert response.json() == {"message": "Request entity too large"}

    @pytest.mark.asyncio
    async def test_vendor_json_type_is_checked(self, dev_client):
        response = await dev_client.post(
            "/api/echo",
            content=b"[1, 2",
            headers={"Content-Type": "application/merge-patch+json"},
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_other_content_types_pass_through(self, dev_client):
        response = await dev_client.post(
            "/api/echo",
            content=b"{not json",
            headers={"Content-Type": "text/plain"},
        )
        # The handler itself fails to parse; the parser stage did not intervene.
        assert response.status_code == 500
        assert response.json() == {"message": "Internal Server Error"}
