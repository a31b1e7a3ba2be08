import asyncio
import json

import httpx
import pytest

from concierge.config import ShopifyConfig
from concierge.identity import IdentityLookupError, ShopifyCustomerDirectory

CFG = ShopifyConfig(shop_name="psa-test", access_token="shpat_test")

NODE = {
    "id": "gid://shopify/Customer/42",
    "email": "Alice@Example.com",
    "firstName": "Alice",
    "lastName": "Sato",
    "phone": "+819012345678",
    "tags": ["vip", "graded"],
}


def _edges(*nodes):
    return {"data": {"customers": {"edges": [{"node": n} for n in nodes]}}}


def _lookup(handler, identity, cfg=CFG):
    async def run():
        directory = ShopifyCustomerDirectory(cfg, transport=httpx.MockTransport(handler))
        try:
            return await directory.lookup(identity)
        finally:
            await directory.aclose()

    return asyncio.run(run())


def test_lookup_by_email_returns_profile():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["token"] = request.headers.get("X-Shopify-Access-Token")
        seen["variables"] = json.loads(request.content)["variables"]
        return httpx.Response(200, json=_edges(NODE))

    profile = _lookup(handler, "alice@example.com")

    assert seen["url"] == "https://psa-test.myshopify.com/admin/api/2024-10/graphql.json"
    assert seen["token"] == "shpat_test"
    assert seen["variables"] == {"query": "email:alice@example.com"}
    assert profile.id == "gid://shopify/Customer/42"
    assert profile.email == "alice@example.com"
    assert profile.full_name == "Alice Sato"
    assert profile.tags == ["vip", "graded"]


def test_lookup_by_phone_uses_e164():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["variables"] = json.loads(request.content)["variables"]
        return httpx.Response(200, json=_edges(NODE))

    assert _lookup(handler, "+819012345678") is not None
    assert seen["variables"] == {"query": "phone:+819012345678"}


def test_phone_search_hit_with_other_number_is_none():
    other = dict(NODE, id="gid://shopify/Customer/77", email="bob@example.com", phone="+819012345670")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_edges(other))

    assert _lookup(handler, "+819012345678") is None


def test_phone_match_ignores_formatting():
    formatted = dict(NODE, phone="090-1234-5678")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_edges(formatted))

    assert _lookup(handler, "+819012345678").id == "gid://shopify/Customer/42"


def test_no_match_is_none():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_edges())

    assert _lookup(handler, "nobody@example.com") is None


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(503, text="unavailable"),
        httpx.Response(200, text="<html>"),
        httpx.Response(200, json={"errors": [{"message": "Throttled"}]}),
        httpx.Response(200, json={"data": {"shop": {}}}),
    ],
)
def test_directory_failures_raise(response):
    def handler(request: httpx.Request) -> httpx.Response:
        return response

    with pytest.raises(IdentityLookupError):
        _lookup(handler, "alice@example.com")


def test_network_error_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(IdentityLookupError, match="ConnectError"):
        _lookup(handler, "alice@example.com")


def test_unconfigured_directory_raises_without_request():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=_edges(NODE))

    with pytest.raises(IdentityLookupError, match="not configured"):
        _lookup(handler, "alice@example.com", cfg=ShopifyConfig())
    assert calls == []
