from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

import httpx
from pydantic import ValidationError

from .config import ShopifyConfig
from .models import CustomerProfile
from .phone import mask_phone, normalize_phone_e164, phones_match

logger = logging.getLogger("concierge.identity")

_FIND_CUSTOMER_QUERY = """
query findCustomer($query: String!) {
  customers(first: 1, query: $query) {
    edges {
      node {
        id
        email
        firstName
        lastName
        phone
        tags
      }
    }
  }
}
"""


class IdentityLookupError(Exception):
    """The directory could not answer; distinct from "no such customer"."""


class CustomerDirectory(Protocol):
    async def lookup(self, identity: str) -> Optional[CustomerProfile]: ...


def is_email_identity(identity: str) -> bool:
    return "@" in (identity or "")


def profile_from_node(node: Any) -> CustomerProfile:
    if not isinstance(node, dict):
        raise IdentityLookupError("malformed customer node")
    tags = node.get("tags") or []
    if isinstance(tags, str):
        tags = [t.strip() for t in tags.split(",") if t.strip()]
    try:
        return CustomerProfile(
            id=str(node.get("id") or ""),
            first_name=str(node.get("firstName") or ""),
            last_name=str(node.get("lastName") or ""),
            email=(str(node["email"]).strip().lower() if node.get("email") else None),
            phone=(str(node["phone"]).strip() if node.get("phone") else None),
            tags=[str(t) for t in tags],
        )
    except ValidationError as exc:
        raise IdentityLookupError(f"malformed customer node: {exc.error_count()} error(s)") from exc


class ShopifyCustomerDirectory:
    """Customer lookup against the Shopify Admin GraphQL API."""

    def __init__(
        self,
        cfg: ShopifyConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._cfg = cfg
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._cfg.timeout_seconds),
                transport=self._transport,
                headers={
                    "X-Shopify-Access-Token": self._cfg.access_token,
                    "Content-Type": "application/json",
                },
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _query(self, search: str) -> Dict[str, Any]:
        if not self._cfg.configured:
            raise IdentityLookupError("Shopify credentials not configured")
        try:
            resp = await self._get_client().post(
                self._cfg.graphql_url(),
                json={"query": _FIND_CUSTOMER_QUERY, "variables": {"query": search}},
            )
        except httpx.HTTPError as exc:
            raise IdentityLookupError(f"Shopify request failed: {exc.__class__.__name__}") from exc

        if resp.status_code != 200:
            raise IdentityLookupError(f"Shopify returned status {resp.status_code}")
        try:
            body = resp.json()
        except ValueError as exc:
            raise IdentityLookupError("Shopify returned a non-JSON body") from exc
        if not isinstance(body, dict):
            raise IdentityLookupError("Shopify returned an unexpected body")
        if body.get("errors"):
            raise IdentityLookupError(f"Shopify GraphQL errors: {body['errors']}")
        return body

    async def _find(self, search: str) -> Optional[CustomerProfile]:
        body = await self._query(search)
        try:
            edges = body["data"]["customers"]["edges"]
        except (KeyError, TypeError) as exc:
            raise IdentityLookupError("Shopify response missing customers.edges") from exc
        if not isinstance(edges, list):
            raise IdentityLookupError("Shopify customers.edges is not a list")
        if not edges:
            return None
        first = edges[0]
        return profile_from_node(first.get("node") if isinstance(first, dict) else None)

    async def find_by_email(self, email: str) -> Optional[CustomerProfile]:
        return await self._find(f"email:{email.strip().lower()}")

    async def find_by_phone(self, phone: str) -> Optional[CustomerProfile]:
        """Shopify's ``phone:`` search is fuzzy; a hit only counts if its number matches exactly."""
        profile = await self._find(f"phone:{normalize_phone_e164(phone)}")
        if profile is not None and not phones_match(profile.phone, phone):
            logger.warning("[IDENTITY] phone search returned a different number for %s", mask_phone(phone))
            return None
        return profile

    async def lookup(self, identity: str) -> Optional[CustomerProfile]:
        if is_email_identity(identity):
            profile = await self.find_by_email(identity)
        else:
            profile = await self.find_by_phone(identity)
        logger.info("[IDENTITY] shopify lookup found=%s", profile is not None)
        return profile
