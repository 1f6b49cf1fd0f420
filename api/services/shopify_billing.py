"""
Shopify billing provider — creates billing attempts and cancels contracts
through the Admin GraphQL API.

Error mapping:
  - timeouts / connection failures / 5xx → TransientIOError
  - userErrors, GraphQL errors, other non-200 replies → BillingProviderError
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

import httpx

from config import settings
from domain.errors import BillingProviderError, TransientIOError

logger = logging.getLogger(__name__)

BILLING_ATTEMPT_CREATE = """
mutation subscriptionBillingAttemptCreate(
  $subscriptionContractId: ID!
  $idempotencyKey: String!
  $originTime: DateTime
) {
  subscriptionBillingAttemptCreate(
    subscriptionContractId: $subscriptionContractId
    subscriptionBillingAttemptInput: {
      idempotencyKey: $idempotencyKey
      originTime: $originTime
    }
  ) {
    subscriptionBillingAttempt {
      id
      ready
      errorCode
      order { id }
    }
    userErrors {
      field
      message
    }
  }
}
"""

CONTRACT_CANCEL = """
mutation subscriptionContractCancel($subscriptionContractId: ID!) {
  subscriptionContractCancel(subscriptionContractId: $subscriptionContractId) {
    contract { id status }
    userErrors {
      field
      message
    }
  }
}
"""


@dataclass
class BillingAttemptResponse:
    attempt_id: str | None
    ready: bool
    error_code: str | None = None
    order_id: str | None = None


class BillingProvider(ABC):

    @abstractmethod
    async def create_billing_attempt(
        self, contract_id: str, idempotency_key: str, origin_time: datetime,
    ) -> BillingAttemptResponse:
        """Ask the provider to charge one cycle. The provider dedupes on `idempotency_key`."""

    @abstractmethod
    async def cancel_contract(self, contract_id: str) -> None:
        pass


class ShopifyBillingClient(BillingProvider):

    def __init__(self, shop: str, access_token: str, http: httpx.AsyncClient | None = None):
        self.shop = shop
        self.access_token = access_token
        self._http = http

    @property
    def endpoint(self) -> str:
        return f"https://{self.shop}/admin/api/{settings.SHOPIFY_API_VERSION}/graphql.json"

    async def _execute(self, query: str, variables: dict) -> dict:
        headers = {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json",
        }
        payload = {"query": query, "variables": variables}
        try:
            if self._http is not None:
                resp = await self._http.post(self.endpoint, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as client:
                    resp = await client.post(self.endpoint, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise TransientIOError(f"Shopify request timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientIOError(f"Shopify unreachable: {e}") from e

        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransientIOError(f"Shopify returned HTTP {resp.status_code}")
        if resp.status_code != 200:
            raise BillingProviderError(f"Shopify returned HTTP {resp.status_code}: {resp.text[:200]}")

        body = resp.json()
        if body.get("errors"):
            messages = ", ".join(str(e.get("message", e)) for e in body["errors"])
            raise BillingProviderError(f"GraphQL errors: {messages}")
        return body.get("data") or {}

    async def create_billing_attempt(self, contract_id, idempotency_key, origin_time):
        data = await self._execute(BILLING_ATTEMPT_CREATE, {
            "subscriptionContractId": contract_id,
            "idempotencyKey": idempotency_key,
            "originTime": origin_time.isoformat(),
        })
        result = data.get("subscriptionBillingAttemptCreate") or {}

        user_errors = result.get("userErrors") or []
        if user_errors:
            raise BillingProviderError(", ".join(e["message"] for e in user_errors), code="USER_ERROR")

        attempt = result.get("subscriptionBillingAttempt")
        if not attempt:
            raise BillingProviderError("No billing attempt returned from Shopify")

        order = attempt.get("order") or {}
        return BillingAttemptResponse(
            attempt_id=attempt.get("id"),
            ready=bool(attempt.get("ready")),
            error_code=attempt.get("errorCode"),
            order_id=order.get("id"),
        )

    async def cancel_contract(self, contract_id):
        data = await self._execute(CONTRACT_CANCEL, {"subscriptionContractId": contract_id})
        user_errors = (data.get("subscriptionContractCancel") or {}).get("userErrors") or []
        if user_errors:
            raise BillingProviderError(", ".join(e["message"] for e in user_errors), code="USER_ERROR")
        logger.info("Contract %s cancelled on %s", contract_id, self.shop)
