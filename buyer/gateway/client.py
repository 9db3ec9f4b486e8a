"""
Checkout service client (Crossmint Headless Checkout): create, patch address, get status.

API:
  POST  {base}/orders          create an order
  PATCH {base}/orders/{id}     attach a shipping address
  GET   {base}/orders/{id}     current order snapshot

Base URL is chosen from the API key prefix (sk_production_ vs staging) unless
CROSSMINT_ENV overrides it. No retries here: the pollers own retry policy.
"""

import asyncio
import json
from typing import Optional

import aiohttp

from buyer.config import HTTP_TIMEOUT_SEC, api_base_url
from buyer.errors import RemoteRequestFailed, RemoteUnreachable
from buyer.orders.models import Order, ShippingAddress


class OrderGateway:
    """Async client for the checkout service's order endpoints."""

    def __init__(self, api_key: str, base_url: Optional[str] = None,
                 timeout_sec: float = HTTP_TIMEOUT_SEC,
                 session: Optional[aiohttp.ClientSession] = None):
        self.api_key = api_key
        self.base_url = (base_url or api_base_url(api_key)).rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout_sec)
        self._session = session
        self._owns_session = session is None

        # Metrics
        self._request_count = 0
        self._request_errors = 0

    async def _ensure_session(self):
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={
                    "X-API-KEY": self.api_key,
                    "Content-Type": "application/json",
                },
            )
            self._owns_session = True

    async def close(self):
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def create(self, line_item: str, payment_method: str, currency: str,
                     payer_address: Optional[str] = None,
                     recipient: Optional[dict] = None) -> Order:
        """Create an order for one product locator."""
        body = build_create_body(line_item, payment_method, currency,
                                 payer_address, recipient)
        data = await self._request("POST", "/orders", "create order", body)
        order = Order.from_response(data)
        print(f"[GATEWAY] Order {order.order_id} created "
              f"(quote={order.quote.status}, method={payment_method})")
        return order

    async def patch_shipping_address(self, order_id: str, address: ShippingAddress) -> Order:
        body = {"recipient": {"physicalAddress": address.to_wire()}}
        data = await self._request("PATCH", f"/orders/{order_id}", "update order", body)
        order = Order.from_response(data)
        if not order.order_id:
            order.order_id = order_id
        print(f"[GATEWAY] Order {order_id} address updated (quote={order.quote.status})")
        return order

    async def get_status(self, order_id: str) -> Order:
        data = await self._request("GET", f"/orders/{order_id}", "get order status")
        order = Order.from_response(data)
        if not order.order_id:
            order.order_id = order_id
        return order

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, operation: str,
                       body: Optional[dict] = None) -> dict:
        await self._ensure_session()
        url = f"{self.base_url}{path}"
        self._request_count += 1
        try:
            async with self._session.request(
                method, url, json=body,
                headers={"X-API-KEY": self.api_key},
            ) as resp:
                raw = await resp.read()
                try:
                    text = raw.decode("utf-8")
                except UnicodeDecodeError:
                    self._request_errors += 1
                    print(f"[GATEWAY] {method} {path} -> HTTP {resp.status}, body is not UTF-8")
                    raise RemoteRequestFailed(resp.status, repr(raw[:500]), operation)
                payload = _parse_body(text)
                if resp.status < 200 or resp.status >= 300:
                    self._request_errors += 1
                    print(f"[GATEWAY] {method} {path} -> HTTP {resp.status}")
                    raise RemoteRequestFailed(resp.status, payload, operation)
                if not isinstance(payload, dict):
                    self._request_errors += 1
                    raise RemoteRequestFailed(resp.status, payload, operation)
                return payload
        except asyncio.TimeoutError as e:
            self._request_errors += 1
            raise RemoteUnreachable(operation, e)
        except aiohttp.ClientError as e:
            self._request_errors += 1
            raise RemoteUnreachable(operation, e)

    def metrics(self) -> dict:
        return {
            "base_url": self.base_url,
            "request_count": self._request_count,
            "request_errors": self._request_errors,
        }


def _parse_body(text: str):
    if not text:
        return {}
    try:
        return json.loads(text)
    except ValueError:
        return text


def build_create_body(line_item: str, payment_method: str, currency: str,
                      payer_address: Optional[str] = None,
                      recipient: Optional[dict] = None) -> dict:
    """Wire body for POST /orders."""
    body = {
        "lineItems": [{"productLocator": line_item}],
        "payment": {"method": payment_method, "currency": currency},
    }
    if payer_address:
        body["payment"]["payerAddress"] = payer_address
    if recipient:
        body["recipient"] = recipient
    return body


def build_recipient(email: Optional[str] = None,
                    address: Optional[ShippingAddress] = None) -> Optional[dict]:
    if not email and not address:
        return None
    recipient = {}
    if email:
        recipient["email"] = email
    if address:
        recipient["physicalAddress"] = address.to_wire()
    return recipient
