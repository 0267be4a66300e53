"""
Dhan v2 REST gateway.

Thin adapter over the super order endpoints. Every call returns a result
model; HTTP and transport failures are folded into ``error`` and a
``transient`` flag instead of propagating.
"""

from typing import Any, Dict, List, Optional

import httpx
import structlog

from core.config.settings import DhanSettings
from core.logging import bind_account_context
from core.trading.models import (
    AccountPolicy,
    AmendResult,
    BrokerOrderStatus,
    LegAmendment,
    LegName,
    OrderDetails,
    OrderLeg,
    OrderListResult,
    OrderLookupResult,
    OrderRequest,
    PlaceOrderResult,
)
from core.trading.utils import to_signal_type
from core.utils.exceptions import GatewayError, create_error_context

logger = structlog.get_logger(__name__)

# Statuses worth retrying even though they are 4xx
_TRANSIENT_CLIENT_STATUSES = {404, 408, 425, 429}


def _float_or_none(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def parse_order(data: Dict[str, Any]) -> OrderDetails:
    """Normalize a Dhan order or super order payload."""
    legs = []
    for leg in data.get("legDetails") or []:
        try:
            leg_name = LegName(str(leg.get("legName", "")).upper())
        except ValueError:
            continue
        legs.append(OrderLeg(
            leg_name=leg_name,
            price=_float_or_none(leg.get("price")),
            status=leg.get("orderStatus"),
            trailing_jump=_float_or_none(leg.get("trailingJump")),
        ))

    stop_loss = _float_or_none(data.get("stopLossPrice"))
    target = _float_or_none(data.get("targetPrice"))
    for leg in legs:
        if leg.leg_name == LegName.STOP_LOSS_LEG and stop_loss is None:
            stop_loss = leg.price
        elif leg.leg_name == LegName.TARGET_LEG and target is None:
            target = leg.price

    return OrderDetails(
        order_id=str(data.get("orderId", "")),
        status=BrokerOrderStatus.parse(data.get("orderStatus") or data.get("status")),
        transaction_type=to_signal_type(data.get("transactionType", "BUY")),
        security_id=data.get("securityId"),
        trading_symbol=data.get("tradingSymbol"),
        quantity=int(data.get("quantity") or 0),
        price=_float_or_none(data.get("price")),
        filled_price=_float_or_none(data.get("averageTradedPrice")) or _float_or_none(data.get("averagePrice")),
        stop_loss_price=stop_loss,
        target_price=target,
        legs=legs,
    )


class DhanGateway:
    """Brokerage gateway for Dhan accounts; one shared HTTP client."""

    broker = "dhan"

    def __init__(self, settings: DhanSettings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.settings.api_base_url,
                timeout=self.settings.request_timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _headers(policy: AccountPolicy) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "access-token": policy.access_token.get_secret_value(),
        }

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            for key in ("errorMessage", "message", "error"):
                if body.get(key):
                    return str(body[key])
        return f"HTTP {response.status_code}: {response.reason_phrase}"

    async def _request(self, method: str, path: str, policy: AccountPolicy,
                       json: Optional[Dict[str, Any]] = None) -> Any:
        """Send one request and return the decoded body.

        Raises:
            GatewayError: with ``retryable`` set for 5xx, throttling and transport errors
        """
        try:
            response = await self.client.request(method, path, headers=self._headers(policy), json=json)
        except httpx.TimeoutException as e:
            raise GatewayError(f"Request timed out: {method} {path}", broker=self.broker) from e
        except httpx.TransportError as e:
            raise GatewayError(f"Transport error: {e}", broker=self.broker) from e

        if response.is_success:
            if not response.content:
                return {}
            try:
                return response.json()
            except ValueError:
                return {}

        transient = (response.status_code >= 500
                     or response.status_code in _TRANSIENT_CLIENT_STATUSES)
        try:
            api_response = response.json()
        except ValueError:
            api_response = None
        error = GatewayError(
            self._error_message(response),
            broker=self.broker,
            status_code=response.status_code,
            api_response=api_response if isinstance(api_response, dict) else None,
        )
        error.retryable = transient
        raise error

    async def place_order(self, policy: AccountPolicy, request: OrderRequest) -> PlaceOrderResult:
        log = bind_account_context(logger, policy.account_id, policy.client_id)
        payload = {
            "dhanClientId": request.client_id,
            "correlationId": request.correlation_id,
            "transactionType": request.transaction_type.value,
            "exchangeSegment": request.exchange_segment,
            "productType": request.product_type,
            "orderType": request.order_type,
            "securityId": request.security_id,
            "quantity": request.quantity,
            "price": request.price,
            "targetPrice": request.target_price,
            "stopLossPrice": request.stop_loss_price,
            "trailingJump": request.trailing_jump,
        }
        payload = {k: v for k, v in payload.items() if v is not None}

        log.info("Placing Dhan order",
                 security_id=request.security_id,
                 side=request.transaction_type.value,
                 quantity=request.quantity,
                 order_type=request.order_type,
                 correlation_id=request.correlation_id)
        try:
            data = await self._request("POST", "/super/orders", policy, json=payload)
        except GatewayError as e:
            log.error("Dhan order failed", **create_error_context(e, "place_order", {
                "correlation_id": request.correlation_id,
            }))
            return PlaceOrderResult(
                success=False,
                correlation_id=request.correlation_id,
                error=e.message,
                transient=e.retryable,
            )

        order_id = data.get("orderId") if isinstance(data, dict) else None
        if not order_id:
            return PlaceOrderResult(
                success=False,
                correlation_id=request.correlation_id,
                error="Order placement returned no order id",
            )
        log.info("Dhan order placed", order_id=order_id, correlation_id=request.correlation_id)
        return PlaceOrderResult(
            success=True,
            correlation_id=request.correlation_id,
            order_id=str(order_id),
            order_status=data.get("orderStatus"),
        )

    async def get_order(self, policy: AccountPolicy, order_id: str) -> OrderLookupResult:
        try:
            data = await self._request("GET", f"/orders/{order_id}", policy)
        except GatewayError as e:
            return OrderLookupResult(success=False, error=e.message, transient=e.retryable)

        if isinstance(data, list):
            data = data[0] if data else None
        if not isinstance(data, dict) or not data:
            return OrderLookupResult(success=False, error=f"Order {order_id} not found", transient=True)
        data.setdefault("orderId", order_id)
        return OrderLookupResult(success=True, order=parse_order(data))

    async def get_orders_by_status(self, policy: AccountPolicy, status: str) -> OrderListResult:
        try:
            data = await self._request("GET", "/super/orders", policy)
        except GatewayError as e:
            return OrderListResult(success=False, error=e.message, transient=e.retryable)

        if isinstance(data, dict):
            data = data.get("data")
        rows: List[Dict[str, Any]] = data if isinstance(data, list) else []
        wanted = BrokerOrderStatus.parse(status)
        orders = [parse_order(row) for row in rows if isinstance(row, dict)]
        return OrderListResult(success=True, orders=[o for o in orders if o.status == wanted])

    async def _amend_leg(self, policy: AccountPolicy, order_id: str, body: Dict[str, Any]) -> Optional[GatewayError]:
        try:
            await self._request("PUT", f"/super/orders/{order_id}", policy, json=body)
        except GatewayError as e:
            return e
        return None

    async def amend_legs(self, policy: AccountPolicy, order_id: str, amendment: LegAmendment) -> AmendResult:
        log = bind_account_context(logger, policy.account_id, policy.client_id)
        failures: List[GatewayError] = []
        messages: List[str] = []

        if amendment.target is not None:
            error = await self._amend_leg(policy, order_id, {
                "dhanClientId": policy.client_id,
                "orderId": order_id,
                "legName": LegName.TARGET_LEG.value,
                "targetPrice": amendment.target,
            })
            if error:
                failures.append(error)
                messages.append(f"TP update failed: {error.message}")

        if amendment.stop_loss is not None:
            body = {
                "dhanClientId": policy.client_id,
                "orderId": order_id,
                "legName": LegName.STOP_LOSS_LEG.value,
                "stopLossPrice": amendment.stop_loss,
            }
            if amendment.trailing_jump and amendment.trailing_jump > 0:
                body["trailingJump"] = amendment.trailing_jump
            error = await self._amend_leg(policy, order_id, body)
            if error:
                failures.append(error)
                messages.append(f"SL update failed: {error.message}")

        if failures:
            log.warning("Leg amendment failed", order_id=order_id, errors=messages)
            return AmendResult(
                success=False,
                error=", ".join(messages),
                transient=any(f.retryable for f in failures),
            )
        log.info("Legs amended", order_id=order_id,
                 target=amendment.target, stop_loss=amendment.stop_loss)
        return AmendResult(success=True)
