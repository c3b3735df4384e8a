# clients.py
"""
HTTP clients for the pricing, order, payment and catalog endpoints.

The engine only relies on the method signatures below; tests substitute
in-memory fakes with the same methods.
"""
import logging
from typing import Iterable, Optional
from urllib.parse import quote

import httpx

from config import EngineContext
from errors import ApiError, error_from_response
from models import (
    AppliedPromotion, CatalogItem, CatalogUnit, GiftItem, Order, OrderLine,
    OrderStatus, PaymentIntent, PaymentMethod, PaymentStatus, ReviewResult,
)

logger = logging.getLogger("pos_system.clients")


def _unwrap(body):
    """Responses come either bare or wrapped as {"success": ..., "data": ...}."""
    if isinstance(body, dict) and 'data' in body and body['data'] is not None:
        return body['data']
    return body


def _number(value, default=0):
    try:
        return float(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def _amount_param(amount) -> str:
    """Whole amounts go out without a decimal part: 100000, not 100000.0."""
    value = float(amount)
    return f"{value:.0f}" if value.is_integer() else str(value)


def _enum(cls, value, default):
    if not value:
        return default
    try:
        return cls(value)
    except ValueError:
        logger.warning(f"Unknown {cls.__name__} '{value}' in response; keeping {default}")
        return default


def review_result_from_api(data: dict) -> ReviewResult:
    data = data or {}
    descriptions = data.get('appliedPromotions') or []
    descriptions = [d if isinstance(d, str) else str(d.get('name', d)) for d in descriptions]
    discount = _number(data.get('totalDiscountAmount', data.get('discountAmount')))

    promo = data.get('appliedPromotion')
    if isinstance(promo, dict):
        applied = AppliedPromotion(
            id=promo.get('id'),
            name=promo.get('name', ''),
            type=promo.get('type', 'DISCOUNT'),
            discount_amount=_number(promo.get('discountAmount'), discount),
        )
    elif descriptions:
        applied = AppliedPromotion(id=None, name=descriptions[0], discount_amount=discount)
    else:
        applied = None

    gifts = [
        GiftItem(
            catalog_unit_id=g.get('productUnitId'),
            name=g.get('productName') or g.get('name', ''),
            quantity=int(g.get('quantity', 1)),
        )
        for g in (data.get('giftItems') or []) if isinstance(g, dict)
    ]
    return ReviewResult(
        subtotal=_number(data.get('totalOriginalAmount', data.get('subtotal'))),
        discount_amount=discount,
        total_amount=_number(data.get('totalFinalAmount', data.get('totalAmount'))),
        applied_promotion=applied,
        applied_promotion_descriptions=descriptions,
        gift_items=gifts,
        shipping_fee=_number(data.get('shippingFee')),
        vat_amount=_number(data.get('vatAmount')),
    )


def order_from_api(data: dict, fallback: Optional[Order] = None) -> Order:
    data = data or {}
    lines = [
        OrderLine(
            catalog_unit_id=int(d['productUnitId']),
            quantity=int(d.get('quantity', 0)),
            unit_price=_number(d.get('unitPrice')),
            subtotal=_number(d.get('subtotal')),
            name=d.get('productName'),
            unit_label=d.get('unitName'),
        )
        for d in (data.get('orderDetails') or []) if isinstance(d, dict) and 'productUnitId' in d
    ]
    base = fallback or Order(id=0, status=OrderStatus.PENDING)
    return Order(
        id=int(data.get('id', base.id)),
        status=_enum(OrderStatus, data.get('status'), base.status),
        payment_method=_enum(PaymentMethod, data.get('paymentMethod'), base.payment_method),
        payment_status=_enum(PaymentStatus, data.get('paymentStatus'), base.payment_status),
        lines=lines or base.lines,
        total_amount=_number(data.get('totalAmount'), base.total_amount),
        discount_amount=_number(data.get('discountAmount'), base.discount_amount),
        payment_info=data.get('paymentInfo', base.payment_info),
        created_at=data.get('createdAt', base.created_at),
    )


def catalog_item_from_api(data: dict) -> CatalogItem:
    units = [
        CatalogUnit(
            unit_id=int(u['id']),
            product_name=data.get('name', ''),
            unit_name=u.get('unitName', ''),
            price=_number(u.get('currentPrice', u.get('convertedPrice'))),
            available_quantity=u.get('availableQuantity', u.get('quantity')),
            is_default=bool(u.get('isDefault', False)),
        )
        for u in (data.get('productUnits') or []) if isinstance(u, dict) and 'id' in u
    ]
    return CatalogItem(product_id=data.get('id'), name=data.get('name', ''), units=units)


def is_match(body) -> bool:
    """The match endpoint has answered with several shapes over time."""
    if isinstance(body, bool):
        return body
    if isinstance(body, list):
        return len(body) > 0
    if not isinstance(body, dict):
        return False
    if body.get('success') is True or body.get('matched') is True:
        return True
    data = body.get('data')
    if isinstance(data, dict):
        return data.get('matched') is True
    if isinstance(data, list):
        return len(data) > 0
    return body.get('result') is True


class ApiClient:
    """Shared transport: base URL, bearer token, JSON envelopes, typed errors."""
    def __init__(self, context: EngineContext, client: Optional[httpx.AsyncClient] = None):
        self.context = context
        self._client = client or httpx.AsyncClient(
            base_url=context.api_base_url, timeout=context.http_timeout
        )

    async def _request(self, method: str, path: str, **kwargs):
        try:
            response = await self._client.request(
                method, path, headers=self.context.auth_headers(), **kwargs
            )
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise ApiError(None, f"Connection error: {e}") from e

        try:
            body = response.json() if response.content else None
        except ValueError:
            body = response.text

        if response.is_error:
            logger.warning(f"{method} {path} -> {response.status_code}")
            raise error_from_response(response.status_code, body)
        return body

    async def aclose(self):
        await self._client.aclose()


class PricingClient(ApiClient):
    async def review(self, lines: Iterable, promotion_id: Optional[int] = None) -> ReviewResult:
        payload = {
            'orderDetails': [
                {'productUnitId': l.catalog_unit_id, 'quantity': l.quantity} for l in lines
            ]
        }
        if promotion_id is not None:
            payload['promotionAppliedId'] = promotion_id
        body = await self._request('POST', '/orders/preview', json=payload)
        return review_result_from_api(_unwrap(body))


class OrderClient(ApiClient):
    async def create_order(self, request: dict) -> Order:
        body = await self._request('POST', '/orders', json=request)
        return order_from_api(_unwrap(body))

    async def get_order(self, order_id: int) -> Order:
        body = await self._request('GET', f'/orders/{order_id}')
        return order_from_api(_unwrap(body))

    async def update_status(self, order_id: int, status: OrderStatus, note: Optional[str] = None,
                            warehouse_id: Optional[int] = None,
                            stock_location_id: Optional[int] = None) -> Order:
        payload = {
            'status': status.value,
            'note': note,
            'warehouseId': warehouse_id,
            'stockLocationId': stock_location_id,
        }
        body = await self._request('PATCH', f'/orders/{order_id}/status', json=payload)
        applied = Order(id=order_id, status=status)
        # status is already applied server-side at this point
        try:
            return order_from_api(_unwrap(body), applied)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Unreadable response for order {order_id} status patch: {e}")
            return applied

    async def update_payment_status(self, order_id: int,
                                    payment_status: PaymentStatus = PaymentStatus.PAID):
        return await self._request(
            'PATCH', f'/orders/{order_id}/payment-status',
            json={'paymentStatus': payment_status.value}
        )

    async def cancel_order(self, order_id: int):
        return await self._request('DELETE', f'/orders/{order_id}')

    async def create_payment_intent(self, order_id: int, amount: float, description: str,
                                    bank_code: str) -> PaymentIntent:
        body = await self._request('POST', '/payments/sepay/intent', json={
            'orderId': order_id,
            'amount': amount,
            'description': description,
            'bankCode': bank_code,
        })
        data = _unwrap(body) or {}
        return PaymentIntent(
            account_number=str(data.get('accountNumber', '')),
            account_name=str(data.get('accountName', '')),
            bank_code=str(data.get('bankCode', bank_code)),
            transfer_content=str(data.get('transferContent', '')),
            qr_content=str(data.get('qrContent', '')),
            amount=_number(data.get('amount'), amount),
        )

    async def match_payment(self, content: str, amount: float, limit: int = 20) -> bool:
        params = {'content': content, 'amount': _amount_param(amount), 'limit': str(limit)}
        try:
            body = await self._request('GET', '/payments/sepay/match', params=params)
        except ApiError as e:
            if e.status is None:
                raise
            return False
        return is_match(body)


class ProductClient(ApiClient):
    async def find_by_code(self, code: str) -> Optional[CatalogItem]:
        try:
            body = await self._request('GET', f'/products/by-code/{quote(code, safe="")}')
        except ApiError as e:
            if e.status == 404:
                return None
            raise
        data = _unwrap(body)
        if not isinstance(data, dict) or (isinstance(body, dict) and body.get('success') is False):
            return None
        return catalog_item_from_api(data)

    async def get_unit(self, unit_id: int) -> Optional[CatalogUnit]:
        try:
            body = await self._request('GET', f'/products/units/{unit_id}')
        except ApiError as e:
            if e.status == 404:
                return None
            raise
        data = _unwrap(body)
        if not isinstance(data, dict):
            return None
        return CatalogUnit(
            unit_id=int(data.get('id', unit_id)),
            product_name=data.get('productName') or data.get('name') or f"PU#{unit_id}",
            unit_name=data.get('unitName', ''),
            price=_number(data.get('currentPrice')),
        )


def order_request(lines: Iterable, payment_method: PaymentMethod, fulfillment_method,
                  promotion_id: Optional[int] = None, shipping_address: Optional[str] = None,
                  warehouse_id: Optional[int] = None, stock_location_id: Optional[int] = None,
                  phone_number: Optional[str] = None) -> dict:
    """Create-order request body."""
    request = {
        'orderDetails': [
            {'productUnitId': l.catalog_unit_id, 'quantity': l.quantity, 'unitPrice': l.unit_price}
            for l in lines
        ],
        'paymentMethod': payment_method.value,
        'deliveryMethod': fulfillment_method.value,
        'shippingAddress': shipping_address or '',
    }
    optional = {
        'promotionAppliedId': promotion_id,
        'warehouseId': warehouse_id,
        'stockLocationId': stock_location_id,
        'phoneNumber': phone_number,
    }
    request.update({k: v for k, v in optional.items() if v is not None})
    return request
