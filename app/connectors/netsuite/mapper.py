"""
B2B-INTEGRATIONS — NetSuite: canonical mapping
NetSuite records (camelCase dicts, references as {"id", "refName"}) ↔ canonical
B2B models.

Sublists come back either as a bare list or wrapped in {"items": [...]} depending
on expandSubResources; both are accepted.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from app.schemas.connectors import (
    CanonicalAddress,
    CanonicalCustomer,
    CanonicalInventoryStatus,
    CanonicalInvoice,
    CanonicalLineItem,
    CanonicalOrder,
    CanonicalProduct,
)

SOURCE = "netsuite"

ITEM_TYPES = {
    "InvtPart": "inventory",
    "NonInvtPart": "non-inventory",
    "Service": "service",
    "Discount": "discount",
    "Markup": "markup",
    "Payment": "payment",
    "Subtotal": "subtotal",
    "Description": "description",
    "Assembly": "assembly",
    "Kit": "kit",
    "SerializedInventoryItem": "serialized",
    "LotNumberedInventoryItem": "lot-numbered",
}


def _ref_id(record: dict, key: str) -> Optional[str]:
    ref = record.get(key)
    return ref.get("id") if isinstance(ref, dict) else None


def _ref_name(record: dict, key: str) -> Optional[str]:
    ref = record.get(key)
    return ref.get("refName") if isinstance(ref, dict) else None


def _sublist(value: Any) -> list:
    if isinstance(value, dict):
        return value.get("items") or []
    return value or []


def map_item_type(item_type: Optional[str]) -> str:
    return ITEM_TYPES.get(item_type or "", "unknown")


# ─────────────────────────────────────────────────────────────
# NETSUITE → CANONICAL
# ─────────────────────────────────────────────────────────────

def address_to_canonical(address: Optional[dict], address_type: Optional[str] = None) -> CanonicalAddress:
    if not address:
        return CanonicalAddress(type=address_type)
    country = address.get("country")
    if isinstance(country, dict):
        country = country.get("id") or country.get("refName")
    return CanonicalAddress(
        type=address_type,
        line1=address.get("addr1"),
        line2=address.get("addr2"),
        line3=address.get("addr3"),
        city=address.get("city"),
        state=address.get("state"),
        postal_code=address.get("zip"),
        country=country,
        attention=address.get("attention"),
        phone=address.get("phone"),
    )


def customer_to_canonical(customer: dict) -> CanonicalCustomer:
    balance = customer.get("balance") or 0
    credit_limit = customer.get("creditLimit") or 0
    full_name = f"{customer.get('firstName') or ''} {customer.get('lastName') or ''}".strip()

    return CanonicalCustomer(
        id=str(customer.get("id") or ""),
        external_id=customer.get("custentity_external_id") or customer.get("externalId"),
        source_system=SOURCE,
        customer_number=customer.get("entityId"),
        type="individual" if customer.get("isPerson") else "business",
        name=customer.get("companyName") or full_name or customer.get("entityId") or "",
        first_name=customer.get("firstName"),
        last_name=customer.get("lastName"),
        email=customer.get("email"),
        phone=customer.get("phone"),
        status="inactive" if customer.get("isInactive") else "active",
        addresses=[
            address_to_canonical(entry.get("addressBookAddress"))
            for entry in _sublist(customer.get("addressbook"))
        ],
        balance=balance,
        credit_limit=credit_limit,
        available_credit=max(0, credit_limit - balance),
        overdue_balance=customer.get("overdueBalance"),
        payment_terms=_ref_name(customer, "terms"),
        currency=_ref_id(customer, "currency"),
        metadata={
            "subsidiary": _ref_id(customer, "subsidiary"),
            "category": _ref_id(customer, "category"),
            "terms": _ref_id(customer, "terms"),
            "price_level": _ref_id(customer, "priceLevel"),
            "unbilled_orders": customer.get("unbilledOrders"),
            "custentity_external_id": customer.get("custentity_external_id"),
            "custentity_b2b_org_id": customer.get("custentity_b2b_org_id"),
        },
        created_at=customer.get("dateCreated"),
        updated_at=customer.get("lastModifiedDate"),
    )


def item_to_canonical(item: dict) -> CanonicalProduct:
    subsidiaries = _sublist(item.get("subsidiary"))
    return CanonicalProduct(
        id=str(item.get("id") or ""),
        external_id=item.get("custitem_external_id") or item.get("externalId"),
        source_system=SOURCE,
        sku=item.get("itemId") or "",
        name=item.get("displayName") or item.get("itemId") or "",
        description=item.get("salesDescription") or item.get("description"),
        type=map_item_type(item.get("itemType")),
        status="inactive" if item.get("isInactive") else "active",
        price=item.get("basePrice"),
        cost=item.get("cost") or item.get("averageCost"),
        upc=item.get("upcCode"),
        weight=item.get("weight"),
        weight_unit=item.get("weightUnit"),
        is_taxable=item.get("isTaxable"),
        is_stock_item=item.get("itemType") in ("InvtPart", "Assembly", "SerializedInventoryItem", "LotNumberedInventoryItem"),
        quantity_on_hand=item.get("quantityOnHand"),
        quantity_available=item.get("quantityAvailable"),
        metadata={
            "subsidiary": [s.get("id") for s in subsidiaries if isinstance(s, dict)],
            "department": _ref_id(item, "department"),
            "class": _ref_id(item, "class"),
            "location": _ref_id(item, "location"),
            "tax_schedule": _ref_id(item, "taxSchedule"),
            "vendor_name": item.get("vendorName"),
            "last_purchase_price": item.get("lastPurchasePrice"),
            "reorder_point": item.get("reorderPoint"),
            "preferred_stock_level": item.get("preferredStockLevel"),
            "custitem_external_id": item.get("custitem_external_id"),
            "custitem_b2b_product_id": item.get("custitem_b2b_product_id"),
        },
        created_at=item.get("createdDate"),
        updated_at=item.get("lastModifiedDate"),
    )


def lines_to_canonical(lines: Any, with_fulfillment: bool = False) -> list[CanonicalLineItem]:
    result = []
    for index, line in enumerate(_sublist(lines)):
        quantity = line.get("quantity") or 0
        canonical = CanonicalLineItem(
            line_number=line.get("lineNumber") or index + 1,
            product_id=_ref_id(line, "item"),
            sku=_ref_name(line, "item"),
            description=line.get("description"),
            quantity=quantity,
            unit_price=line.get("rate"),
            total=line.get("amount"),
        )
        if with_fulfillment:
            fulfilled = line.get("quantityFulfilled")
            canonical.is_fulfilled = bool(line.get("isClosed")) or fulfilled == line.get("quantity")
            canonical.quantity_fulfilled = fulfilled
            canonical.quantity_billed = line.get("quantityBilled")
        result.append(canonical)
    return result


def sales_order_to_canonical(order: dict) -> CanonicalOrder:
    return CanonicalOrder(
        id=str(order.get("id") or ""),
        external_id=order.get("custbody_external_id") or order.get("externalId"),
        source_system=SOURCE,
        order_number=order.get("tranId") or "",
        order_date=order.get("tranDate") or "",
        status=_ref_name(order, "status") or "Unknown",
        status_code=_ref_id(order, "status") or "",
        customer_id=_ref_id(order, "entity"),
        customer_name=_ref_name(order, "entity"),
        currency=_ref_id(order, "currency"),
        items=lines_to_canonical(order.get("item"), with_fulfillment=True),
        subtotal=order.get("subTotal"),
        discount=order.get("discountTotal"),
        tax=order.get("taxTotal"),
        total=order.get("total") or 0,
        billing_address=address_to_canonical(order["billingAddress"], "billing") if order.get("billingAddress") else None,
        shipping_address=address_to_canonical(order["shippingAddress"], "shipping") if order.get("shippingAddress") else None,
        notes=order.get("memo"),
        metadata={
            "subsidiary": _ref_id(order, "subsidiary"),
            "location": _ref_id(order, "location"),
            "currency": _ref_id(order, "currency"),
            "exchange_rate": order.get("exchangeRate"),
            "terms": _ref_id(order, "terms"),
            "ship_method": _ref_id(order, "shipMethod"),
            "ship_date": order.get("shipDate"),
            "custbody_external_id": order.get("custbody_external_id"),
            "custbody_b2b_order_id": order.get("custbody_b2b_order_id"),
        },
        created_at=order.get("createdDate"),
        updated_at=order.get("lastModifiedDate"),
    )


def invoice_to_canonical(invoice: dict) -> CanonicalInvoice:
    return CanonicalInvoice(
        id=str(invoice.get("id") or ""),
        external_id=invoice.get("custbody_external_id") or invoice.get("externalId"),
        source_system=SOURCE,
        invoice_number=invoice.get("tranId") or "",
        invoice_date=invoice.get("tranDate") or "",
        due_date=invoice.get("dueDate"),
        status=_ref_name(invoice, "status") or "Unknown",
        status_code=_ref_id(invoice, "status") or "",
        customer_id=_ref_id(invoice, "entity"),
        customer_name=_ref_name(invoice, "entity"),
        order_id=_ref_id(invoice, "createdFrom"),
        order_number=_ref_name(invoice, "createdFrom"),
        currency=_ref_id(invoice, "currency"),
        items=lines_to_canonical(invoice.get("item")),
        subtotal=invoice.get("subTotal"),
        discount=invoice.get("discountTotal"),
        tax=invoice.get("taxTotal"),
        total=invoice.get("total") or 0,
        amount_paid=invoice.get("amountPaid"),
        amount_due=invoice.get("amountRemaining"),
        billing_address=address_to_canonical(invoice["billingAddress"], "billing") if invoice.get("billingAddress") else None,
        notes=invoice.get("memo"),
        metadata={
            "subsidiary": _ref_id(invoice, "subsidiary"),
            "currency": _ref_id(invoice, "currency"),
            "exchange_rate": invoice.get("exchangeRate"),
            "terms": _ref_id(invoice, "terms"),
            "custbody_external_id": invoice.get("custbody_external_id"),
        },
        created_at=invoice.get("createdDate"),
        updated_at=invoice.get("lastModifiedDate"),
    )


def inventory_to_canonical(
    status: dict,
    sku: Optional[str] = None,
    as_of: Optional[str] = None,
) -> CanonicalInventoryStatus:
    """Takes the snake_case status dicts produced by the inventory service."""
    location = status.get("location") or {}
    return CanonicalInventoryStatus(
        product_id=str((status.get("item") or {}).get("id") or ""),
        sku=sku,
        location_id=location.get("id"),
        location_name=location.get("ref_name") or status.get("location_name"),
        quantity_on_hand=status.get("quantity_on_hand") or 0,
        quantity_available=status.get("quantity_available") or 0,
        quantity_on_order=status.get("quantity_on_order") or 0,
        quantity_committed=status.get("quantity_committed") or 0,
        quantity_backordered=status.get("quantity_back_ordered") or 0,
        average_cost=status.get("average_cost"),
        as_of_date=as_of or datetime.now(timezone.utc).isoformat(),
    )


# ─────────────────────────────────────────────────────────────
# CANONICAL → NETSUITE
# ─────────────────────────────────────────────────────────────

def address_from_canonical(address: CanonicalAddress, full: bool = True) -> dict:
    payload = {
        "addr1": address.line1,
        "addr2": address.line2,
        "city": address.city,
        "state": address.state,
        "zip": address.postal_code,
    }
    if full:
        payload.update(addr3=address.line3, attention=address.attention, phone=address.phone)
    if address.country:
        payload["country"] = {"id": address.country}
    return {k: v for k, v in payload.items() if v is not None}


def customer_from_canonical(customer: CanonicalCustomer) -> dict:
    payload = {"isPerson": not customer.is_company}
    if customer.name and customer.is_company:
        payload["companyName"] = customer.name
    if customer.first_name:
        payload["firstName"] = customer.first_name
    if customer.last_name:
        payload["lastName"] = customer.last_name
    if customer.email:
        payload["email"] = customer.email
    if customer.phone:
        payload["phone"] = customer.phone
    if customer.credit_limit is not None:
        payload["creditLimit"] = customer.credit_limit
    if customer.external_id:
        payload["custentity_external_id"] = customer.external_id
    if customer.addresses:
        payload["addressbook"] = {
            "items": [{"addressBookAddress": address_from_canonical(a)} for a in customer.addresses]
        }
    return payload


def order_from_canonical(order: CanonicalOrder) -> dict:
    payload = {}
    if order.customer_id:
        payload["entity"] = {"id": order.customer_id}
    if order.order_date:
        payload["tranDate"] = order.order_date
    if order.external_id:
        payload["custbody_external_id"] = order.external_id
        payload["custbody_b2b_order_id"] = order.external_id
    if order.notes:
        payload["memo"] = order.notes
    if order.billing_address:
        payload["billingAddress"] = address_from_canonical(order.billing_address, full=False)
    if order.shipping_address:
        payload["shippingAddress"] = address_from_canonical(order.shipping_address, full=False)
    if order.items:
        lines = []
        for index, item in enumerate(order.items):
            line = {
                "lineNumber": item.line_number or index + 1,
                "item": {"id": item.product_id},
                "quantity": item.quantity,
            }
            if item.unit_price is not None:
                line["rate"] = item.unit_price
            if item.description:
                line["description"] = item.description
            lines.append(line)
        payload["item"] = {"items": lines}
    return payload
