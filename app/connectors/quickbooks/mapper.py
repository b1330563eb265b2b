"""
B2B-INTEGRATIONS — QuickBooks Online: canonical mapping
QBO entities (PascalCase dicts) ↔ canonical B2B models.

QuickBooks keeps tax at transaction level and has no unit of measure,
so line tax is 0 and every unit is "EA".
"""

from typing import Optional

from app.schemas.connectors import (
    AppliedInvoice,
    CanonicalAddress,
    CanonicalCustomer,
    CanonicalInvoice,
    CanonicalLineItem,
    CanonicalOrder,
    CanonicalPayment,
    CanonicalProduct,
    PaymentInvoiceLink,
    QuickBooksAddressInput,
    QuickBooksCustomerInput,
    QuickBooksInvoiceInput,
    QuickBooksItemInput,
    QuickBooksItemType,
    QuickBooksLineInput,
    QuickBooksPaymentInput,
    QuickBooksSalesReceiptInput,
)

SOURCE = "quickbooks_online"
DEFAULT_CURRENCY = "USD"
DEFAULT_UNIT = "EA"

ITEM_TYPES = {
    "Inventory": "inventory",
    "NonInventory": "non_inventory",
    "Service": "service",
    "Group": "group",
    "Category": "category",
}


def _ref_value(entity: dict, key: str) -> Optional[str]:
    return (entity.get(key) or {}).get("value")


def _ref_name(entity: dict, key: str) -> Optional[str]:
    return (entity.get(key) or {}).get("name")


def _created(entity: dict) -> Optional[str]:
    return (entity.get("MetaData") or {}).get("CreateTime")


def _updated(entity: dict) -> Optional[str]:
    return (entity.get("MetaData") or {}).get("LastUpdatedTime")


# ─────────────────────────────────────────────────────────────
# QBO → CANONICAL
# ─────────────────────────────────────────────────────────────

def address_to_canonical(address: dict, address_type: str) -> CanonicalAddress:
    return CanonicalAddress(
        type=address_type,
        line1=address.get("Line1") or "",
        line2=address.get("Line2"),
        line3=address.get("Line3"),
        city=address.get("City") or "",
        state=address.get("CountrySubDivisionCode"),
        postal_code=address.get("PostalCode") or "",
        country=address.get("Country") or "",
    )


def customer_to_canonical(customer: dict) -> CanonicalCustomer:
    addresses = []
    if customer.get("BillAddr"):
        addresses.append(address_to_canonical(customer["BillAddr"], "billing"))
    if customer.get("ShipAddr"):
        addresses.append(address_to_canonical(customer["ShipAddr"], "shipping"))

    name = (
        customer.get("DisplayName")
        or customer.get("CompanyName")
        or f"{customer.get('GivenName') or ''} {customer.get('FamilyName') or ''}".strip()
    )

    return CanonicalCustomer(
        id=customer.get("Id") or "",
        external_id=customer.get("Id"),
        source_system=SOURCE,
        customer_number=customer.get("Id"),
        type="business" if customer.get("CompanyName") else "individual",
        name=name,
        first_name=customer.get("GivenName"),
        last_name=customer.get("FamilyName"),
        email=(customer.get("PrimaryEmailAddr") or {}).get("Address") or "",
        phone=(customer.get("PrimaryPhone") or {}).get("FreeFormNumber") or "",
        mobile=(customer.get("Mobile") or {}).get("FreeFormNumber"),
        website=(customer.get("WebAddr") or {}).get("URI"),
        status="inactive" if customer.get("Active") is False else "active",
        addresses=addresses,
        balance=customer.get("Balance"),
        payment_terms=_ref_name(customer, "SalesTermRef"),
        currency=_ref_value(customer, "CurrencyRef") or DEFAULT_CURRENCY,
        metadata={
            "source": SOURCE,
            "sync_token": customer.get("SyncToken"),
            "fully_qualified_name": customer.get("FullyQualifiedName"),
            "taxable": customer.get("Taxable"),
            "balance": customer.get("Balance"),
            "balance_with_jobs": customer.get("BalanceWithJobs"),
            "preferred_delivery_method": customer.get("PreferredDeliveryMethod"),
            "job": customer.get("Job"),
            "parent_ref": _ref_value(customer, "ParentRef"),
            "level": customer.get("Level"),
        },
        created_at=_created(customer),
        updated_at=_updated(customer),
    )


def map_item_type(item_type: Optional[str]) -> str:
    if item_type in ITEM_TYPES:
        return ITEM_TYPES[item_type]
    return item_type.lower() if item_type else "product"


def item_to_canonical(item: dict) -> CanonicalProduct:
    return CanonicalProduct(
        id=item.get("Id") or "",
        external_id=item.get("Id"),
        source_system=SOURCE,
        sku=item.get("Sku") or item.get("Name") or "",
        name=item.get("Name") or "",
        description=item.get("Description"),
        type=map_item_type(item.get("Type")),
        status="inactive" if item.get("Active") is False else "active",
        price=item.get("UnitPrice") or 0,
        cost=item.get("PurchaseCost"),
        unit=DEFAULT_UNIT,
        is_taxable=item.get("Taxable"),
        quantity_on_hand=item.get("QtyOnHand"),
        is_stock_item=bool(item.get("TrackQtyOnHand") or item.get("Type") == "Inventory"),
        metadata={
            "source": SOURCE,
            "sync_token": item.get("SyncToken"),
            "fully_qualified_name": item.get("FullyQualifiedName"),
            "taxable": item.get("Taxable"),
            "purchase_description": item.get("PurchaseDesc"),
            "income_account_ref": _ref_value(item, "IncomeAccountRef"),
            "expense_account_ref": _ref_value(item, "ExpenseAccountRef"),
            "asset_account_ref": _ref_value(item, "AssetAccountRef"),
            "inv_start_date": item.get("InvStartDate"),
            "sub_item": item.get("SubItem"),
            "parent_ref": _ref_value(item, "ParentRef"),
            "level": item.get("Level"),
        },
        created_at=_created(item),
        updated_at=_updated(item),
    )


def lines_to_canonical(lines: list) -> list:
    """Only SalesItemLineDetail lines become line items."""
    items = []
    sales_lines = [line for line in lines if line.get("DetailType") == "SalesItemLineDetail"]
    for index, line in enumerate(sales_lines):
        detail = line.get("SalesItemLineDetail") or {}
        item_ref = detail.get("ItemRef") or {}
        items.append(CanonicalLineItem(
            id=line.get("Id") or str(index + 1),
            line_number=line.get("LineNum") or index + 1,
            product_id=item_ref.get("value") or "",
            sku=item_ref.get("name") or "",
            name=line.get("Description") or item_ref.get("name") or "",
            description=line.get("Description"),
            quantity=detail.get("Qty") or 1,
            unit_price=detail.get("UnitPrice") or 0,
            discount=detail.get("DiscountAmt") or 0,
            tax=0,
            total=line.get("Amount") or 0,
            unit=DEFAULT_UNIT,
            metadata={
                "service_date": detail.get("ServiceDate"),
                "tax_code": _ref_value(detail, "TaxCodeRef"),
            },
        ))
    return items


def calculate_discount(lines: list) -> float:
    return sum(line.get("Amount") or 0 for line in lines if line.get("DetailType") == "DiscountLineDetail")


def map_invoice_status(invoice: dict) -> str:
    balance = invoice.get("Balance")
    if not balance:
        return "paid"
    if balance == invoice.get("TotalAmt"):
        return "unpaid"
    return "partial"


def invoice_to_canonical(invoice: dict) -> CanonicalInvoice:
    lines = invoice.get("Line") or []
    items = lines_to_canonical(lines)
    total = invoice.get("TotalAmt") or 0
    balance = invoice.get("Balance") or 0

    return CanonicalInvoice(
        id=invoice.get("Id") or "",
        external_id=invoice.get("Id"),
        source_system=SOURCE,
        invoice_number=invoice.get("DocNumber") or invoice.get("Id") or "",
        customer_id=_ref_value(invoice, "CustomerRef") or "",
        customer_name=_ref_name(invoice, "CustomerRef"),
        status=map_invoice_status(invoice),
        invoice_date=invoice.get("TxnDate"),
        due_date=invoice.get("DueDate"),
        delivered_date=(invoice.get("DeliveryInfo") or {}).get("DeliveryTime"),
        currency=_ref_value(invoice, "CurrencyRef") or DEFAULT_CURRENCY,
        subtotal=sum(item.total or 0 for item in items),
        tax=(invoice.get("TxnTaxDetail") or {}).get("TotalTax") or 0,
        discount=calculate_discount(lines),
        total=total,
        amount_due=balance,
        amount_paid=total - balance,
        items=items,
        billing_address=address_to_canonical(invoice["BillAddr"], "billing") if invoice.get("BillAddr") else None,
        shipping_address=address_to_canonical(invoice["ShipAddr"], "shipping") if invoice.get("ShipAddr") else None,
        metadata={
            "source": SOURCE,
            "sync_token": invoice.get("SyncToken"),
            "print_status": invoice.get("PrintStatus"),
            "email_status": invoice.get("EmailStatus"),
            "ship_date": invoice.get("ShipDate"),
            "tracking_num": invoice.get("TrackingNum"),
            "exchange_rate": invoice.get("ExchangeRate"),
            "allow_online_payment": invoice.get("AllowOnlinePayment"),
            "deposit": invoice.get("Deposit"),
            "linked_txn": invoice.get("LinkedTxn"),
        },
        created_at=_created(invoice),
        updated_at=_updated(invoice),
    )


def sales_receipt_to_canonical(receipt: dict) -> CanonicalOrder:
    """Sales receipts are paid at sale, so the order is always completed."""
    lines = receipt.get("Line") or []
    items = lines_to_canonical(lines)

    return CanonicalOrder(
        id=receipt.get("Id") or "",
        external_id=receipt.get("Id"),
        source_system=SOURCE,
        order_number=receipt.get("DocNumber") or receipt.get("Id") or "",
        customer_id=_ref_value(receipt, "CustomerRef") or "",
        customer_name=_ref_name(receipt, "CustomerRef"),
        status="completed",
        order_date=receipt.get("TxnDate"),
        requested_delivery_date=receipt.get("ShipDate"),
        currency=_ref_value(receipt, "CurrencyRef") or DEFAULT_CURRENCY,
        subtotal=sum(item.total or 0 for item in items),
        tax=(receipt.get("TxnTaxDetail") or {}).get("TotalTax") or 0,
        discount=calculate_discount(lines),
        shipping=0,
        total=receipt.get("TotalAmt") or 0,
        items=items,
        billing_address=address_to_canonical(receipt["BillAddr"], "billing") if receipt.get("BillAddr") else None,
        shipping_address=address_to_canonical(receipt["ShipAddr"], "shipping") if receipt.get("ShipAddr") else None,
        notes=receipt.get("PrivateNote"),
        metadata={
            "source": SOURCE,
            "sync_token": receipt.get("SyncToken"),
            "print_status": receipt.get("PrintStatus"),
            "email_status": receipt.get("EmailStatus"),
            "ship_date": receipt.get("ShipDate"),
            "tracking_num": receipt.get("TrackingNum"),
            "payment_method": _ref_name(receipt, "PaymentMethodRef"),
            "payment_ref_num": receipt.get("PaymentRefNum"),
            "deposit_to_account": _ref_value(receipt, "DepositToAccountRef"),
        },
        created_at=_created(receipt),
        updated_at=_updated(receipt),
    )


def applied_invoices(lines: list) -> list:
    applied = []
    for line in lines or []:
        invoice_txn = next(
            (txn for txn in line.get("LinkedTxn") or [] if txn.get("TxnType") == "Invoice"),
            None,
        )
        if invoice_txn and invoice_txn.get("TxnId"):
            applied.append(AppliedInvoice(invoice_id=invoice_txn["TxnId"], amount=line.get("Amount") or 0))
    return applied


def map_payment_status(payment: dict) -> str:
    unapplied = payment.get("UnappliedAmt")
    if not unapplied:
        return "applied"
    if unapplied == payment.get("TotalAmt"):
        return "unapplied"
    return "partial"


def payment_to_canonical(payment: dict) -> CanonicalPayment:
    return CanonicalPayment(
        id=payment.get("Id") or "",
        external_id=payment.get("Id"),
        source_system=SOURCE,
        payment_number=payment.get("PaymentRefNum"),
        customer_id=_ref_value(payment, "CustomerRef") or "",
        customer_name=_ref_name(payment, "CustomerRef"),
        payment_date=payment.get("TxnDate"),
        amount=payment.get("TotalAmt") or 0,
        currency=_ref_value(payment, "CurrencyRef") or DEFAULT_CURRENCY,
        payment_method=_ref_name(payment, "PaymentMethodRef"),
        reference_number=payment.get("PaymentRefNum"),
        unapplied_amount=payment.get("UnappliedAmt"),
        applied_invoices=applied_invoices(payment.get("Line")),
        status=map_payment_status(payment),
        metadata={
            "source": SOURCE,
            "sync_token": payment.get("SyncToken"),
            "process_payment": payment.get("ProcessPayment"),
            "deposit_to_account": _ref_value(payment, "DepositToAccountRef"),
            "exchange_rate": payment.get("ExchangeRate"),
        },
        created_at=_created(payment),
        updated_at=_updated(payment),
    )


# ─────────────────────────────────────────────────────────────
# CANONICAL → QBO INPUTS
# ─────────────────────────────────────────────────────────────

def address_from_canonical(address: Optional[CanonicalAddress]) -> Optional[QuickBooksAddressInput]:
    if not address or not address.line1:
        return None
    return QuickBooksAddressInput(
        line1=address.line1,
        line2=address.line2,
        line3=address.line3,
        city=address.city,
        state=address.state,
        postal_code=address.postal_code,
        country=address.country,
    )


def _address_of(addresses: list, address_type: str) -> Optional[CanonicalAddress]:
    return next((a for a in addresses if a.type == address_type), None)


def customer_from_canonical(customer: CanonicalCustomer) -> QuickBooksCustomerInput:
    return QuickBooksCustomerInput(
        display_name=customer.name,
        company_name=customer.name if customer.type == "business" else None,
        first_name=customer.first_name,
        last_name=customer.last_name,
        email=customer.email or None,
        phone=customer.phone or None,
        mobile=customer.mobile,
        website=customer.website,
        billing_address=address_from_canonical(_address_of(customer.addresses, "billing")),
        shipping_address=address_from_canonical(_address_of(customer.addresses, "shipping")),
        currency=customer.currency,
    )


def product_from_canonical(product: CanonicalProduct) -> QuickBooksItemInput:
    reverse = {v: k for k, v in ITEM_TYPES.items()}
    item_type = reverse.get(product.type)
    if not item_type:
        item_type = QuickBooksItemType.INVENTORY.value if product.is_stock_item else QuickBooksItemType.NON_INVENTORY.value
    return QuickBooksItemInput(
        name=product.name,
        type=item_type,
        description=product.description,
        sku=product.sku or None,
        unit_price=product.price,
        purchase_cost=product.cost,
        active=product.status != "inactive",
        taxable=product.is_taxable,
        track_qty_on_hand=True if item_type == QuickBooksItemType.INVENTORY.value else None,
        qty_on_hand=product.quantity_on_hand if item_type == QuickBooksItemType.INVENTORY.value else None,
    )


def lines_from_canonical(items: list) -> list:
    return [
        QuickBooksLineInput(
            item_id=item.product_id or None,
            description=item.description or item.name,
            quantity=item.quantity,
            unit_price=item.unit_price,
            amount=item.total,
        )
        for item in items
    ]


def invoice_from_canonical(invoice: CanonicalInvoice) -> QuickBooksInvoiceInput:
    return QuickBooksInvoiceInput(
        customer_id=invoice.customer_id or "",
        lines=lines_from_canonical(invoice.items),
        txn_date=invoice.invoice_date,
        due_date=invoice.due_date,
        doc_number=invoice.invoice_number or None,
        private_note=invoice.notes,
        billing_address=address_from_canonical(invoice.billing_address),
        shipping_address=address_from_canonical(invoice.shipping_address),
    )


def order_from_canonical(order: CanonicalOrder) -> QuickBooksSalesReceiptInput:
    return QuickBooksSalesReceiptInput(
        customer_id=order.customer_id or None,
        lines=lines_from_canonical(order.items),
        txn_date=order.order_date,
        doc_number=order.order_number or None,
        private_note=order.notes,
        billing_address=address_from_canonical(order.billing_address),
        shipping_address=address_from_canonical(order.shipping_address),
    )


def payment_from_canonical(payment: CanonicalPayment) -> QuickBooksPaymentInput:
    return QuickBooksPaymentInput(
        customer_id=payment.customer_id or "",
        total_amt=payment.amount,
        txn_date=payment.payment_date,
        payment_ref_num=payment.reference_number,
        invoices=[
            PaymentInvoiceLink(invoice_id=applied.invoice_id, amount=applied.amount)
            for applied in payment.applied_invoices
        ],
    )
