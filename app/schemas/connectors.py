"""
B2B-INTEGRATIONS ERP Connector Schemas
Result envelopes, canonical B2B models and per-ERP connection/input models
shared by the QuickBooks Online and NetSuite connectors.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field


# ─────────────────────────────────────────────────────────────
# RESULT ENVELOPE
# ─────────────────────────────────────────────────────────────

class ConnectorErrorInfo(BaseModel):
    code: str
    message: str
    details: Any = None
    retryable: bool = False
    request_id: Optional[str] = None


class ResultMetadata(BaseModel):
    request_id: Optional[str] = None
    duration_ms: int = 0
    total_results: Optional[int] = None
    has_more: bool = False
    extra: dict[str, Any] = Field(default_factory=dict)


class ConnectorResult(BaseModel):
    """Every connector operation answers with this instead of raising."""
    success: bool
    data: Any = None
    error: Optional[ConnectorErrorInfo] = None
    metadata: ResultMetadata = Field(default_factory=ResultMetadata)

    @classmethod
    def failure(
        cls,
        code: str,
        message: str,
        retryable: bool = False,
        request_id: Optional[str] = None,
        details: Any = None,
        duration_ms: int = 0,
    ) -> "ConnectorResult":
        return cls(
            success=False,
            error=ConnectorErrorInfo(
                code=code,
                message=message,
                details=details,
                retryable=retryable,
                request_id=request_id,
            ),
            metadata=ResultMetadata(request_id=request_id, duration_ms=duration_ms),
        )


class ListPage(BaseModel):
    items: list[Any] = Field(default_factory=list)
    total: Optional[int] = None
    has_more: bool = False


class ConnectorMetadata(BaseModel):
    id: str
    name: str
    version: str
    vendor: str
    description: str = ""
    supported_operations: list[str] = Field(default_factory=list)
    config_schema: dict[str, Any] = Field(default_factory=dict)


class ConnectionTestResult(BaseModel):
    success: bool
    message: str
    latency_ms: Optional[int] = None
    capabilities: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


# ─────────────────────────────────────────────────────────────
# CANONICAL MODELS (ERP-agnostic)
# ─────────────────────────────────────────────────────────────

class CanonicalAddress(BaseModel):
    type: Optional[str] = None  # billing | shipping
    line1: Optional[str] = None
    line2: Optional[str] = None
    line3: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    attention: Optional[str] = None
    phone: Optional[str] = None


class CanonicalCustomer(BaseModel):
    id: str = Field(..., description="ERP internal id")
    external_id: Optional[str] = None
    source_system: str
    customer_number: Optional[str] = None
    type: str = "business"  # business | individual
    name: str = ""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    mobile: Optional[str] = None
    website: Optional[str] = None
    status: str = "active"  # active | inactive
    addresses: list[CanonicalAddress] = Field(default_factory=list)
    balance: Optional[float] = None
    credit_limit: Optional[float] = None
    available_credit: Optional[float] = None
    overdue_balance: Optional[float] = None
    payment_terms: Optional[str] = None
    currency: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_company(self) -> bool:
        return self.type == "business"


class CanonicalProduct(BaseModel):
    id: str
    external_id: Optional[str] = None
    source_system: str
    sku: str = ""
    name: str = ""
    description: Optional[str] = None
    type: str = "product"
    status: str = "active"
    price: Optional[float] = None
    cost: Optional[float] = None
    unit: Optional[str] = None
    upc: Optional[str] = None
    weight: Optional[float] = None
    weight_unit: Optional[str] = None
    is_taxable: Optional[bool] = None
    is_stock_item: Optional[bool] = None
    quantity_on_hand: Optional[float] = None
    quantity_available: Optional[float] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class CanonicalLineItem(BaseModel):
    id: Optional[str] = None
    line_number: int
    product_id: Optional[str] = None
    sku: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    quantity: float = 0
    unit_price: Optional[float] = None
    discount: float = 0
    tax: float = 0
    total: Optional[float] = None
    unit: Optional[str] = None
    is_fulfilled: Optional[bool] = None
    quantity_fulfilled: Optional[float] = None
    quantity_billed: Optional[float] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class CanonicalOrder(BaseModel):
    id: str
    external_id: Optional[str] = None
    source_system: str
    order_number: str = ""
    order_date: Optional[str] = None
    requested_delivery_date: Optional[str] = None
    status: str = "Unknown"
    status_code: Optional[str] = None
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    currency: Optional[str] = None
    items: list[CanonicalLineItem] = Field(default_factory=list)
    subtotal: Optional[float] = None
    discount: Optional[float] = None
    tax: Optional[float] = None
    shipping: Optional[float] = None
    total: float = 0
    billing_address: Optional[CanonicalAddress] = None
    shipping_address: Optional[CanonicalAddress] = None
    notes: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class CanonicalInvoice(BaseModel):
    id: str
    external_id: Optional[str] = None
    source_system: str
    invoice_number: str = ""
    invoice_date: Optional[str] = None
    due_date: Optional[str] = None
    delivered_date: Optional[str] = None
    status: str = "Unknown"
    status_code: Optional[str] = None
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    order_id: Optional[str] = None
    order_number: Optional[str] = None
    currency: Optional[str] = None
    items: list[CanonicalLineItem] = Field(default_factory=list)
    subtotal: Optional[float] = None
    discount: Optional[float] = None
    tax: Optional[float] = None
    total: float = 0
    amount_paid: Optional[float] = None
    amount_due: Optional[float] = None
    billing_address: Optional[CanonicalAddress] = None
    shipping_address: Optional[CanonicalAddress] = None
    notes: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class AppliedInvoice(BaseModel):
    invoice_id: str
    amount: float = 0


class CanonicalPayment(BaseModel):
    id: str
    external_id: Optional[str] = None
    source_system: str
    payment_number: Optional[str] = None
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    payment_date: Optional[str] = None
    amount: float = 0
    currency: Optional[str] = None
    payment_method: Optional[str] = None
    reference_number: Optional[str] = None
    unapplied_amount: Optional[float] = None
    applied_invoices: list[AppliedInvoice] = Field(default_factory=list)
    status: str = "applied"  # applied | unapplied | partial | voided
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class CanonicalInventoryStatus(BaseModel):
    product_id: str
    sku: Optional[str] = None
    location_id: Optional[str] = None
    location_name: Optional[str] = None
    quantity_on_hand: float = 0
    quantity_available: float = 0
    quantity_on_order: float = 0
    quantity_committed: float = 0
    quantity_backordered: float = 0
    average_cost: Optional[float] = None
    as_of_date: str


# ─────────────────────────────────────────────────────────────
# QUICKBOOKS ONLINE
# ─────────────────────────────────────────────────────────────

class QuickBooksEnvironment(str, Enum):
    SANDBOX = "sandbox"
    PRODUCTION = "production"


class QuickBooksItemType(str, Enum):
    INVENTORY = "Inventory"
    NON_INVENTORY = "NonInventory"
    SERVICE = "Service"
    GROUP = "Group"
    CATEGORY = "Category"


class QuickBooksConnectionConfig(BaseModel):
    realm_id: str = ""
    environment: str = QuickBooksEnvironment.SANDBOX.value
    minor_version: int = 65
    timeout: float = 30.0
    logging: bool = False


class QuickBooksOAuth2Config(BaseModel):
    client_id: str = ""
    client_secret: str = ""
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None


class QuickBooksCredentials(BaseModel):
    oauth2: Optional[QuickBooksOAuth2Config] = None


class QuickBooksTokenResult(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    expires_at: datetime


class QueryOptions(BaseModel):
    start_position: Optional[int] = None
    max_results: Optional[int] = None
    order_by: Optional[str] = None


class QuickBooksAddressInput(BaseModel):
    line1: str
    line2: Optional[str] = None
    line3: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class QuickBooksCustomerInput(BaseModel):
    display_name: str
    company_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    title: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    mobile: Optional[str] = None
    website: Optional[str] = None
    notes: Optional[str] = None
    billing_address: Optional[QuickBooksAddressInput] = None
    shipping_address: Optional[QuickBooksAddressInput] = None
    taxable: Optional[bool] = None
    payment_terms_id: Optional[str] = None
    currency: Optional[str] = None


class QuickBooksItemInput(BaseModel):
    name: str
    type: QuickBooksItemType
    description: Optional[str] = None
    sku: Optional[str] = None
    unit_price: Optional[float] = None
    purchase_cost: Optional[float] = None
    purchase_description: Optional[str] = None
    active: Optional[bool] = None
    taxable: Optional[bool] = None
    track_qty_on_hand: Optional[bool] = None
    qty_on_hand: Optional[float] = None
    inv_start_date: Optional[str] = None
    income_account_id: Optional[str] = None
    expense_account_id: Optional[str] = None
    asset_account_id: Optional[str] = None


class QuickBooksLineInput(BaseModel):
    item_id: Optional[str] = None
    description: Optional[str] = None
    quantity: Optional[float] = None
    unit_price: Optional[float] = None
    amount: Optional[float] = None
    service_date: Optional[str] = None
    tax_code_id: Optional[str] = None


class QuickBooksInvoiceInput(BaseModel):
    customer_id: str
    lines: list[QuickBooksLineInput]
    txn_date: Optional[str] = None
    due_date: Optional[str] = None
    doc_number: Optional[str] = None
    private_note: Optional[str] = None
    customer_memo: Optional[str] = None
    billing_address: Optional[QuickBooksAddressInput] = None
    shipping_address: Optional[QuickBooksAddressInput] = None
    ship_date: Optional[str] = None
    tracking_num: Optional[str] = None
    bill_email: Optional[str] = None
    payment_terms_id: Optional[str] = None
    apply_tax_after_discount: Optional[bool] = None


class QuickBooksSalesReceiptInput(BaseModel):
    lines: list[QuickBooksLineInput]
    customer_id: Optional[str] = None
    txn_date: Optional[str] = None
    doc_number: Optional[str] = None
    private_note: Optional[str] = None
    customer_memo: Optional[str] = None
    billing_address: Optional[QuickBooksAddressInput] = None
    shipping_address: Optional[QuickBooksAddressInput] = None
    payment_method_id: Optional[str] = None
    payment_ref_num: Optional[str] = None
    deposit_to_account_id: Optional[str] = None


class PaymentInvoiceLink(BaseModel):
    invoice_id: str
    amount: Optional[float] = None


class QuickBooksPaymentInput(BaseModel):
    customer_id: str
    total_amt: float
    txn_date: Optional[str] = None
    payment_method_id: Optional[str] = None
    payment_ref_num: Optional[str] = None
    private_note: Optional[str] = None
    deposit_to_account_id: Optional[str] = None
    invoices: list[PaymentInvoiceLink] = Field(default_factory=list)
    process_payment: Optional[bool] = None


# ─────────────────────────────────────────────────────────────
# NETSUITE
# ─────────────────────────────────────────────────────────────

class NetSuiteConnectionConfig(BaseModel):
    account_id: str
    base_url: Optional[str] = None
    api_version: str = "v1"
    timeout_ms: int = 30000
    retry_attempts: int = 3


class NetSuiteCredentials(BaseModel):
    consumer_key: str = ""
    consumer_secret: str = ""
    token_id: str = ""
    token_secret: str = ""
    realm: str = ""


class NetSuitePagination(BaseModel):
    offset: Optional[int] = None
    limit: Optional[int] = None


class NetSuiteAddressInput(BaseModel):
    label: Optional[str] = None
    default_shipping: bool = False
    default_billing: bool = False
    addr1: Optional[str] = None
    addr2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = None


class NetSuiteCustomerInput(BaseModel):
    company_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_person: Optional[bool] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    external_id: Optional[str] = None
    subsidiary: Optional[str] = None
    currency: Optional[str] = None
    terms: Optional[str] = None
    price_level: Optional[str] = None
    credit_limit: Optional[float] = None
    addresses: list[NetSuiteAddressInput] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class NetSuiteOrderLineInput(BaseModel):
    item_id: str
    quantity: float
    rate: Optional[float] = None
    description: Optional[str] = None
    location: Optional[str] = None


class NetSuiteSalesOrderInput(BaseModel):
    customer_id: str
    items: list[NetSuiteOrderLineInput]
    order_date: Optional[str] = None
    external_id: Optional[str] = None
    memo: Optional[str] = None
    terms: Optional[str] = None
    ship_method: Optional[str] = None
    billing_address: Optional[NetSuiteAddressInput] = None
    shipping_address: Optional[NetSuiteAddressInput] = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class NetSuiteSalesOrderUpdate(BaseModel):
    memo: Optional[str] = None
    ship_method: Optional[str] = None
    billing_address: Optional[NetSuiteAddressInput] = None
    shipping_address: Optional[NetSuiteAddressInput] = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class NetSuiteInventoryCheckRequest(BaseModel):
    item_id: str
    location_id: Optional[str] = None
    subsidiary_id: Optional[str] = None


class NetSuiteSearchFilter(BaseModel):
    field: str
    operator: str
    value: Union[str, int, float, list[str], None] = None


class NetSuiteSearchParams(BaseModel):
    search_id: Optional[str] = None
    record_type: Optional[str] = None
    filters: list[NetSuiteSearchFilter] = Field(default_factory=list)
    columns: list[str] = Field(default_factory=list)
    page_size: Optional[int] = None
    page_index: Optional[int] = None


class NetSuiteSearchResult(BaseModel):
    total_results: int = 0
    page_index: int = 0
    page_size: int = 100
    results: list[dict[str, Any]] = Field(default_factory=list)
