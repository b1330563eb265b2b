"""
B2B-INTEGRATIONS — QuickBooks Online connector
Entry point used by the integration hub. Wraps the entity services and maps
every answer into canonical models.

Flow:
1. initialize(config, credentials) validates and keeps the connection
2. test_connection() hits companyinfo for the realm
3. Entity operations return ConnectorResult with canonical data;
   list operations return ListPage(items, total, has_more)
"""

import logging
from typing import Callable, Optional, Union

from app.connectors.quickbooks import mapper
from app.connectors.quickbooks.auth import QuickBooksAuthError, QuickBooksAuthService, quickbooks_auth
from app.connectors.quickbooks.customer_service import QuickBooksCustomerService, quickbooks_customer_service
from app.connectors.quickbooks.errors import create_error_result
from app.connectors.quickbooks.invoice_service import QuickBooksInvoiceService, quickbooks_invoice_service
from app.connectors.quickbooks.item_service import QuickBooksItemService, quickbooks_item_service
from app.connectors.quickbooks.payment_service import QuickBooksPaymentService, quickbooks_payment_service
from app.connectors.quickbooks.sales_receipt_service import (
    QuickBooksSalesReceiptService,
    quickbooks_sales_receipt_service,
)
from app.schemas.connectors import (
    CanonicalCustomer,
    CanonicalInvoice,
    CanonicalOrder,
    CanonicalPayment,
    CanonicalProduct,
    ConnectorMetadata,
    ConnectorResult,
    ListPage,
    QuickBooksConnectionConfig,
    QuickBooksCredentials,
    QuickBooksCustomerInput,
    QuickBooksInvoiceInput,
    QuickBooksItemInput,
    QuickBooksPaymentInput,
    QuickBooksSalesReceiptInput,
    ResultMetadata,
)

logger = logging.getLogger(__name__)

CONNECTOR_METADATA = ConnectorMetadata(
    id="quickbooks-online",
    name="QuickBooks Online",
    version="1.0.0",
    vendor="Intuit",
    description="Integration connector for Intuit QuickBooks Online",
    supported_operations=[
        "create_customer", "get_customer", "list_customers", "update_customer", "search_customers",
        "create_item", "get_item", "list_items", "update_item", "search_items",
        "create_invoice", "get_invoice", "list_invoices", "update_invoice", "void_invoice", "send_invoice",
        "create_sales_receipt", "get_sales_receipt", "list_sales_receipts", "update_sales_receipt",
        "void_sales_receipt",
        "create_payment", "get_payment", "list_payments", "void_payment",
    ],
    config_schema={
        "type": "object",
        "properties": {
            "realm_id": {"type": "string", "description": "QuickBooks Company ID (Realm ID)"},
            "environment": {"type": "string", "enum": ["sandbox", "production"]},
            "client_id": {"type": "string", "description": "OAuth2 client ID"},
            "client_secret": {"type": "string", "description": "OAuth2 client secret", "sensitive": True},
            "access_token": {"type": "string", "description": "OAuth2 access token", "sensitive": True},
            "refresh_token": {"type": "string", "description": "OAuth2 refresh token", "sensitive": True},
        },
        "required": ["realm_id", "environment", "client_id", "client_secret"],
    },
)


def _mapped(result: ConnectorResult, fn: Callable) -> ConnectorResult:
    if not result.success:
        return result
    data = fn(result.data) if result.data else None
    return ConnectorResult(success=True, data=data, metadata=result.metadata)


def _page(result: ConnectorResult, fn: Callable) -> ConnectorResult:
    if not result.success:
        return result
    return ConnectorResult(
        success=True,
        data=ListPage(
            items=[fn(entity) for entity in result.data or []],
            total=result.metadata.total_results,
            has_more=result.metadata.has_more,
        ),
        metadata=result.metadata,
    )


class QuickBooksConnector:
    """
    Usage:
        connector = QuickBooksConnector()
        connector.initialize(config, credentials)
        page = await connector.list_customers(active=True)
    """

    def __init__(
        self,
        auth: Optional[QuickBooksAuthService] = None,
        customers: Optional[QuickBooksCustomerService] = None,
        items: Optional[QuickBooksItemService] = None,
        invoices: Optional[QuickBooksInvoiceService] = None,
        sales_receipts: Optional[QuickBooksSalesReceiptService] = None,
        payments: Optional[QuickBooksPaymentService] = None,
    ):
        self.auth = auth or quickbooks_auth
        self.customers = customers or quickbooks_customer_service
        self.items = items or quickbooks_item_service
        self.invoices = invoices or quickbooks_invoice_service
        self.sales_receipts = sales_receipts or quickbooks_sales_receipt_service
        self.payments = payments or quickbooks_payment_service

        self.config: Optional[QuickBooksConnectionConfig] = None
        self.credentials: Optional[QuickBooksCredentials] = None

    def get_metadata(self) -> ConnectorMetadata:
        return CONNECTOR_METADATA

    def initialize(self, config: QuickBooksConnectionConfig, credentials: QuickBooksCredentials) -> None:
        valid, errors = self.auth.validate_credentials(config, credentials)
        if not valid:
            raise QuickBooksAuthError(f"Invalid credentials: {', '.join(errors)}", status_code=400)
        self.config = config
        self.credentials = credentials
        logger.info(f"QuickBooks connector initialized for realm {config.realm_id}")

    @property
    def initialized(self) -> bool:
        return self.config is not None and self.credentials is not None

    async def test_connection(
        self,
        config: Optional[QuickBooksConnectionConfig] = None,
        credentials: Optional[QuickBooksCredentials] = None,
    ) -> ConnectorResult:
        config = config or self.config
        credentials = credentials or self.credentials
        if config is None or credentials is None:
            return self._not_initialized()

        try:
            valid, errors = self.auth.validate_credentials(config, credentials)
            if not valid:
                return ConnectorResult.failure(
                    code="INVALID_CREDENTIALS",
                    message=f"Invalid credentials: {', '.join(errors)}",
                    request_id="validation",
                )

            ok, error = await self.auth.test_authentication(config, credentials)
            if ok:
                return ConnectorResult(
                    success=True,
                    data={"connected": True, "message": "Successfully connected to QuickBooks Online"},
                    metadata=ResultMetadata(request_id="test-connection"),
                )
            return ConnectorResult.failure(
                code="CONNECTION_FAILED",
                message=error or "Failed to connect to QuickBooks Online",
                retryable=True,
                request_id="test-connection",
            )
        except Exception as e:
            return create_error_result(e, "test-connection", 0)

    @staticmethod
    def _not_initialized() -> ConnectorResult:
        return ConnectorResult.failure(code="NOT_INITIALIZED", message="QuickBooks connector is not initialized")

    # ═════════════════════════════════════════════════════════
    # CUSTOMERS
    # ═════════════════════════════════════════════════════════

    async def create_customer(self, data: Union[QuickBooksCustomerInput, CanonicalCustomer]) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        if isinstance(data, CanonicalCustomer):
            data = mapper.customer_from_canonical(data)
        result = await self.customers.create(self.config, self.credentials, data)
        return _mapped(result, mapper.customer_to_canonical)

    async def get_customer(self, customer_id: str) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        result = await self.customers.get_by_id(self.config, self.credentials, customer_id)
        return _mapped(result, mapper.customer_to_canonical)

    async def list_customers(self, **filters) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        result = await self.customers.list(self.config, self.credentials, **filters)
        return _page(result, mapper.customer_to_canonical)

    async def update_customer(self, customer_id: str, sync_token: str, changes: dict) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        result = await self.customers.update(self.config, self.credentials, customer_id, sync_token, changes)
        return _mapped(result, mapper.customer_to_canonical)

    async def search_customers(self, term: str, limit: Optional[int] = None) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        result = await self.customers.search(self.config, self.credentials, term, limit)
        return _page(result, mapper.customer_to_canonical)

    async def deactivate_customer(self, customer_id: str, sync_token: str) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        result = await self.customers.deactivate(self.config, self.credentials, customer_id, sync_token)
        return _mapped(result, mapper.customer_to_canonical)

    # ═════════════════════════════════════════════════════════
    # ITEMS
    # ═════════════════════════════════════════════════════════

    async def create_item(self, data: Union[QuickBooksItemInput, CanonicalProduct]) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        if isinstance(data, CanonicalProduct):
            data = mapper.product_from_canonical(data)
        result = await self.items.create(self.config, self.credentials, data)
        return _mapped(result, mapper.item_to_canonical)

    async def get_item(self, item_id: str) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        result = await self.items.get_by_id(self.config, self.credentials, item_id)
        return _mapped(result, mapper.item_to_canonical)

    async def get_item_by_sku(self, sku: str) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        result = await self.items.get_by_sku(self.config, self.credentials, sku)
        return _mapped(result, mapper.item_to_canonical)

    async def list_items(self, **filters) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        result = await self.items.list(self.config, self.credentials, **filters)
        return _page(result, mapper.item_to_canonical)

    async def update_item(self, item_id: str, sync_token: str, changes: dict) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        result = await self.items.update(self.config, self.credentials, item_id, sync_token, changes)
        return _mapped(result, mapper.item_to_canonical)

    async def search_items(self, term: str, **options) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        result = await self.items.search(self.config, self.credentials, term, **options)
        return _page(result, mapper.item_to_canonical)

    async def get_low_stock_items(self, limit: Optional[int] = None) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        result = await self.items.get_low_stock_items(self.config, self.credentials, limit)
        return _page(result, mapper.item_to_canonical)

    # ═════════════════════════════════════════════════════════
    # INVOICES
    # ═════════════════════════════════════════════════════════

    async def create_invoice(self, data: Union[QuickBooksInvoiceInput, CanonicalInvoice]) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        if isinstance(data, CanonicalInvoice):
            data = mapper.invoice_from_canonical(data)
        result = await self.invoices.create(self.config, self.credentials, data)
        return _mapped(result, mapper.invoice_to_canonical)

    async def get_invoice(self, invoice_id: str) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        result = await self.invoices.get_by_id(self.config, self.credentials, invoice_id)
        return _mapped(result, mapper.invoice_to_canonical)

    async def list_invoices(self, **filters) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        result = await self.invoices.list(self.config, self.credentials, **filters)
        return _page(result, mapper.invoice_to_canonical)

    async def update_invoice(self, invoice_id: str, sync_token: str, changes: dict) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        result = await self.invoices.update(self.config, self.credentials, invoice_id, sync_token, changes)
        return _mapped(result, mapper.invoice_to_canonical)

    async def void_invoice(self, invoice_id: str, sync_token: str) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        result = await self.invoices.void(self.config, self.credentials, invoice_id, sync_token)
        return _mapped(result, mapper.invoice_to_canonical)

    async def send_invoice(self, invoice_id: str, email: Optional[str] = None) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        result = await self.invoices.send(self.config, self.credentials, invoice_id, email)
        return _mapped(result, mapper.invoice_to_canonical)

    async def get_outstanding_invoices(self, customer_id: Optional[str] = None, **options) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        result = await self.invoices.get_outstanding(self.config, self.credentials, customer_id, **options)
        return _page(result, mapper.invoice_to_canonical)

    async def get_overdue_invoices(self, customer_id: Optional[str] = None, **options) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        result = await self.invoices.get_overdue(self.config, self.credentials, customer_id, **options)
        return _page(result, mapper.invoice_to_canonical)

    # ═════════════════════════════════════════════════════════
    # SALES RECEIPTS
    # ═════════════════════════════════════════════════════════

    async def create_sales_receipt(
        self,
        data: Union[QuickBooksSalesReceiptInput, CanonicalOrder],
    ) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        if isinstance(data, CanonicalOrder):
            data = mapper.order_from_canonical(data)
        result = await self.sales_receipts.create(self.config, self.credentials, data)
        return _mapped(result, mapper.sales_receipt_to_canonical)

    async def get_sales_receipt(self, receipt_id: str) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        result = await self.sales_receipts.get_by_id(self.config, self.credentials, receipt_id)
        return _mapped(result, mapper.sales_receipt_to_canonical)

    async def list_sales_receipts(self, **filters) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        result = await self.sales_receipts.list(self.config, self.credentials, **filters)
        return _page(result, mapper.sales_receipt_to_canonical)

    async def update_sales_receipt(self, receipt_id: str, sync_token: str, changes: dict) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        result = await self.sales_receipts.update(self.config, self.credentials, receipt_id, sync_token, changes)
        return _mapped(result, mapper.sales_receipt_to_canonical)

    async def void_sales_receipt(self, receipt_id: str, sync_token: str) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        result = await self.sales_receipts.void(self.config, self.credentials, receipt_id, sync_token)
        return _mapped(result, mapper.sales_receipt_to_canonical)

    # ═════════════════════════════════════════════════════════
    # PAYMENTS
    # ═════════════════════════════════════════════════════════

    async def create_payment(self, data: Union[QuickBooksPaymentInput, CanonicalPayment]) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        if isinstance(data, CanonicalPayment):
            data = mapper.payment_from_canonical(data)
        result = await self.payments.create(self.config, self.credentials, data)
        return _mapped(result, mapper.payment_to_canonical)

    async def get_payment(self, payment_id: str) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        result = await self.payments.get_by_id(self.config, self.credentials, payment_id)
        return _mapped(result, mapper.payment_to_canonical)

    async def list_payments(self, **filters) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        result = await self.payments.list(self.config, self.credentials, **filters)
        return _page(result, mapper.payment_to_canonical)

    async def void_payment(self, payment_id: str, sync_token: str) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        result = await self.payments.void(self.config, self.credentials, payment_id, sync_token)
        return _mapped(result, mapper.payment_to_canonical)

    async def get_payments_for_invoice(self, invoice_id: str) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        result = await self.payments.get_for_invoice(self.config, self.credentials, invoice_id)
        return _page(result, mapper.payment_to_canonical)

    # ═════════════════════════════════════════════════════════
    # RAW ACCESS (unmapped QBO entities)
    # ═════════════════════════════════════════════════════════

    async def get_raw_customers(self, **filters) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        return await self.customers.list(self.config, self.credentials, **filters)

    async def get_raw_items(self, **filters) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        return await self.items.list(self.config, self.credentials, **filters)

    async def get_raw_invoices(self, **filters) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        return await self.invoices.list(self.config, self.credentials, **filters)

    async def get_raw_sales_receipts(self, **filters) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        return await self.sales_receipts.list(self.config, self.credentials, **filters)

    async def get_raw_payments(self, **filters) -> ConnectorResult:
        if not self.initialized:
            return self._not_initialized()
        return await self.payments.list(self.config, self.credentials, **filters)


# Singleton instance
quickbooks_connector = QuickBooksConnector()
