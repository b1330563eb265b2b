"""
B2B-INTEGRATIONS — NetSuite connector
Capability-based entry point used by the integration hub. Every capability
answers with a ConnectorResult; NetSuite failures are classified by the error
catalogue instead of propagating.

Flow:
1. initialize(config, credentials) validates TBA credentials, configures the client
2. test_connection() runs SELECT 1 through SuiteQL
3. execute_capability("salesOrder.create", payload) → service → canonical model
4. List capabilities return {"items", "total_results", "has_more"}
"""

import logging
from typing import Optional

from app.connectors.netsuite import errors, mapper
from app.connectors.netsuite.auth import NetSuiteAuthError, NetSuiteAuthService
from app.connectors.netsuite.customer_service import NetSuiteCustomerService
from app.connectors.netsuite.inventory_service import NetSuiteInventoryService
from app.connectors.netsuite.invoice_service import NetSuiteInvoiceService
from app.connectors.netsuite.item_service import NetSuiteItemService
from app.connectors.netsuite.rest_client import NetSuiteRestClient
from app.connectors.netsuite.sales_order_service import NetSuiteSalesOrderService
from app.connectors.netsuite.saved_search_service import NetSuiteSavedSearchService
from app.schemas.connectors import (
    ConnectionTestResult,
    ConnectorMetadata,
    ConnectorResult,
    NetSuiteConnectionConfig,
    NetSuiteCredentials,
    NetSuiteCustomerInput,
    NetSuiteInventoryCheckRequest,
    NetSuitePagination,
    NetSuiteSalesOrderInput,
    NetSuiteSalesOrderUpdate,
    NetSuiteSearchParams,
)

logger = logging.getLogger(__name__)

# capability → (name, description, category)
CAPABILITIES = {
    "salesOrder.create": ("Create Sales Order", "Create a new sales order in NetSuite", "crud"),
    "salesOrder.get": ("Get Sales Order", "Retrieve a sales order by ID", "crud"),
    "salesOrder.getStatus": ("Get Sales Order Status", "Get the current status of a sales order", "crud"),
    "salesOrder.list": ("List Sales Orders", "List sales orders with optional filters", "crud"),
    "salesOrder.update": ("Update Sales Order", "Update an existing sales order", "crud"),
    "salesOrder.close": ("Close Sales Order", "Close an open sales order", "crud"),
    "customer.create": ("Create Customer", "Create a new customer in NetSuite", "crud"),
    "customer.get": ("Get Customer", "Retrieve a customer by ID", "crud"),
    "customer.update": ("Update Customer", "Update an existing customer", "crud"),
    "customer.list": ("List Customers", "List customers with optional filters", "crud"),
    "customer.sync": ("Sync Customers", "Sync customers modified since a date", "crud"),
    "item.get": ("Get Item", "Retrieve an item by ID", "crud"),
    "item.list": ("List Items", "List items with optional filters", "crud"),
    "item.sync": ("Sync Items", "Sync items modified since a date", "crud"),
    "invoice.get": ("Get Invoice", "Retrieve an invoice by ID", "crud"),
    "invoice.list": ("List Invoices", "List invoices with optional filters", "crud"),
    "invoice.open": ("Open Invoices", "List invoices with a remaining balance", "crud"),
    "invoice.overdue": ("Overdue Invoices", "List open invoices past their due date", "crud"),
    "invoice.sync": ("Sync Invoices", "Sync invoices modified since a date", "crud"),
    "inventory.check": ("Check Inventory", "Check inventory availability for an item", "sync"),
    "inventory.checkMultiple": ("Check Multiple Inventory", "Check inventory for multiple items", "sync"),
    "inventory.byLocation": ("Inventory by Location", "Get inventory breakdown by location", "sync"),
    "search.execute": ("Execute Search", "Execute a saved search or custom query", "search"),
    "search.savedSearches": ("List Saved Searches", "List available saved searches", "search"),
}

CONNECTOR_METADATA = ConnectorMetadata(
    id="netsuite",
    name="Oracle NetSuite",
    version="1.0.0",
    vendor="Oracle",
    description="Connect to Oracle NetSuite using REST API and SuiteQL",
    supported_operations=list(CAPABILITIES),
    config_schema={
        "type": "object",
        "properties": {
            "account_id": {"type": "string", "description": "NetSuite Account ID"},
            "base_url": {"type": "string", "description": "Custom API Base URL (optional)"},
            "api_version": {"type": "string", "default": "v1", "enum": ["v1"]},
            "timeout_ms": {"type": "number", "default": 30000, "minimum": 5000, "maximum": 120000},
            "retry_attempts": {"type": "number", "default": 3, "minimum": 0, "maximum": 10},
        },
        "required": ["account_id"],
    },
)

CREDENTIAL_FIELDS = [
    {"key": "consumer_key", "label": "Consumer Key", "type": "password", "required": True},
    {"key": "consumer_secret", "label": "Consumer Secret", "type": "password", "required": True},
    {"key": "token_id", "label": "Token ID", "type": "password", "required": True},
    {"key": "token_secret", "label": "Token Secret", "type": "password", "required": True},
    {"key": "realm", "label": "Account ID (Realm)", "type": "string", "required": True},
]


def _pagination(payload: dict) -> Optional[NetSuitePagination]:
    pagination = payload.get("pagination")
    return NetSuitePagination(**pagination) if pagination else None


def _list(response: dict, fn) -> ConnectorResult:
    return ConnectorResult(
        success=True,
        data={
            "items": [fn(row) for row in response.get("items") or []],
            "total_results": response.get("totalResults"),
            "has_more": bool(response.get("hasMore")),
        },
    )


def _identity(row):
    return row


class NetSuiteConnector:
    """
    Usage:
        connector = NetSuiteConnector()
        connector.initialize(config, credentials)
        result = await connector.execute_capability("customer.get", {"id": "42"})
    """

    def __init__(
        self,
        auth: Optional[NetSuiteAuthService] = None,
        rest_client: Optional[NetSuiteRestClient] = None,
    ):
        self.auth = auth or NetSuiteAuthService()
        self.rest_client = rest_client or NetSuiteRestClient(auth=self.auth)
        self.sales_orders = NetSuiteSalesOrderService(self.rest_client)
        self.customers = NetSuiteCustomerService(self.rest_client)
        self.items = NetSuiteItemService(self.rest_client)
        self.invoices = NetSuiteInvoiceService(self.rest_client)
        self.inventory = NetSuiteInventoryService(self.rest_client)
        self.searches = NetSuiteSavedSearchService(self.rest_client)

        self.config: Optional[NetSuiteConnectionConfig] = None
        self.credentials: Optional[NetSuiteCredentials] = None

        self._handlers = {
            "salesOrder.create": self._create_sales_order,
            "salesOrder.get": self._get_sales_order,
            "salesOrder.getStatus": self._get_sales_order_status,
            "salesOrder.list": self._list_sales_orders,
            "salesOrder.update": self._update_sales_order,
            "salesOrder.close": self._close_sales_order,
            "customer.create": self._create_customer,
            "customer.get": self._get_customer,
            "customer.update": self._update_customer,
            "customer.list": self._list_customers,
            "customer.sync": self._sync_customers,
            "item.get": self._get_item,
            "item.list": self._list_items,
            "item.sync": self._sync_items,
            "invoice.get": self._get_invoice,
            "invoice.list": self._list_invoices,
            "invoice.open": self._open_invoices,
            "invoice.overdue": self._overdue_invoices,
            "invoice.sync": self._sync_invoices,
            "inventory.check": self._check_inventory,
            "inventory.checkMultiple": self._check_multiple_inventory,
            "inventory.byLocation": self._inventory_by_location,
            "search.execute": self._execute_search,
            "search.savedSearches": self._list_saved_searches,
        }

    def get_metadata(self) -> ConnectorMetadata:
        return CONNECTOR_METADATA

    def get_capabilities(self) -> list[dict]:
        return [
            {"code": code, "name": name, "description": description, "category": category}
            for code, (name, description, category) in CAPABILITIES.items()
        ]

    def get_credential_requirements(self) -> list[dict]:
        return CREDENTIAL_FIELDS

    def initialize(self, config: NetSuiteConnectionConfig, credentials: NetSuiteCredentials) -> None:
        if not credentials.realm:
            credentials = credentials.model_copy(update={"realm": config.account_id})

        valid, problems = self.auth.validate_credentials(credentials)
        if not valid:
            raise NetSuiteAuthError(f"Invalid credentials: {', '.join(problems)}", status_code=400)

        self.auth.set_credentials(credentials)
        self.rest_client.configure(config)
        self.config = config
        self.credentials = credentials
        logger.info(f"NetSuite connector initialized for account {config.account_id}")

    async def test_connection(self) -> ConnectionTestResult:
        if not self.auth.has_credentials():
            return ConnectionTestResult(
                success=False,
                message="NetSuite connector is not initialized",
                errors=["NetSuite connector is not initialized"],
            )
        try:
            result = await self.rest_client.test_connection()
        except Exception as e:
            structured = errors.parse_error(e)
            errors.log_error(structured, {"operation": "test_connection"})
            return ConnectionTestResult(
                success=False,
                message=errors.get_user_friendly_message(structured),
                errors=[structured.message, *structured.details],
            )

        if result["success"]:
            return ConnectionTestResult(
                success=True,
                message=result["message"],
                latency_ms=result["latency_ms"],
                capabilities=list(CAPABILITIES),
            )
        return ConnectionTestResult(
            success=False,
            message=result["message"],
            latency_ms=result["latency_ms"],
            errors=[result["message"]],
        )

    async def execute_capability(self, capability: str, payload: Optional[dict] = None) -> ConnectorResult:
        payload = payload or {}
        logger.debug(f"Executing NetSuite capability: {capability}")

        handler = self._handlers.get(capability)
        if handler is None:
            return ConnectorResult.failure(code="UNKNOWN_CAPABILITY", message=f"Unknown capability: {capability}")
        if not self.auth.has_credentials():
            return ConnectorResult.failure(code="NOT_INITIALIZED", message="NetSuite connector is not initialized")

        try:
            return await handler(payload)
        except Exception as e:
            structured = errors.parse_error(e)
            errors.log_error(structured, {"capability": capability})
            return ConnectorResult.failure(
                code=structured.code,
                message=structured.message,
                retryable=structured.retryable,
                details={
                    "category": structured.category.value,
                    "details": structured.details,
                    "suggested_action": structured.suggested_action,
                },
            )

    def destroy(self) -> None:
        logger.debug("Destroying NetSuite connector")
        self.auth.set_credentials(None)
        self.config = None
        self.credentials = None

    # ═════════════════════════════════════════════════════════
    # SALES ORDERS
    # ═════════════════════════════════════════════════════════

    async def _create_sales_order(self, payload: dict) -> ConnectorResult:
        created = await self.sales_orders.create(NetSuiteSalesOrderInput(**payload))
        order = await self.sales_orders.get_by_id(str(created["id"])) if created.get("id") else created
        return ConnectorResult(success=True, data=mapper.sales_order_to_canonical(order))

    async def _get_sales_order(self, payload: dict) -> ConnectorResult:
        order = await self.sales_orders.get_by_id(payload["id"])
        return ConnectorResult(success=True, data=mapper.sales_order_to_canonical(order))

    async def _get_sales_order_status(self, payload: dict) -> ConnectorResult:
        return ConnectorResult(success=True, data=await self.sales_orders.get_status(payload["id"]))

    async def _list_sales_orders(self, payload: dict) -> ConnectorResult:
        response = await self.sales_orders.list(**(payload.get("filters") or {}), pagination=_pagination(payload))
        return _list(response, mapper.sales_order_to_canonical)

    async def _update_sales_order(self, payload: dict) -> ConnectorResult:
        await self.sales_orders.update(payload["id"], NetSuiteSalesOrderUpdate(**(payload.get("data") or {})))
        order = await self.sales_orders.get_by_id(payload["id"])
        return ConnectorResult(success=True, data=mapper.sales_order_to_canonical(order))

    async def _close_sales_order(self, payload: dict) -> ConnectorResult:
        await self.sales_orders.close(payload["id"])
        return ConnectorResult(success=True, data=await self.sales_orders.get_status(payload["id"]))

    # ═════════════════════════════════════════════════════════
    # CUSTOMERS
    # ═════════════════════════════════════════════════════════

    async def _create_customer(self, payload: dict) -> ConnectorResult:
        created = await self.customers.create(NetSuiteCustomerInput(**payload))
        customer = await self.customers.get_by_id(str(created["id"])) if created.get("id") else created
        return ConnectorResult(success=True, data=mapper.customer_to_canonical(customer))

    async def _get_customer(self, payload: dict) -> ConnectorResult:
        customer = await self.customers.get_by_id(payload["id"])
        return ConnectorResult(success=True, data=mapper.customer_to_canonical(customer))

    async def _update_customer(self, payload: dict) -> ConnectorResult:
        await self.customers.update(payload["id"], NetSuiteCustomerInput(**(payload.get("data") or {})))
        customer = await self.customers.get_by_id(payload["id"])
        return ConnectorResult(success=True, data=mapper.customer_to_canonical(customer))

    async def _list_customers(self, payload: dict) -> ConnectorResult:
        response = await self.customers.list(**(payload.get("filters") or {}), pagination=_pagination(payload))
        return _list(response, mapper.customer_to_canonical)

    async def _sync_customers(self, payload: dict) -> ConnectorResult:
        response = await self.customers.get_modified_since(payload["since_date"], _pagination(payload))
        return _list(response, mapper.customer_to_canonical)

    # ═════════════════════════════════════════════════════════
    # ITEMS
    # ═════════════════════════════════════════════════════════

    async def _get_item(self, payload: dict) -> ConnectorResult:
        item = await self.items.get_by_id(payload["id"], payload.get("item_type"))
        return ConnectorResult(success=True, data=mapper.item_to_canonical(item))

    async def _list_items(self, payload: dict) -> ConnectorResult:
        response = await self.items.list(**(payload.get("filters") or {}), pagination=_pagination(payload))
        return _list(response, mapper.item_to_canonical)

    async def _sync_items(self, payload: dict) -> ConnectorResult:
        response = await self.items.get_modified_since(payload["since_date"], _pagination(payload))
        return _list(response, mapper.item_to_canonical)

    # ═════════════════════════════════════════════════════════
    # INVOICES
    # ═════════════════════════════════════════════════════════

    async def _get_invoice(self, payload: dict) -> ConnectorResult:
        invoice = await self.invoices.get_by_id(payload["id"])
        return ConnectorResult(success=True, data=mapper.invoice_to_canonical(invoice))

    async def _list_invoices(self, payload: dict) -> ConnectorResult:
        response = await self.invoices.list(**(payload.get("filters") or {}), pagination=_pagination(payload))
        return _list(response, mapper.invoice_to_canonical)

    async def _open_invoices(self, payload: dict) -> ConnectorResult:
        response = await self.invoices.get_open_invoices(payload.get("customer_id"), _pagination(payload))
        return _list(response, mapper.invoice_to_canonical)

    async def _overdue_invoices(self, payload: dict) -> ConnectorResult:
        response = await self.invoices.get_overdue_invoices(payload.get("customer_id"), _pagination(payload))
        return _list(response, mapper.invoice_to_canonical)

    async def _sync_invoices(self, payload: dict) -> ConnectorResult:
        response = await self.invoices.get_modified_since(payload["since_date"], _pagination(payload))
        return _list(response, mapper.invoice_to_canonical)

    # ═════════════════════════════════════════════════════════
    # INVENTORY
    # ═════════════════════════════════════════════════════════

    async def _check_inventory(self, payload: dict) -> ConnectorResult:
        status = await self.inventory.check_availability(NetSuiteInventoryCheckRequest(**payload))
        return ConnectorResult(success=True, data=mapper.inventory_to_canonical(status))

    async def _check_multiple_inventory(self, payload: dict) -> ConnectorResult:
        statuses = await self.inventory.check_multiple_availability(payload["item_ids"], payload.get("location_id"))
        items = [
            {"item_id": item_id, **mapper.inventory_to_canonical(status).model_dump()}
            for item_id, status in statuses.items()
        ]
        return ConnectorResult(success=True, data={"items": items})

    async def _inventory_by_location(self, payload: dict) -> ConnectorResult:
        item_id = payload["item_id"]
        locations = await self.inventory.get_inventory_by_location(item_id)
        return ConnectorResult(
            success=True,
            data={"item_id": item_id, "locations": [mapper.inventory_to_canonical(s) for s in locations]},
        )

    # ═════════════════════════════════════════════════════════
    # SEARCH
    # ═════════════════════════════════════════════════════════

    async def _execute_search(self, payload: dict) -> ConnectorResult:
        result = await self.searches.search(NetSuiteSearchParams(**payload))
        return ConnectorResult(success=True, data=result)

    async def _list_saved_searches(self, payload: dict) -> ConnectorResult:
        response = await self.searches.list_saved_searches(payload.get("record_type"), _pagination(payload))
        return _list(response, _identity)


# Singleton instance
netsuite_connector = NetSuiteConnector()
