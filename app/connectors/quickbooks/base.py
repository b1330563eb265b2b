"""
B2B-INTEGRATIONS — QuickBooks Online: shared entity service plumbing
Payload helpers and the unwrap/query pattern every entity service follows.
"""

import logging
from typing import Any, Optional, Union

from app.connectors.quickbooks.errors import create_error_result
from app.connectors.quickbooks.rest_client import QuickBooksRestClient, quickbooks_rest_client
from app.schemas.connectors import (
    ConnectorResult,
    QueryOptions,
    QuickBooksAddressInput,
    QuickBooksConnectionConfig,
    QuickBooksCredentials,
    QuickBooksLineInput,
)

logger = logging.getLogger(__name__)

API_PATHS = {
    "customer":      "/v3/company/{realmId}/customer",
    "item":          "/v3/company/{realmId}/item",
    "invoice":       "/v3/company/{realmId}/invoice",
    "sales_receipt": "/v3/company/{realmId}/salesreceipt",
    "payment":       "/v3/company/{realmId}/payment",
    "company_info":  "/v3/company/{realmId}/companyinfo/{realmId}",
}


def escape_query(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'").replace('"', '\\"')


def ref(value: str) -> dict:
    return {"value": value}


def build_address(address: Union[QuickBooksAddressInput, dict, None]) -> Optional[dict]:
    if not address:
        return None
    if isinstance(address, dict):
        address = QuickBooksAddressInput(**address)
    payload = {
        "Line1": address.line1,
        "Line2": address.line2,
        "Line3": address.line3,
        "City": address.city,
        "CountrySubDivisionCode": address.state,
        "PostalCode": address.postal_code,
        "Country": address.country,
    }
    return {k: v for k, v in payload.items() if v is not None}


class QuickBooksEntityService:
    """
    Base for customer/item/invoice/payment/sales receipt services.

    Subclasses set `entity` (the QBO wrapper key, e.g. "Invoice") and
    `path_key` (into API_PATHS).
    """

    entity = ""
    path_key = ""

    def __init__(self, rest_client: Optional[QuickBooksRestClient] = None):
        self.rest_client = rest_client or quickbooks_rest_client

    @property
    def path(self) -> str:
        return API_PATHS[self.path_key]

    def _unwrap(self, result: ConnectorResult) -> ConnectorResult:
        """{"Customer": {...}} → {...}"""
        if not result.success:
            return result
        data = (result.data or {}).get(self.entity)
        return ConnectorResult(success=True, data=data, metadata=result.metadata)

    def _entities(self, result: ConnectorResult) -> list[dict]:
        return ((result.data or {}).get("QueryResponse") or {}).get(self.entity) or []

    def _error(self, error: Exception, operation: str) -> ConnectorResult:
        return create_error_result(error, operation, 0)

    # ═════════════════════════════════════════════════════════
    # SHARED OPERATIONS
    # ═════════════════════════════════════════════════════════

    async def _create(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        payload: dict,
        operation: str,
    ) -> ConnectorResult:
        try:
            result = await self.rest_client.post(config, credentials, self.path, payload)
            return self._unwrap(result)
        except Exception as e:
            return self._error(e, operation)

    async def _get(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        entity_id: str,
        operation: str,
    ) -> ConnectorResult:
        logger.debug(f"Getting {self.entity}: {entity_id}")
        try:
            result = await self.rest_client.get(config, credentials, f"{self.path}/{entity_id}")
            return self._unwrap(result)
        except Exception as e:
            return self._error(e, operation)

    async def _operation(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        entity_id: str,
        sync_token: str,
        operation: str,
    ) -> ConnectorResult:
        """void: POST {Id, SyncToken} with ?operation=void."""
        try:
            result = await self.rest_client.post(
                config, credentials, self.path,
                {"Id": entity_id, "SyncToken": sync_token},
                params={"operation": operation},
            )
            return self._unwrap(result)
        except Exception as e:
            return self._error(e, f"{operation}-{self.path_key}")

    async def _delete(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        entity_id: str,
        sync_token: str,
    ) -> ConnectorResult:
        try:
            result = await self.rest_client.delete(
                config, credentials, self.path, {"Id": entity_id, "SyncToken": sync_token},
            )
            return self._unwrap(result)
        except Exception as e:
            return self._error(e, f"delete-{self.path_key}")

    async def _send(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        entity_id: str,
        email: Optional[str],
    ) -> ConnectorResult:
        try:
            result = await self.rest_client.send(config, credentials, f"{self.path}/{entity_id}", email)
            return self._unwrap(result)
        except Exception as e:
            return self._error(e, f"send-{self.path_key}")

    async def _query(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        conditions: list[str],
        options: Optional[QueryOptions],
        operation: str,
    ) -> ConnectorResult:
        """Raw query result, QueryResponse untouched, paging metadata attached."""
        query = f"SELECT * FROM {self.entity}"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        try:
            return await self.rest_client.query(config, credentials, query, options)
        except Exception as e:
            return self._error(e, operation)

    async def _query_list(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        conditions: list[str],
        options: Optional[QueryOptions],
        operation: str,
    ) -> ConnectorResult:
        """Like _query() but data is the entity list."""
        result = await self._query(config, credentials, conditions, options, operation)
        if not result.success:
            return result
        return ConnectorResult(success=True, data=self._entities(result), metadata=result.metadata)

    async def _query_first(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        conditions: list[str],
        operation: str,
    ) -> ConnectorResult:
        result = await self._query_list(config, credentials, conditions, QueryOptions(max_results=1), operation)
        if not result.success:
            return result
        first: Any = result.data[0] if result.data else None
        return ConnectorResult(success=True, data=first, metadata=result.metadata)


def build_lines(lines: list) -> list:
    """Sales lines for invoices and sales receipts, numbered from 1."""
    built = []
    for index, line in enumerate(lines):
        if isinstance(line, dict):
            line = QuickBooksLineInput(**line)
        if line.amount is not None:
            amount = line.amount
        elif line.quantity and line.unit_price:
            amount = line.quantity * line.unit_price
        else:
            amount = 0

        detail = {}
        if line.item_id:
            detail["ItemRef"] = ref(line.item_id)
        if line.quantity is not None:
            detail["Qty"] = line.quantity
        if line.unit_price is not None:
            detail["UnitPrice"] = line.unit_price
        if line.service_date:
            detail["ServiceDate"] = line.service_date
        if line.tax_code_id:
            detail["TaxCodeRef"] = ref(line.tax_code_id)

        qb_line = {
            "LineNum": index + 1,
            "DetailType": "SalesItemLineDetail",
            "Amount": amount,
            "SalesItemLineDetail": detail,
        }
        if line.description:
            qb_line["Description"] = line.description
        built.append(qb_line)
    return built
