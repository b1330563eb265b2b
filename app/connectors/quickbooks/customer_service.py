"""
B2B-INTEGRATIONS — QuickBooks Online: Customer service
create / get / list / sparse update / search / deactivate.
"""

import logging
from typing import Optional

from app.connectors.quickbooks.base import QuickBooksEntityService, build_address, escape_query, ref
from app.schemas.connectors import (
    ConnectorResult,
    QueryOptions,
    QuickBooksConnectionConfig,
    QuickBooksCredentials,
    QuickBooksCustomerInput,
)

logger = logging.getLogger(__name__)


def build_customer_fields(values: dict) -> dict:
    """snake_case input values → QBO Customer fields. None values are skipped."""
    fields = {}
    if values.get("display_name"):
        fields["DisplayName"] = values["display_name"]
    if values.get("company_name"):
        fields["CompanyName"] = values["company_name"]
    if values.get("first_name"):
        fields["GivenName"] = values["first_name"]
    if values.get("last_name"):
        fields["FamilyName"] = values["last_name"]
    if values.get("title"):
        fields["Title"] = values["title"]
    if values.get("email"):
        fields["PrimaryEmailAddr"] = {"Address": values["email"]}
    if values.get("phone"):
        fields["PrimaryPhone"] = {"FreeFormNumber": values["phone"]}
    if values.get("mobile"):
        fields["Mobile"] = {"FreeFormNumber": values["mobile"]}
    if values.get("website"):
        fields["WebAddr"] = {"URI": values["website"]}
    if values.get("notes"):
        fields["Notes"] = values["notes"]
    if values.get("billing_address"):
        fields["BillAddr"] = build_address(values["billing_address"])
    if values.get("shipping_address"):
        fields["ShipAddr"] = build_address(values["shipping_address"])
    if values.get("taxable") is not None:
        fields["Taxable"] = values["taxable"]
    if values.get("payment_terms_id"):
        fields["SalesTermRef"] = ref(values["payment_terms_id"])
    if values.get("currency"):
        fields["CurrencyRef"] = ref(values["currency"])
    if values.get("active") is not None:
        fields["Active"] = values["active"]
    return fields


class QuickBooksCustomerService(QuickBooksEntityService):
    entity = "Customer"
    path_key = "customer"

    async def create(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        data: QuickBooksCustomerInput,
    ) -> ConnectorResult:
        logger.debug(f"Creating customer: {data.display_name}")
        return await self._create(config, credentials, build_customer_fields(dict(data)), "create-customer")

    async def get_by_id(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        customer_id: str,
    ) -> ConnectorResult:
        return await self._get(config, credentials, customer_id, "get-customer")

    async def list(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        active: Optional[bool] = None,
        search_name: Optional[str] = None,
        email: Optional[str] = None,
        options: Optional[QueryOptions] = None,
    ) -> ConnectorResult:
        conditions = []
        if active is not None:
            conditions.append(f"Active = {'true' if active else 'false'}")
        if search_name:
            conditions.append(f"DisplayName LIKE '%{escape_query(search_name)}%'")
        if email:
            conditions.append(f"PrimaryEmailAddr = '{escape_query(email)}'")
        return await self._query_list(config, credentials, conditions, options, "list-customers")

    async def update(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        customer_id: str,
        sync_token: str,
        changes: dict,
    ) -> ConnectorResult:
        """Sparse update: only the keys present in `changes` are sent."""
        logger.debug(f"Updating customer: {customer_id}")
        payload = {"Id": customer_id, "SyncToken": sync_token, "sparse": True}
        payload.update(build_customer_fields(changes))
        return await self._create(config, credentials, payload, "update-customer")

    async def search(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        term: str,
        limit: Optional[int] = None,
    ) -> ConnectorResult:
        conditions = [f"DisplayName LIKE '%{escape_query(term)}%'"]
        return await self._query_list(
            config, credentials, conditions, QueryOptions(max_results=limit or 25), "search-customers",
        )

    async def deactivate(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        customer_id: str,
        sync_token: str,
    ) -> ConnectorResult:
        logger.info(f"Deactivating customer: {customer_id}")
        return await self.update(config, credentials, customer_id, sync_token, {"active": False})


# Singleton instance
quickbooks_customer_service = QuickBooksCustomerService()
