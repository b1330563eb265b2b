"""
B2B-INTEGRATIONS — NetSuite: Customer service
Record API for writes, SuiteQL for lookups and lists.
"""

import logging
from typing import Optional

from app.connectors.netsuite.base import (
    MODIFIED_SINCE_FORMAT,
    NetSuiteRecordService,
    build_address,
    escape_sql,
    sql_literal,
)
from app.schemas.connectors import NetSuiteCustomerInput, NetSuitePagination

logger = logging.getLogger(__name__)

LIST_COLUMNS = (
    "id, entityid, companyname, firstname, lastname, email, phone, "
    "subsidiary, balance, creditlimit, isinactive, custentity_external_id"
)


def build_customer_payload(data: NetSuiteCustomerInput) -> dict:
    customer = {}
    if data.is_person is not None:
        customer["isPerson"] = data.is_person
    if data.company_name:
        customer["companyName"] = data.company_name
    if data.first_name:
        customer["firstName"] = data.first_name
    if data.last_name:
        customer["lastName"] = data.last_name
    if data.email:
        customer["email"] = data.email
    if data.phone:
        customer["phone"] = data.phone
    if data.external_id:
        customer["custentity_external_id"] = data.external_id
        customer["custentity_b2b_org_id"] = data.external_id
    if data.subsidiary:
        customer["subsidiary"] = {"id": data.subsidiary}
    if data.currency:
        customer["currency"] = {"id": data.currency}
    if data.terms:
        customer["terms"] = {"id": data.terms}
    if data.price_level:
        customer["priceLevel"] = {"id": data.price_level}
    if data.credit_limit is not None:
        customer["creditLimit"] = data.credit_limit
    if data.addresses:
        customer["addressbook"] = {
            "items": [
                {
                    "label": address.label,
                    "defaultShipping": address.default_shipping,
                    "defaultBilling": address.default_billing,
                    "addressBookAddress": build_address(address),
                }
                for address in data.addresses
            ]
        }
    customer.update(data.custom_fields)
    return customer


def build_customer_update(data: NetSuiteCustomerInput) -> dict:
    """PATCH body; only fields that were explicitly set are sent."""
    update = {}
    provided = data.model_fields_set
    for field, key in (
        ("company_name", "companyName"),
        ("first_name", "firstName"),
        ("last_name", "lastName"),
        ("email", "email"),
        ("phone", "phone"),
        ("credit_limit", "creditLimit"),
    ):
        if field in provided:
            update[key] = getattr(data, field)
    if data.terms:
        update["terms"] = {"id": data.terms}
    if data.price_level:
        update["priceLevel"] = {"id": data.price_level}
    update.update(data.custom_fields)
    return update


class NetSuiteCustomerService(NetSuiteRecordService):
    record_type = "customer"

    async def create(self, data: NetSuiteCustomerInput) -> dict:
        logger.debug(f"Creating NetSuite customer: {data.company_name or data.email}")
        created = await self.rest_client.post(self.record_type, build_customer_payload(data))
        logger.info(f"NetSuite customer created: {created.get('id')}")
        return created

    async def get_by_external_id(self, external_id: str) -> Optional[dict]:
        query = (
            "SELECT id, entityid, companyname, email, phone, isinactive FROM customer "
            f"WHERE custentity_external_id = {sql_literal(external_id)}"
        )
        return await self._find_one(query, "external id")

    async def get_by_email(self, email: str) -> Optional[dict]:
        query = (
            "SELECT id, entityid, companyname, email, phone, isinactive FROM customer "
            f"WHERE LOWER(email) = LOWER({sql_literal(email)})"
        )
        return await self._find_one(query, "email")

    async def update(self, customer_id: str, data: NetSuiteCustomerInput) -> dict:
        logger.debug(f"Updating NetSuite customer: {customer_id}")
        return await self.rest_client.patch(f"{self.record_type}/{customer_id}", build_customer_update(data))

    async def list(
        self,
        subsidiary: Optional[str] = None,
        category: Optional[str] = None,
        include_inactive: bool = False,
        search_term: Optional[str] = None,
        external_id_prefix: Optional[str] = None,
        pagination: Optional[NetSuitePagination] = None,
    ) -> dict:
        conditions = ["1=1"]
        if not include_inactive:
            conditions.append("isinactive = 'F'")
        if subsidiary:
            conditions.append(f"subsidiary = {sql_literal(subsidiary)}")
        if category:
            conditions.append(f"category = {sql_literal(category)}")
        if search_term:
            term = escape_sql(search_term)
            conditions.append(
                f"(LOWER(companyname) LIKE LOWER('%{term}%') "
                f"OR LOWER(email) LIKE LOWER('%{term}%') "
                f"OR LOWER(entityid) LIKE LOWER('%{term}%'))"
            )
        if external_id_prefix:
            conditions.append(f"custentity_external_id LIKE '{escape_sql(external_id_prefix)}%'")

        query = f"SELECT {LIST_COLUMNS} FROM customer WHERE {' AND '.join(conditions)} ORDER BY companyname, entityid"
        return await self._suiteql(query, pagination)

    async def search(self, term: str, pagination: Optional[NetSuitePagination] = None) -> dict:
        return await self.list(search_term=term, include_inactive=False, pagination=pagination)

    async def get_modified_since(self, since: str, pagination: Optional[NetSuitePagination] = None) -> dict:
        query = (
            f"SELECT {LIST_COLUMNS}, lastmodifieddate FROM customer "
            f"WHERE lastmodifieddate >= TO_DATE({sql_literal(since)}, '{MODIFIED_SINCE_FORMAT}') "
            "ORDER BY lastmodifieddate DESC"
        )
        return await self._suiteql(query, pagination)

    async def get_balance_info(self, customer_id: str) -> dict:
        customer = await self.rest_client.get(
            f"{self.record_type}/{customer_id}",
            {"fields": "id,balance,overdueBalance,creditLimit,unbilledOrders"},
        )
        balance = customer.get("balance") or 0
        credit_limit = customer.get("creditLimit") or 0
        return {
            "id": customer.get("id") or customer_id,
            "balance": balance,
            "overdue_balance": customer.get("overdueBalance") or 0,
            "credit_limit": credit_limit,
            "unbilled_orders": customer.get("unbilledOrders") or 0,
            "available_credit": max(0, credit_limit - balance),
        }
