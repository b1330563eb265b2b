"""
B2B-INTEGRATIONS — NetSuite: Sales order service
"""

import logging
from enum import Enum
from typing import Optional

from app.connectors.netsuite.base import (
    MODIFIED_SINCE_FORMAT,
    NetSuiteRecordService,
    build_address,
    escape_sql,
    sql_literal,
)
from app.schemas.connectors import NetSuitePagination, NetSuiteSalesOrderInput, NetSuiteSalesOrderUpdate

logger = logging.getLogger(__name__)


class NetSuiteSalesOrderStatusId(str, Enum):
    PENDING_APPROVAL = "pendingApproval"
    PENDING_FULFILLMENT = "pendingFulfillment"
    PARTIALLY_FULFILLED = "partiallyFulfilled"
    PENDING_BILLING = "pendingBilling"
    PENDING_BILLING_PARTIALLY_FULFILLED = "pendingBillingPartFulfilled"
    BILLED = "billed"
    CLOSED = "closed"
    CANCELLED = "cancelled"


def build_sales_order_payload(data: NetSuiteSalesOrderInput) -> dict:
    order = {"entity": {"id": data.customer_id}}
    if data.order_date:
        order["tranDate"] = data.order_date
    if data.external_id:
        order["custbody_external_id"] = data.external_id
        order["custbody_b2b_order_id"] = data.external_id
    if data.memo:
        order["memo"] = data.memo
    if data.terms:
        order["terms"] = {"id": data.terms}
    if data.ship_method:
        order["shipMethod"] = {"id": data.ship_method}
    if data.billing_address:
        order["billingAddress"] = build_address(data.billing_address)
    if data.shipping_address:
        order["shippingAddress"] = build_address(data.shipping_address)

    lines = []
    for index, item in enumerate(data.items):
        line = {"lineNumber": index + 1, "item": {"id": item.item_id}, "quantity": item.quantity}
        if item.rate is not None:
            line["rate"] = item.rate
        if item.description:
            line["description"] = item.description
        if item.location:
            line["location"] = {"id": item.location}
        lines.append(line)
    order["item"] = {"items": lines}

    order.update(data.custom_fields)
    return order


def build_sales_order_update(data: NetSuiteSalesOrderUpdate) -> dict:
    update = {}
    if "memo" in data.model_fields_set:
        update["memo"] = data.memo
    if data.ship_method:
        update["shipMethod"] = {"id": data.ship_method}
    if data.billing_address:
        update["billingAddress"] = build_address(data.billing_address)
    if data.shipping_address:
        update["shippingAddress"] = build_address(data.shipping_address)
    update.update(data.custom_fields)
    return update


class NetSuiteSalesOrderService(NetSuiteRecordService):
    record_type = "salesOrder"

    async def create(self, data: NetSuiteSalesOrderInput) -> dict:
        logger.debug(f"Creating NetSuite sales order for customer {data.customer_id} ({len(data.items)} lines)")
        created = await self.rest_client.post(self.record_type, build_sales_order_payload(data))
        logger.info(f"NetSuite sales order created: {created.get('id')}")
        return created

    async def get_by_external_id(self, external_id: str) -> Optional[dict]:
        query = (
            "SELECT id, tranid, status, entity, total FROM transaction "
            f"WHERE type = 'SalesOrd' AND custbody_external_id = {sql_literal(external_id)}"
        )
        return await self._find_one(query, "external id")

    async def update(self, order_id: str, data: NetSuiteSalesOrderUpdate) -> dict:
        logger.debug(f"Updating NetSuite sales order: {order_id}")
        return await self.rest_client.patch(f"{self.record_type}/{order_id}", build_sales_order_update(data))

    async def get_status(self, order_id: str) -> dict:
        order = await self.rest_client.get(f"{self.record_type}/{order_id}", {"fields": "id,tranId,status"})
        status = order.get("status") or {}
        return {
            "id": order.get("id") or order_id,
            "status": status.get("refName") or "Unknown",
            "status_id": status.get("id") or "",
            "tran_id": order.get("tranId") or "",
        }

    async def list(
        self,
        status: Optional[NetSuiteSalesOrderStatusId] = None,
        customer_id: Optional[str] = None,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
        external_id_prefix: Optional[str] = None,
        pagination: Optional[NetSuitePagination] = None,
    ) -> dict:
        conditions = ["type = 'SalesOrd'"]
        if status:
            conditions.append(f"status = {sql_literal(NetSuiteSalesOrderStatusId(status).value)}")
        if customer_id:
            conditions.append(f"entity = {sql_literal(customer_id)}")
        if from_date:
            conditions.append(f"trandate >= TO_DATE({sql_literal(from_date)}, 'YYYY-MM-DD')")
        if to_date:
            conditions.append(f"trandate <= TO_DATE({sql_literal(to_date)}, 'YYYY-MM-DD')")
        if external_id_prefix:
            conditions.append(f"custbody_external_id LIKE '{escape_sql(external_id_prefix)}%'")

        query = (
            "SELECT id, tranid, trandate, status, entity, total, custbody_external_id, memo "
            f"FROM transaction WHERE {' AND '.join(conditions)} ORDER BY trandate DESC, id DESC"
        )
        return await self._suiteql(query, pagination)

    async def close(self, order_id: str) -> dict:
        """No close endpoint in the record API; flag it through the isclosed field."""
        logger.info(f"Closing NetSuite sales order: {order_id}")
        return await self.update(order_id, NetSuiteSalesOrderUpdate(custom_fields={"isclosed": True}))

    async def get_modified_since(self, since: str, pagination: Optional[NetSuitePagination] = None) -> dict:
        query = (
            "SELECT id, tranid, trandate, status, entity, total, custbody_external_id, lastmodifieddate "
            "FROM transaction WHERE type = 'SalesOrd' "
            f"AND lastmodifieddate >= TO_DATE({sql_literal(since)}, '{MODIFIED_SINCE_FORMAT}') "
            "ORDER BY lastmodifieddate DESC"
        )
        return await self._suiteql(query, pagination)
