"""
B2B-INTEGRATIONS — NetSuite: Invoice service
Read side only; invoices are created in NetSuite by billing sales orders.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional

from app.connectors.netsuite.base import (
    MODIFIED_SINCE_FORMAT,
    NetSuiteRecordService,
    escape_sql,
    sql_literal,
)
from app.schemas.connectors import NetSuitePagination

logger = logging.getLogger(__name__)


class NetSuiteInvoiceStatusId(str, Enum):
    OPEN = "open"
    PAID_IN_FULL = "paidInFull"
    CANCELLED = "cancelled"


BALANCE_COLUMNS = (
    "id, tranid, trandate, duedate, status, entity, total, amountpaid, amountremaining, custbody_external_id"
)

AGING_QUERY = (
    "SELECT "
    "SUM(CASE WHEN SYSDATE - duedate <= 0 THEN amountremaining ELSE 0 END) AS current, "
    "SUM(CASE WHEN SYSDATE - duedate > 0 AND SYSDATE - duedate <= 30 THEN amountremaining ELSE 0 END) AS days1to30, "
    "SUM(CASE WHEN SYSDATE - duedate > 30 AND SYSDATE - duedate <= 60 THEN amountremaining ELSE 0 END) AS days31to60, "
    "SUM(CASE WHEN SYSDATE - duedate > 60 AND SYSDATE - duedate <= 90 THEN amountremaining ELSE 0 END) AS days61to90, "
    "SUM(CASE WHEN SYSDATE - duedate > 90 THEN amountremaining ELSE 0 END) AS over90, "
    "SUM(amountremaining) AS total "
    "FROM transaction WHERE type = 'CustInvc' AND entity = {customer} AND amountremaining > 0"
)

AGING_BUCKETS = (
    ("current", "current"),
    ("days1to30", "days_1_to_30"),
    ("days31to60", "days_31_to_60"),
    ("days61to90", "days_61_to_90"),
    ("over90", "over_90"),
    ("total", "total"),
)


class NetSuiteInvoiceService(NetSuiteRecordService):
    record_type = "invoice"

    async def get_by_external_id(self, external_id: str) -> Optional[dict]:
        query = (
            "SELECT id, tranid, trandate, status, entity, total, amountpaid, amountremaining "
            f"FROM transaction WHERE type = 'CustInvc' AND custbody_external_id = {sql_literal(external_id)}"
        )
        return await self._find_one(query, "external id")

    async def get_by_tran_id(self, tran_id: str) -> Optional[dict]:
        query = (
            "SELECT id, tranid, trandate, status, entity, total "
            f"FROM transaction WHERE type = 'CustInvc' AND tranid = {sql_literal(tran_id)}"
        )
        return await self._find_one(query, "transaction id")

    async def get_by_sales_order(self, sales_order_id: str) -> list:
        query = (
            "SELECT id, tranid, trandate, status, entity, total, amountpaid, amountremaining "
            f"FROM transaction WHERE type = 'CustInvc' AND createdfrom = {sql_literal(sales_order_id)} "
            "ORDER BY trandate DESC"
        )
        response = await self._suiteql(query)
        rows = response.get("items") or []
        if not rows:
            return []
        return list(await asyncio.gather(*(self.get_by_id(str(row["id"])) for row in rows)))

    async def list(
        self,
        status: Optional[NetSuiteInvoiceStatusId] = None,
        customer_id: Optional[str] = None,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
        min_amount: Optional[float] = None,
        max_amount: Optional[float] = None,
        has_balance: Optional[bool] = None,
        external_id_prefix: Optional[str] = None,
        pagination: Optional[NetSuitePagination] = None,
    ) -> dict:
        conditions = ["type = 'CustInvc'"]
        if status:
            conditions.append(f"status = {sql_literal(NetSuiteInvoiceStatusId(status).value)}")
        if customer_id:
            conditions.append(f"entity = {sql_literal(customer_id)}")
        if from_date:
            conditions.append(f"trandate >= TO_DATE({sql_literal(from_date)}, 'YYYY-MM-DD')")
        if to_date:
            conditions.append(f"trandate <= TO_DATE({sql_literal(to_date)}, 'YYYY-MM-DD')")
        if min_amount is not None:
            conditions.append(f"total >= {float(min_amount)}")
        if max_amount is not None:
            conditions.append(f"total <= {float(max_amount)}")
        if has_balance is True:
            conditions.append("amountremaining > 0")
        elif has_balance is False:
            conditions.append("amountremaining = 0")
        if external_id_prefix:
            conditions.append(f"custbody_external_id LIKE '{escape_sql(external_id_prefix)}%'")

        query = (
            "SELECT id, tranid, trandate, duedate, status, entity, total, amountpaid, amountremaining, "
            f"custbody_external_id, memo FROM transaction WHERE {' AND '.join(conditions)} "
            "ORDER BY trandate DESC, id DESC"
        )
        return await self._suiteql(query, pagination)

    async def get_modified_since(self, since: str, pagination: Optional[NetSuitePagination] = None) -> dict:
        query = (
            f"SELECT {BALANCE_COLUMNS}, lastmodifieddate FROM transaction WHERE type = 'CustInvc' "
            f"AND lastmodifieddate >= TO_DATE({sql_literal(since)}, '{MODIFIED_SINCE_FORMAT}') "
            "ORDER BY lastmodifieddate DESC"
        )
        return await self._suiteql(query, pagination)

    async def get_open_invoices(
        self,
        customer_id: Optional[str] = None,
        pagination: Optional[NetSuitePagination] = None,
    ) -> dict:
        return await self._balance_query(["amountremaining > 0"], customer_id, pagination)

    async def get_overdue_invoices(
        self,
        customer_id: Optional[str] = None,
        pagination: Optional[NetSuitePagination] = None,
    ) -> dict:
        return await self._balance_query(["amountremaining > 0", "duedate < SYSDATE"], customer_id, pagination)

    async def get_payment_history(self, invoice_id: str) -> list:
        query = (
            "SELECT payment.id AS paymentid, payment.trandate AS paymentdate, "
            "appliedTo.amount AS amount, payment.paymentmethod AS paymentmethod "
            "FROM transaction AS payment "
            "INNER JOIN transactionLine AS appliedTo ON appliedTo.transaction = payment.id "
            f"WHERE payment.type = 'CustPymt' AND appliedTo.appliedtotransaction = {sql_literal(invoice_id)} "
            "ORDER BY payment.trandate DESC"
        )
        response = await self._suiteql(query)
        return [
            {
                "payment_id": row.get("paymentid"),
                "payment_date": row.get("paymentdate"),
                "amount": row.get("amount"),
                "payment_method": row.get("paymentmethod") or "Unknown",
            }
            for row in response.get("items") or []
        ]

    async def get_aging_summary(self, customer_id: str) -> dict:
        query = AGING_QUERY.format(customer=sql_literal(customer_id))
        response = await self._suiteql(query, NetSuitePagination(limit=1))
        rows = response.get("items") or []
        row = rows[0] if rows else {}
        return {key: row.get(column) or 0 for column, key in AGING_BUCKETS}

    async def _balance_query(
        self,
        conditions: list,
        customer_id: Optional[str],
        pagination: Optional[NetSuitePagination],
    ) -> dict:
        where = ["type = 'CustInvc'", *conditions]
        if customer_id:
            where.append(f"entity = {sql_literal(customer_id)}")
        query = f"SELECT {BALANCE_COLUMNS} FROM transaction WHERE {' AND '.join(where)} ORDER BY duedate ASC, id ASC"
        return await self._suiteql(query, pagination)
