"""
B2B-INTEGRATIONS — NetSuite: Saved search service
Saved searches and ad-hoc searches, both executed through SuiteQL.

Filter operators accepted by search():
    is / =, isnot / != / <>, anyof / in, noneof / notin,
    contains / like, startswith, endswith,
    greaterthan / >, lessthan / <, greaterthanorequalto / >=, lessthanorequalto / <=,
    isempty / isnull, isnotempty / isnotnull
Unknown operators fall back to equality.
"""

import logging
from typing import Any, Optional

from app.connectors.netsuite.base import escape_sql, sql_literal
from app.connectors.netsuite.rest_client import NetSuiteRestClient, netsuite_rest_client
from app.schemas.connectors import (
    NetSuitePagination,
    NetSuiteSearchFilter,
    NetSuiteSearchParams,
    NetSuiteSearchResult,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100

COMPARISONS = {
    "is": "=",
    "=": "=",
    "isnot": "!=",
    "!=": "!=",
    "<>": "!=",
    "greaterthan": ">",
    ">": ">",
    "lessthan": "<",
    "<": "<",
    "greaterthanorequalto": ">=",
    ">=": ">=",
    "lessthanorequalto": "<=",
    "<=": "<=",
}


def _value(value: Any) -> str:
    if isinstance(value, str):
        return sql_literal(value)
    return str(value)


def build_condition(search_filter: NetSuiteSearchFilter) -> str:
    field = search_filter.field
    operator = search_filter.operator.lower()
    value = search_filter.value

    if operator in COMPARISONS:
        return f"{field} {COMPARISONS[operator]} {_value(value)}"
    if operator in ("anyof", "in", "noneof", "notin"):
        values = value if isinstance(value, list) else [value]
        keyword = "IN" if operator in ("anyof", "in") else "NOT IN"
        return f"{field} {keyword} ({', '.join(sql_literal(v) for v in values)})"
    if operator in ("contains", "like"):
        return f"LOWER({field}) LIKE LOWER('%{escape_sql(value)}%')"
    if operator == "startswith":
        return f"LOWER({field}) LIKE LOWER('{escape_sql(value)}%')"
    if operator == "endswith":
        return f"LOWER({field}) LIKE LOWER('%{escape_sql(value)}')"
    if operator in ("isempty", "isnull"):
        return f"{field} IS NULL"
    if operator in ("isnotempty", "isnotnull"):
        return f"{field} IS NOT NULL"

    logger.warning(f"Unknown search operator: {search_filter.operator}")
    return f"{field} = {sql_literal(value)}"


def build_where_clause(filters: list) -> str:
    return " AND ".join(build_condition(f) for f in filters)


def _to_result(response: dict, page_index: int, page_size: int) -> NetSuiteSearchResult:
    rows = response.get("items") or []
    return NetSuiteSearchResult(
        total_results=response.get("totalResults") or len(rows),
        page_index=page_index,
        page_size=page_size,
        results=rows,
    )


def _page(pagination: Optional[NetSuitePagination]) -> tuple:
    """(offset, limit, page_index) with the default page size applied."""
    limit = (pagination.limit if pagination else None) or DEFAULT_PAGE_SIZE
    offset = pagination.offset if pagination else None
    return offset, limit, (offset // limit if offset else 0)


class NetSuiteSavedSearchService:
    def __init__(self, rest_client: Optional[NetSuiteRestClient] = None):
        self.rest_client = rest_client or netsuite_rest_client

    async def execute_saved_search(
        self,
        search_id: str,
        pagination: Optional[NetSuitePagination] = None,
    ) -> NetSuiteSearchResult:
        logger.debug(f"Executing NetSuite saved search: {search_id}")
        query = f"SELECT * FROM SAVEDSEARCH({sql_literal(search_id)})"
        return await self._run(query, pagination)

    async def execute_query(
        self,
        query: str,
        pagination: Optional[NetSuitePagination] = None,
    ) -> NetSuiteSearchResult:
        logger.debug(f"Executing NetSuite query ({len(query)} chars)")
        return await self._run(query, pagination)

    async def search(self, params: NetSuiteSearchParams) -> NetSuiteSearchResult:
        page_index = params.page_index or 0
        page_size = params.page_size or DEFAULT_PAGE_SIZE

        if params.search_id:
            return await self.execute_saved_search(
                params.search_id,
                NetSuitePagination(offset=page_index * page_size, limit=page_size),
            )

        if not params.record_type:
            raise ValueError("Either searchId or recordType must be provided")

        columns = ", ".join(params.columns) if params.columns else "*"
        query = f"SELECT {columns} FROM {params.record_type}"
        if params.filters:
            query += f" WHERE {build_where_clause(params.filters)}"

        response = await self.rest_client.execute_suiteql(
            query, NetSuitePagination(offset=page_index * page_size, limit=page_size)
        )
        return _to_result(response, page_index, page_size)

    async def list_saved_searches(
        self,
        record_type: Optional[str] = None,
        pagination: Optional[NetSuitePagination] = None,
    ) -> dict:
        query = "SELECT id, title, recordtype, description, ispublic FROM savedsearch WHERE 1=1"
        if record_type:
            query += f" AND recordtype = {sql_literal(record_type)}"
        query += " ORDER BY title"
        return await self.rest_client.execute_suiteql(query, pagination)

    async def get_saved_search(self, search_id: str) -> Optional[dict]:
        query = (
            "SELECT id, title, recordtype, description, ispublic, isdefault "
            f"FROM savedsearch WHERE id = {sql_literal(search_id)}"
        )
        response = await self.rest_client.execute_suiteql(query, NetSuitePagination(limit=1))
        rows = response.get("items") or []
        return rows[0] if rows else None

    async def search_records(
        self,
        record_type: str,
        filters: Optional[dict] = None,
        columns: Optional[list] = None,
        order_by: Optional[str] = None,
        order_direction: str = "ASC",
        pagination: Optional[NetSuitePagination] = None,
    ) -> NetSuiteSearchResult:
        query = f"SELECT {', '.join(columns) if columns else '*'} FROM {record_type}"
        if filters:
            conditions = []
            for key, value in filters.items():
                if isinstance(value, bool):
                    conditions.append(f"{key} = {sql_literal('T' if value else 'F')}")
                else:
                    conditions.append(f"{key} = {_value(value)}")
            query += f" WHERE {' AND '.join(conditions)}"
        if order_by:
            query += f" ORDER BY {order_by} {order_direction}"
        return await self._run(query, pagination)

    async def search_transactions(
        self,
        transaction_type: Optional[str] = None,
        status: Optional[str] = None,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
        customer_id: Optional[str] = None,
        min_amount: Optional[float] = None,
        max_amount: Optional[float] = None,
        pagination: Optional[NetSuitePagination] = None,
    ) -> NetSuiteSearchResult:
        conditions = ["1=1"]
        if transaction_type:
            conditions.append(f"type = {sql_literal(transaction_type)}")
        if status:
            conditions.append(f"status = {sql_literal(status)}")
        if from_date:
            conditions.append(f"trandate >= TO_DATE({sql_literal(from_date)}, 'YYYY-MM-DD')")
        if to_date:
            conditions.append(f"trandate <= TO_DATE({sql_literal(to_date)}, 'YYYY-MM-DD')")
        if customer_id:
            conditions.append(f"entity = {sql_literal(customer_id)}")
        if min_amount is not None:
            conditions.append(f"total >= {float(min_amount)}")
        if max_amount is not None:
            conditions.append(f"total <= {float(max_amount)}")
        query = (
            "SELECT id, tranid, trandate, type, status, entity, total, memo FROM transaction "
            f"WHERE {' AND '.join(conditions)} ORDER BY trandate DESC, id DESC"
        )
        return await self._run(query, pagination, default_limit=False)

    async def search_items(
        self,
        item_type: Optional[str] = None,
        search_term: Optional[str] = None,
        include_inactive: bool = False,
        has_inventory: Optional[bool] = None,
        pagination: Optional[NetSuitePagination] = None,
    ) -> NetSuiteSearchResult:
        conditions = ["1=1"]
        if not include_inactive:
            conditions.append("isinactive = 'F'")
        if item_type:
            conditions.append(f"itemtype = {sql_literal(item_type)}")
        if search_term:
            term = escape_sql(search_term)
            conditions.append(f"(LOWER(itemid) LIKE LOWER('%{term}%') OR LOWER(displayname) LIKE LOWER('%{term}%'))")
        if has_inventory is True:
            conditions.append("quantityavailable > 0")
        elif has_inventory is False:
            conditions.append("(quantityavailable IS NULL OR quantityavailable <= 0)")
        query = (
            "SELECT id, itemid, displayname, salesdescription, itemtype, baseprice, cost, "
            f"quantityonhand, quantityavailable, isinactive FROM item WHERE {' AND '.join(conditions)} "
            "ORDER BY displayname"
        )
        return await self._run(query, pagination, default_limit=False)

    async def search_customers(
        self,
        search_term: Optional[str] = None,
        subsidiary: Optional[str] = None,
        include_inactive: bool = False,
        has_balance: Optional[bool] = None,
        pagination: Optional[NetSuitePagination] = None,
    ) -> NetSuiteSearchResult:
        conditions = ["1=1"]
        if not include_inactive:
            conditions.append("isinactive = 'F'")
        if subsidiary:
            conditions.append(f"subsidiary = {sql_literal(subsidiary)}")
        if search_term:
            term = escape_sql(search_term)
            conditions.append(
                f"(LOWER(companyname) LIKE LOWER('%{term}%') "
                f"OR LOWER(email) LIKE LOWER('%{term}%') "
                f"OR LOWER(entityid) LIKE LOWER('%{term}%'))"
            )
        if has_balance is True:
            conditions.append("balance > 0")
        elif has_balance is False:
            conditions.append("(balance IS NULL OR balance <= 0)")
        query = (
            "SELECT id, entityid, companyname, firstname, lastname, email, phone, balance, creditlimit, "
            f"isinactive FROM customer WHERE {' AND '.join(conditions)} ORDER BY companyname, entityid"
        )
        return await self._run(query, pagination, default_limit=False)

    async def _run(
        self,
        query: str,
        pagination: Optional[NetSuitePagination],
        default_limit: bool = True,
    ) -> NetSuiteSearchResult:
        offset, limit, page_index = _page(pagination)
        if default_limit:
            request = NetSuitePagination(offset=offset, limit=limit)
        else:
            request = pagination
        response = await self.rest_client.execute_suiteql(query, request)
        return _to_result(response, page_index, limit)
