"""
B2B-INTEGRATIONS — NetSuite: Inventory service
Stock levels come from the inventoryBalance table via SuiteQL. Items with no
balance rows report zero across the board instead of failing.
"""

import logging
from typing import Optional

from app.connectors.netsuite.base import sql_literal
from app.connectors.netsuite.rest_client import NetSuiteRestClient, netsuite_rest_client
from app.schemas.connectors import NetSuiteInventoryCheckRequest, NetSuitePagination

logger = logging.getLogger(__name__)

QUANTITY_FIELDS = (
    ("quantityonhand", "quantity_on_hand"),
    ("quantityavailable", "quantity_available"),
    ("quantityonorder", "quantity_on_order"),
    ("quantitycommitted", "quantity_committed"),
    ("quantitybackordered", "quantity_back_ordered"),
)

INVENTORY_TRANSACTION_TYPES = ("ItemRcpt", "ItemShip", "InvtPart", "InvAdjst", "TrnfrOrd")


def _status(item_id: str, location_id: Optional[str], row: Optional[dict] = None) -> dict:
    row = row or {}
    status = {
        "item": {"id": item_id},
        "location": {"id": location_id} if location_id else None,
    }
    for column, key in QUANTITY_FIELDS:
        status[key] = row.get(column) or 0
    return status


class NetSuiteInventoryService:
    def __init__(self, rest_client: Optional[NetSuiteRestClient] = None):
        self.rest_client = rest_client or netsuite_rest_client

    async def check_availability(self, request: NetSuiteInventoryCheckRequest) -> dict:
        logger.debug(f"Checking NetSuite inventory for item {request.item_id} (location={request.location_id})")
        conditions = [f"item.id = {sql_literal(request.item_id)}"]
        if request.location_id:
            conditions.append(f"location.id = {sql_literal(request.location_id)}")
        if request.subsidiary_id:
            conditions.append(f"location.subsidiary = {sql_literal(request.subsidiary_id)}")

        query = (
            "SELECT item.id AS itemid, item.itemid AS sku, item.displayname AS displayname, "
            "location.id AS locationid, location.name AS locationname, "
            "SUM(balance.quantityonhand) AS quantityonhand, "
            "SUM(balance.quantityavailable) AS quantityavailable, "
            "SUM(balance.quantityonorder) AS quantityonorder, "
            "SUM(balance.quantitycommitted) AS quantitycommitted, "
            "SUM(balance.quantitybackordered) AS quantitybackordered, "
            "AVG(item.averagecost) AS averagecost "
            "FROM inventoryBalance AS balance "
            "INNER JOIN item ON item.id = balance.item "
            "INNER JOIN location ON location.id = balance.location "
            f"WHERE {' AND '.join(conditions)} "
            "GROUP BY item.id, item.itemid, item.displayname, location.id, location.name"
        )
        response = await self.rest_client.execute_suiteql(query, NetSuitePagination(limit=1))
        rows = response.get("items") or []
        if not rows:
            return _status(request.item_id, request.location_id)

        row = rows[0]
        location_id = row.get("locationid") if request.location_id else None
        status = _status(str(row.get("itemid") or request.item_id), location_id, row)
        status["average_cost"] = row.get("averagecost")
        return status

    async def check_multiple_availability(self, item_ids: list, location_id: Optional[str] = None) -> dict:
        """Map of item id → status. Every requested id is present, zeroed when NetSuite has no rows."""
        logger.debug(f"Checking NetSuite inventory for {len(item_ids)} items (location={location_id})")
        result = {item_id: _status(item_id, location_id) for item_id in item_ids}
        if not item_ids:
            return result

        conditions = [f"item.id IN ({', '.join(sql_literal(i) for i in item_ids)})"]
        if location_id:
            conditions.append(f"balance.location = {sql_literal(location_id)}")
        query = (
            "SELECT item.id AS itemid, item.itemid AS sku, "
            "SUM(balance.quantityonhand) AS quantityonhand, "
            "SUM(balance.quantityavailable) AS quantityavailable, "
            "SUM(balance.quantityonorder) AS quantityonorder, "
            "SUM(balance.quantitycommitted) AS quantitycommitted, "
            "SUM(balance.quantitybackordered) AS quantitybackordered "
            "FROM inventoryBalance AS balance "
            "INNER JOIN item ON item.id = balance.item "
            f"WHERE {' AND '.join(conditions)} "
            "GROUP BY item.id, item.itemid"
        )
        response = await self.rest_client.execute_suiteql(query)
        for row in response.get("items") or []:
            item_id = str(row.get("itemid"))
            result[item_id] = _status(item_id, location_id, row)
        return result

    async def get_inventory_by_location(self, item_id: str) -> list:
        query = (
            "SELECT item.id AS itemid, location.id AS locationid, location.name AS locationname, "
            "balance.quantityonhand, balance.quantityavailable, balance.quantityonorder, "
            "balance.quantitycommitted, balance.quantitybackordered "
            "FROM inventoryBalance AS balance "
            "INNER JOIN item ON item.id = balance.item "
            "INNER JOIN location ON location.id = balance.location "
            f"WHERE item.id = {sql_literal(item_id)} "
            "ORDER BY location.name"
        )
        response = await self.rest_client.execute_suiteql(query)
        statuses = []
        for row in response.get("items") or []:
            status = _status(str(row.get("itemid") or item_id), row.get("locationid"), row)
            status["location"] = {"id": row.get("locationid"), "ref_name": row.get("locationname")}
            status["location_name"] = row.get("locationname")
            statuses.append(status)
        return statuses

    async def get_low_stock_items(
        self,
        location_id: Optional[str] = None,
        pagination: Optional[NetSuitePagination] = None,
    ) -> dict:
        """Items whose available quantity has fallen to or below their reorder point."""
        location = f"AND location.id = {sql_literal(location_id)} " if location_id else ""
        query = (
            "SELECT item.id AS itemid, item.itemid AS sku, item.displayname, "
            "location.id AS locationid, location.name AS locationname, "
            "SUM(balance.quantityavailable) AS quantityavailable, "
            "item.reorderpoint, item.preferredstocklevel "
            "FROM inventoryBalance AS balance "
            "INNER JOIN item ON item.id = balance.item "
            "INNER JOIN location ON location.id = balance.location "
            "WHERE item.reorderpoint IS NOT NULL AND item.isinactive = 'F' "
            f"{location}"
            "GROUP BY item.id, item.itemid, item.displayname, location.id, location.name, "
            "item.reorderpoint, item.preferredstocklevel "
            "HAVING SUM(balance.quantityavailable) <= item.reorderpoint "
            "ORDER BY (item.reorderpoint - SUM(balance.quantityavailable)) DESC"
        )
        return await self.rest_client.execute_suiteql(query, pagination)

    async def get_out_of_stock_items(
        self,
        location_id: Optional[str] = None,
        pagination: Optional[NetSuitePagination] = None,
    ) -> dict:
        location = f"AND location.id = {sql_literal(location_id)} " if location_id else ""
        query = (
            "SELECT item.id AS itemid, item.itemid AS sku, item.displayname, "
            "location.id AS locationid, location.name AS locationname, "
            "SUM(balance.quantityavailable) AS quantityavailable, "
            "SUM(balance.quantityonorder) AS quantityonorder, "
            "SUM(balance.quantitybackordered) AS quantitybackordered "
            "FROM inventoryBalance AS balance "
            "INNER JOIN item ON item.id = balance.item "
            "INNER JOIN location ON location.id = balance.location "
            "WHERE item.isinactive = 'F' AND item.itemtype IN ('InvtPart', 'Assembly', 'Kit') "
            f"{location}"
            "GROUP BY item.id, item.itemid, item.displayname, location.id, location.name "
            "HAVING SUM(balance.quantityavailable) <= 0 "
            "ORDER BY item.displayname"
        )
        return await self.rest_client.execute_suiteql(query, pagination)

    async def get_inventory_valuation(
        self,
        location_id: Optional[str] = None,
        subsidiary_id: Optional[str] = None,
    ) -> dict:
        conditions = ["item.isinactive = 'F'"]
        if location_id:
            conditions.append(f"balance.location = {sql_literal(location_id)}")
        if subsidiary_id:
            conditions.append(f"balance.subsidiary = {sql_literal(subsidiary_id)}")
        query = (
            "SELECT COUNT(DISTINCT item.id) AS totalitems, "
            "SUM(balance.quantityonhand) AS totalquantity, "
            "SUM(balance.quantityonhand * COALESCE(item.averagecost, item.cost, 0)) AS totalvalue "
            "FROM inventoryBalance AS balance "
            "INNER JOIN item ON item.id = balance.item "
            f"WHERE {' AND '.join(conditions)}"
        )
        response = await self.rest_client.execute_suiteql(query, NetSuitePagination(limit=1))
        rows = response.get("items") or []
        row = rows[0] if rows else {}
        return {
            "total_items": row.get("totalitems") or 0,
            "total_quantity": row.get("totalquantity") or 0,
            "total_value": row.get("totalvalue") or 0,
        }

    async def get_inventory_transactions(
        self,
        item_id: str,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
        location_id: Optional[str] = None,
        pagination: Optional[NetSuitePagination] = None,
    ) -> dict:
        types = ", ".join(sql_literal(t) for t in INVENTORY_TRANSACTION_TYPES)
        conditions = [f"line.item = {sql_literal(item_id)}", f"transaction.type IN ({types})"]
        if from_date:
            conditions.append(f"transaction.trandate >= TO_DATE({sql_literal(from_date)}, 'YYYY-MM-DD')")
        if to_date:
            conditions.append(f"transaction.trandate <= TO_DATE({sql_literal(to_date)}, 'YYYY-MM-DD')")
        if location_id:
            conditions.append(f"line.location = {sql_literal(location_id)}")
        query = (
            "SELECT transaction.id AS transactionid, transaction.type AS transactiontype, "
            "transaction.trandate AS date, line.quantity, line.location AS locationid "
            "FROM transactionLine AS line "
            "INNER JOIN transaction ON transaction.id = line.transaction "
            f"WHERE {' AND '.join(conditions)} "
            "ORDER BY transaction.trandate DESC, transaction.id DESC"
        )
        response = await self.rest_client.execute_suiteql(query, pagination)
        response["items"] = [
            {
                "transaction_id": row.get("transactionid"),
                "transaction_type": row.get("transactiontype"),
                "date": row.get("date"),
                "quantity": row.get("quantity"),
                "location_id": row.get("locationid"),
            }
            for row in response.get("items") or []
        ]
        return response
