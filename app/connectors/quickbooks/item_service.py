"""
B2B-INTEGRATIONS — QuickBooks Online: Item service
Products and services. QuickBooks has no hard delete for items; deactivate instead.
"""

import logging
from typing import Optional

from app.connectors.quickbooks.base import QuickBooksEntityService, escape_query, ref
from app.schemas.connectors import (
    ConnectorResult,
    QueryOptions,
    QuickBooksConnectionConfig,
    QuickBooksCredentials,
    QuickBooksItemInput,
    QuickBooksItemType,
)

logger = logging.getLogger(__name__)

LOW_STOCK_THRESHOLD = 10


def build_item_fields(values: dict) -> dict:
    fields = {}
    if values.get("name"):
        fields["Name"] = values["name"]
    if values.get("type"):
        fields["Type"] = QuickBooksItemType(values["type"]).value
    if values.get("description"):
        fields["Description"] = values["description"]
    if values.get("sku"):
        fields["Sku"] = values["sku"]
    if values.get("unit_price") is not None:
        fields["UnitPrice"] = values["unit_price"]
    if values.get("purchase_cost") is not None:
        fields["PurchaseCost"] = values["purchase_cost"]
    if values.get("purchase_description"):
        fields["PurchaseDesc"] = values["purchase_description"]
    if values.get("active") is not None:
        fields["Active"] = values["active"]
    if values.get("taxable") is not None:
        fields["Taxable"] = values["taxable"]
    if values.get("track_qty_on_hand") is not None:
        fields["TrackQtyOnHand"] = values["track_qty_on_hand"]
    if values.get("qty_on_hand") is not None:
        fields["QtyOnHand"] = values["qty_on_hand"]
    if values.get("inv_start_date"):
        fields["InvStartDate"] = values["inv_start_date"]
    if values.get("income_account_id"):
        fields["IncomeAccountRef"] = ref(values["income_account_id"])
    if values.get("expense_account_id"):
        fields["ExpenseAccountRef"] = ref(values["expense_account_id"])
    if values.get("asset_account_id"):
        fields["AssetAccountRef"] = ref(values["asset_account_id"])
    return fields


class QuickBooksItemService(QuickBooksEntityService):
    entity = "Item"
    path_key = "item"

    async def create(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        data: QuickBooksItemInput,
    ) -> ConnectorResult:
        logger.debug(f"Creating item: {data.name}")
        return await self._create(config, credentials, build_item_fields(dict(data)), "create-item")

    async def get_by_id(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        item_id: str,
    ) -> ConnectorResult:
        return await self._get(config, credentials, item_id, "get-item")

    async def get_by_sku(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        sku: str,
    ) -> ConnectorResult:
        """data is the first match or None."""
        return await self._query_first(config, credentials, [f"Sku = '{escape_query(sku)}'"], "get-item-by-sku")

    async def get_by_name(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        name: str,
    ) -> ConnectorResult:
        return await self._query_first(config, credentials, [f"Name = '{escape_query(name)}'"], "get-item-by-name")

    async def list(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        active: Optional[bool] = None,
        item_type: Optional[QuickBooksItemType] = None,
        search_name: Optional[str] = None,
        sku: Optional[str] = None,
        options: Optional[QueryOptions] = None,
    ) -> ConnectorResult:
        conditions = []
        if active is not None:
            conditions.append(f"Active = {'true' if active else 'false'}")
        if item_type:
            conditions.append(f"Type = '{QuickBooksItemType(item_type).value}'")
        if search_name:
            conditions.append(f"Name LIKE '%{escape_query(search_name)}%'")
        if sku:
            conditions.append(f"Sku = '{escape_query(sku)}'")
        return await self._query_list(config, credentials, conditions, options, "list-items")

    async def search(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        term: str,
        item_type: Optional[QuickBooksItemType] = None,
        active_only: bool = True,
        limit: Optional[int] = None,
    ) -> ConnectorResult:
        conditions = [f"Name LIKE '%{escape_query(term)}%'"]
        if item_type:
            conditions.append(f"Type = '{QuickBooksItemType(item_type).value}'")
        if active_only is not False:
            conditions.append("Active = true")
        return await self._query_list(
            config, credentials, conditions, QueryOptions(max_results=limit or 25), "search-items",
        )

    async def get_inventory_items(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        low_stock: bool = False,
        limit: Optional[int] = None,
    ) -> ConnectorResult:
        conditions = ["Type = 'Inventory'", "Active = true"]
        if low_stock:
            conditions.append(f"QtyOnHand < {LOW_STOCK_THRESHOLD}")
        return await self._query_list(
            config, credentials, conditions, QueryOptions(max_results=limit or 100), "get-inventory-items",
        )

    async def get_low_stock_items(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        limit: Optional[int] = None,
    ) -> ConnectorResult:
        return await self.get_inventory_items(config, credentials, low_stock=True, limit=limit)

    async def update(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        item_id: str,
        sync_token: str,
        changes: dict,
    ) -> ConnectorResult:
        logger.debug(f"Updating item: {item_id}")
        payload = {"Id": item_id, "SyncToken": sync_token, "sparse": True}
        payload.update(build_item_fields(changes))
        return await self._create(config, credentials, payload, "update-item")

    async def deactivate(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        item_id: str,
        sync_token: str,
    ) -> ConnectorResult:
        logger.info(f"Deactivating item: {item_id}")
        return await self.update(config, credentials, item_id, sync_token, {"active": False})


# Singleton instance
quickbooks_item_service = QuickBooksItemService()
