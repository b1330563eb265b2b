"""
B2B-INTEGRATIONS — NetSuite: Item service
Items live under several record types; SuiteQL reports the short item type
(InvtPart, Service, ...) which is mapped back to the record type before the
full record is fetched.
"""

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


class NetSuiteItemType(str, Enum):
    INVENTORY = "inventoryItem"
    NON_INVENTORY = "nonInventoryItem"
    SERVICE = "serviceItem"
    DISCOUNT = "discountItem"
    MARKUP = "markupItem"
    PAYMENT = "paymentItem"
    SUBTOTAL = "subtotalItem"
    DESCRIPTION = "descriptionItem"
    ASSEMBLY = "assemblyItem"
    KIT = "kitItem"
    SERIALIZED_INVENTORY = "serializedInventoryItem"
    LOT_NUMBERED_INVENTORY = "lotNumberedInventoryItem"


ITEM_RECORD_TYPES = {
    "InvtPart": NetSuiteItemType.INVENTORY,
    "NonInvtPart": NetSuiteItemType.NON_INVENTORY,
    "Service": NetSuiteItemType.SERVICE,
    "Discount": NetSuiteItemType.DISCOUNT,
    "Markup": NetSuiteItemType.MARKUP,
    "Payment": NetSuiteItemType.PAYMENT,
    "Subtotal": NetSuiteItemType.SUBTOTAL,
    "Description": NetSuiteItemType.DESCRIPTION,
    "Assembly": NetSuiteItemType.ASSEMBLY,
    "Kit": NetSuiteItemType.KIT,
    "SerializedInventoryItem": NetSuiteItemType.SERIALIZED_INVENTORY,
    "LotNumberedInventoryItem": NetSuiteItemType.LOT_NUMBERED_INVENTORY,
}

LIST_COLUMNS = (
    "id, itemid, displayname, salesdescription, itemtype, baseprice, cost, isinactive, "
    "istaxable, isonline, quantityonhand, quantityavailable, custitem_external_id"
)
LOOKUP_COLUMNS = "id, itemid, displayname, itemtype, baseprice, isinactive"
SALEABLE_TYPES = ("InvtPart", "NonInvtPart", "Service", "Kit", "Assembly")


def map_item_type_to_record_type(item_type: Optional[str]) -> NetSuiteItemType:
    return ITEM_RECORD_TYPES.get(item_type or "", NetSuiteItemType.INVENTORY)


def _flag(value: bool) -> str:
    return "'T'" if value else "'F'"


class NetSuiteItemService(NetSuiteRecordService):
    record_type = NetSuiteItemType.INVENTORY.value

    async def get_by_id(self, item_id: str, item_type: Optional[NetSuiteItemType] = None) -> dict:
        record_type = NetSuiteItemType(item_type).value if item_type else self.record_type
        logger.debug(f"Getting NetSuite {record_type}: {item_id}")
        return await self.rest_client.get(f"{record_type}/{item_id}", {"expandSubResources": True})

    async def _find_item(self, query: str, label: str) -> Optional[dict]:
        try:
            response = await self.rest_client.execute_suiteql(query, NetSuitePagination(limit=1))
            items = response.get("items") or []
            if not items:
                return None
            row = items[0]
            return await self.get_by_id(str(row["id"]), map_item_type_to_record_type(row.get("itemtype")))
        except Exception as e:
            logger.warning(f"Failed to find NetSuite item by {label}: {e}")
            return None

    async def get_by_external_id(self, external_id: str) -> Optional[dict]:
        query = f"SELECT {LOOKUP_COLUMNS} FROM item WHERE custitem_external_id = {sql_literal(external_id)}"
        return await self._find_item(query, "external id")

    async def get_by_sku(self, sku: str) -> Optional[dict]:
        query = f"SELECT {LOOKUP_COLUMNS} FROM item WHERE itemid = {sql_literal(sku)}"
        return await self._find_item(query, "SKU")

    async def get_by_upc(self, upc: str) -> Optional[dict]:
        query = f"SELECT {LOOKUP_COLUMNS}, upccode FROM item WHERE upccode = {sql_literal(upc)}"
        return await self._find_item(query, "UPC")

    async def list(
        self,
        item_type: Optional[str] = None,
        subsidiary: Optional[str] = None,
        item_class: Optional[str] = None,
        department: Optional[str] = None,
        location: Optional[str] = None,
        include_inactive: bool = False,
        search_term: Optional[str] = None,
        external_id_prefix: Optional[str] = None,
        is_taxable: Optional[bool] = None,
        is_online: Optional[bool] = None,
        pagination: Optional[NetSuitePagination] = None,
    ) -> dict:
        conditions = ["1=1"]
        if not include_inactive:
            conditions.append("isinactive = 'F'")
        if item_type:
            conditions.append(f"itemtype = {sql_literal(item_type)}")
        for column, value in (
            ("subsidiary", subsidiary),
            ("class", item_class),
            ("department", department),
            ("location", location),
        ):
            if value:
                conditions.append(f"{column} = {sql_literal(value)}")
        if search_term:
            term = escape_sql(search_term)
            conditions.append(
                f"(LOWER(itemid) LIKE LOWER('%{term}%') "
                f"OR LOWER(displayname) LIKE LOWER('%{term}%') "
                f"OR LOWER(salesdescription) LIKE LOWER('%{term}%'))"
            )
        if external_id_prefix:
            conditions.append(f"custitem_external_id LIKE '{escape_sql(external_id_prefix)}%'")
        if is_taxable is not None:
            conditions.append(f"istaxable = {_flag(is_taxable)}")
        if is_online is not None:
            conditions.append(f"isonline = {_flag(is_online)}")

        query = f"SELECT {LIST_COLUMNS} FROM item WHERE {' AND '.join(conditions)} ORDER BY itemid"
        return await self._suiteql(query, pagination)

    async def search(self, term: str, pagination: Optional[NetSuitePagination] = None) -> dict:
        return await self.list(search_term=term, include_inactive=False, pagination=pagination)

    async def get_modified_since(self, since: str, pagination: Optional[NetSuitePagination] = None) -> dict:
        query = (
            f"SELECT {LIST_COLUMNS}, lastmodifieddate FROM item "
            f"WHERE lastmodifieddate >= TO_DATE({sql_literal(since)}, '{MODIFIED_SINCE_FORMAT}') "
            "ORDER BY lastmodifieddate DESC"
        )
        return await self._suiteql(query, pagination)

    async def get_pricing(self, item_id: str) -> dict:
        return await self.rest_client.get(
            f"{self.record_type}/{item_id}",
            {"fields": "id,itemId,basePrice,pricing", "expandSubResources": True},
        )

    async def get_inventory_by_location(self, item_id: str) -> dict:
        return await self.rest_client.get(
            f"{self.record_type}/{item_id}",
            {
                "fields": "id,itemId,quantityOnHand,quantityAvailable,quantityOnOrder,quantityCommitted,locations",
                "expandSubResources": True,
            },
        )

    async def get_saleable_items(self, pagination: Optional[NetSuitePagination] = None) -> dict:
        types = ", ".join(sql_literal(t) for t in SALEABLE_TYPES)
        query = (
            "SELECT id, itemid, displayname, salesdescription, itemtype, baseprice, cost, "
            "quantityavailable, custitem_external_id FROM item "
            f"WHERE isinactive = 'F' AND isonline = 'T' AND itemtype IN ({types}) "
            "ORDER BY displayname"
        )
        return await self._suiteql(query, pagination)
