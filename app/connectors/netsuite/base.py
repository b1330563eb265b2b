"""
B2B-INTEGRATIONS — NetSuite: shared record service plumbing
"""

import logging
from typing import Any, Optional

from app.connectors.netsuite.rest_client import NetSuiteRestClient, netsuite_rest_client
from app.schemas.connectors import NetSuiteAddressInput, NetSuitePagination

logger = logging.getLogger(__name__)

MODIFIED_SINCE_FORMAT = 'YYYY-MM-DD"T"HH24:MI:SS'


def escape_sql(value: Any) -> str:
    return str(value).replace("'", "''")


def sql_literal(value: Any) -> str:
    return f"'{escape_sql(value)}'"


def build_address(address: NetSuiteAddressInput) -> dict:
    payload = {
        "addr1": address.addr1,
        "addr2": address.addr2,
        "city": address.city,
        "state": address.state,
        "zip": address.zip,
    }
    payload = {k: v for k, v in payload.items() if v is not None}
    if address.country:
        payload["country"] = {"id": address.country}
    return payload


class NetSuiteRecordService:
    """Base for record services. Subclasses set `record_type`."""

    record_type = ""

    def __init__(self, rest_client: Optional[NetSuiteRestClient] = None):
        self.rest_client = rest_client or netsuite_rest_client

    async def get_by_id(self, record_id: str) -> dict:
        logger.debug(f"Getting NetSuite {self.record_type}: {record_id}")
        return await self.rest_client.get(f"{self.record_type}/{record_id}", {"expandSubResources": True})

    async def _find_one(self, query: str, label: str) -> Optional[dict]:
        """SuiteQL lookup of a single id, then the full record. Lookup failures log and yield None."""
        try:
            response = await self.rest_client.execute_suiteql(query, NetSuitePagination(limit=1))
            items = response.get("items") or []
            if not items:
                return None
            return await self.get_by_id(str(items[0]["id"]))
        except Exception as e:
            logger.warning(f"Failed to find NetSuite {self.record_type} by {label}: {e}")
            return None

    async def _suiteql(self, query: str, pagination: Optional[NetSuitePagination] = None) -> dict:
        return await self.rest_client.execute_suiteql(query, pagination)
