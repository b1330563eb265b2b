"""
B2B-INTEGRATIONS — QuickBooks Online: Sales receipt service
Paid-at-sale transactions; same shape as invoices plus payment/deposit refs.
"""

import logging
from typing import Optional

from app.connectors.quickbooks.base import (
    QuickBooksEntityService,
    build_address,
    build_lines,
    escape_query,
    ref,
)
from app.schemas.connectors import (
    ConnectorResult,
    QueryOptions,
    QuickBooksConnectionConfig,
    QuickBooksCredentials,
    QuickBooksSalesReceiptInput,
)

logger = logging.getLogger(__name__)


def build_sales_receipt_fields(values: dict) -> dict:
    fields = {}
    if values.get("customer_id"):
        fields["CustomerRef"] = ref(values["customer_id"])
    if values.get("lines"):
        fields["Line"] = build_lines(values["lines"])
    if values.get("txn_date"):
        fields["TxnDate"] = values["txn_date"]
    if values.get("doc_number"):
        fields["DocNumber"] = values["doc_number"]
    if values.get("private_note"):
        fields["PrivateNote"] = values["private_note"]
    if values.get("customer_memo"):
        fields["CustomerMemo"] = {"value": values["customer_memo"]}
    if values.get("billing_address"):
        fields["BillAddr"] = build_address(values["billing_address"])
    if values.get("shipping_address"):
        fields["ShipAddr"] = build_address(values["shipping_address"])
    if values.get("payment_method_id"):
        fields["PaymentMethodRef"] = ref(values["payment_method_id"])
    if values.get("payment_ref_num"):
        fields["PaymentRefNum"] = values["payment_ref_num"]
    if values.get("deposit_to_account_id"):
        fields["DepositToAccountRef"] = ref(values["deposit_to_account_id"])
    return fields


class QuickBooksSalesReceiptService(QuickBooksEntityService):
    entity = "SalesReceipt"
    path_key = "sales_receipt"

    async def create(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        data: QuickBooksSalesReceiptInput,
    ) -> ConnectorResult:
        logger.debug(f"Creating sales receipt with {len(data.lines)} lines")
        return await self._create(
            config, credentials, build_sales_receipt_fields(dict(data)), "create-sales-receipt",
        )

    async def get_by_id(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        receipt_id: str,
    ) -> ConnectorResult:
        return await self._get(config, credentials, receipt_id, "get-sales-receipt")

    async def get_by_doc_number(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        doc_number: str,
    ) -> ConnectorResult:
        return await self._query_first(
            config, credentials, [f"DocNumber = '{escape_query(doc_number)}'"], "get-sales-receipt-by-doc-number",
        )

    async def list(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        customer_id: Optional[str] = None,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
        options: Optional[QueryOptions] = None,
    ) -> ConnectorResult:
        conditions = []
        if customer_id:
            conditions.append(f"CustomerRef = '{escape_query(customer_id)}'")
        if from_date:
            conditions.append(f"TxnDate >= '{from_date}'")
        if to_date:
            conditions.append(f"TxnDate <= '{to_date}'")
        return await self._query_list(config, credentials, conditions, options, "list-sales-receipts")

    async def update(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        receipt_id: str,
        sync_token: str,
        changes: dict,
    ) -> ConnectorResult:
        payload = {"Id": receipt_id, "SyncToken": sync_token, "sparse": True}
        payload.update(build_sales_receipt_fields(changes))
        return await self._create(config, credentials, payload, "update-sales-receipt")

    async def void(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        receipt_id: str,
        sync_token: str,
    ) -> ConnectorResult:
        logger.info(f"Voiding sales receipt: {receipt_id}")
        return await self._operation(config, credentials, receipt_id, sync_token, "void")

    async def send(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        receipt_id: str,
        email: Optional[str] = None,
    ) -> ConnectorResult:
        return await self._send(config, credentials, receipt_id, email)


# Singleton instance
quickbooks_sales_receipt_service = QuickBooksSalesReceiptService()
