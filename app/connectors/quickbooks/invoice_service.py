"""
B2B-INTEGRATIONS — QuickBooks Online: Invoice service
create / get / list / update / void / send / delete plus the receivables
queries (outstanding, overdue) used by collections.
"""

import logging
from datetime import date
from typing import Callable, Optional

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
    QuickBooksInvoiceInput,
)

logger = logging.getLogger(__name__)


def build_invoice_fields(values: dict) -> dict:
    fields = {}
    if values.get("customer_id"):
        fields["CustomerRef"] = ref(values["customer_id"])
    if values.get("lines"):
        fields["Line"] = build_lines(values["lines"])
    if values.get("txn_date"):
        fields["TxnDate"] = values["txn_date"]
    if values.get("due_date"):
        fields["DueDate"] = values["due_date"]
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
    if values.get("ship_date"):
        fields["ShipDate"] = values["ship_date"]
    if values.get("tracking_num"):
        fields["TrackingNum"] = values["tracking_num"]
    if values.get("bill_email"):
        fields["BillEmail"] = {"Address": values["bill_email"]}
    if values.get("payment_terms_id"):
        fields["SalesTermRef"] = ref(values["payment_terms_id"])
    if values.get("apply_tax_after_discount") is not None:
        fields["ApplyTaxAfterDiscount"] = values["apply_tax_after_discount"]
    return fields


class QuickBooksInvoiceService(QuickBooksEntityService):
    entity = "Invoice"
    path_key = "invoice"

    def __init__(self, rest_client=None, today: Optional[Callable[[], date]] = None):
        super().__init__(rest_client)
        self.today = today or date.today

    async def create(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        data: QuickBooksInvoiceInput,
    ) -> ConnectorResult:
        logger.debug(f"Creating invoice for customer: {data.customer_id}")
        return await self._create(config, credentials, build_invoice_fields(dict(data)), "create-invoice")

    async def get_by_id(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        invoice_id: str,
    ) -> ConnectorResult:
        return await self._get(config, credentials, invoice_id, "get-invoice")

    async def get_by_doc_number(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        doc_number: str,
    ) -> ConnectorResult:
        return await self._query_first(
            config, credentials, [f"DocNumber = '{escape_query(doc_number)}'"], "get-invoice-by-doc-number",
        )

    async def list(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        customer_id: Optional[str] = None,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
        unpaid_only: bool = False,
        overdue_only: bool = False,
        options: Optional[QueryOptions] = None,
    ) -> ConnectorResult:
        conditions = []
        if customer_id:
            conditions.append(f"CustomerRef = '{escape_query(customer_id)}'")
        if from_date:
            conditions.append(f"TxnDate >= '{from_date}'")
        if to_date:
            conditions.append(f"TxnDate <= '{to_date}'")
        if unpaid_only:
            conditions.append("Balance > 0")
        if overdue_only:
            conditions.append(f"DueDate < '{self.today().isoformat()}'")
            if not unpaid_only:
                conditions.append("Balance > 0")
        return await self._query_list(config, credentials, conditions, options, "list-invoices")

    async def update(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        invoice_id: str,
        sync_token: str,
        changes: dict,
    ) -> ConnectorResult:
        logger.debug(f"Updating invoice: {invoice_id}")
        payload = {"Id": invoice_id, "SyncToken": sync_token, "sparse": True}
        payload.update(build_invoice_fields(changes))
        return await self._create(config, credentials, payload, "update-invoice")

    async def void(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        invoice_id: str,
        sync_token: str,
    ) -> ConnectorResult:
        logger.info(f"Voiding invoice: {invoice_id}")
        return await self._operation(config, credentials, invoice_id, sync_token, "void")

    async def delete(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        invoice_id: str,
        sync_token: str,
    ) -> ConnectorResult:
        logger.info(f"Deleting invoice: {invoice_id}")
        return await self._delete(config, credentials, invoice_id, sync_token)

    async def send(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        invoice_id: str,
        email: Optional[str] = None,
    ) -> ConnectorResult:
        """Email the invoice; without `email` QuickBooks uses BillEmail."""
        return await self._send(config, credentials, invoice_id, email)

    # ═════════════════════════════════════════════════════════
    # RECEIVABLES
    # ═════════════════════════════════════════════════════════

    async def get_outstanding(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        customer_id: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> ConnectorResult:
        conditions = ["Balance > 0"]
        if customer_id:
            conditions.append(f"CustomerRef = '{escape_query(customer_id)}'")
        options = QueryOptions(
            start_position=(offset or 0) + 1,
            max_results=limit or 100,
            order_by="DueDate",
        )
        return await self._query_list(config, credentials, conditions, options, "get-outstanding-invoices")

    async def get_overdue(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        customer_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> ConnectorResult:
        conditions = ["Balance > 0", f"DueDate < '{self.today().isoformat()}'"]
        if customer_id:
            conditions.append(f"CustomerRef = '{escape_query(customer_id)}'")
        options = QueryOptions(max_results=limit or 100, order_by="DueDate")
        return await self._query_list(config, credentials, conditions, options, "get-overdue-invoices")


# Singleton instance
quickbooks_invoice_service = QuickBooksInvoiceService()
