"""
B2B-INTEGRATIONS — QuickBooks Online: Payment service
Customer payments and their application to invoices (Line[].LinkedTxn).
"""

import logging
from typing import Optional

from app.connectors.quickbooks.base import QuickBooksEntityService, escape_query, ref
from app.schemas.connectors import (
    ConnectorResult,
    QueryOptions,
    QuickBooksConnectionConfig,
    QuickBooksCredentials,
    QuickBooksPaymentInput,
)

logger = logging.getLogger(__name__)

FOR_INVOICE_SCAN_LIMIT = 1000


def build_payment_payload(data: QuickBooksPaymentInput) -> dict:
    payload = {"CustomerRef": ref(data.customer_id), "TotalAmt": data.total_amt}
    if data.txn_date:
        payload["TxnDate"] = data.txn_date
    if data.payment_method_id:
        payload["PaymentMethodRef"] = ref(data.payment_method_id)
    if data.payment_ref_num:
        payload["PaymentRefNum"] = data.payment_ref_num
    if data.private_note:
        payload["PrivateNote"] = data.private_note
    if data.deposit_to_account_id:
        payload["DepositToAccountRef"] = ref(data.deposit_to_account_id)
    if data.process_payment is not None:
        payload["ProcessPayment"] = data.process_payment

    # Unspecified amounts split the total evenly across the linked invoices
    if data.invoices:
        share = data.total_amt / len(data.invoices)
        payload["Line"] = [
            {
                "Amount": link.amount if link.amount is not None else share,
                "LinkedTxn": [{"TxnId": link.invoice_id, "TxnType": "Invoice"}],
            }
            for link in data.invoices
        ]
    return payload


def links_invoice(payment: dict, invoice_id: str) -> bool:
    for line in payment.get("Line") or []:
        for txn in line.get("LinkedTxn") or []:
            if txn.get("TxnType") == "Invoice" and txn.get("TxnId") == invoice_id:
                return True
    return False


class QuickBooksPaymentService(QuickBooksEntityService):
    entity = "Payment"
    path_key = "payment"

    async def create(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        data: QuickBooksPaymentInput,
    ) -> ConnectorResult:
        logger.debug(f"Creating payment for customer {data.customer_id}: {data.total_amt}")
        return await self._create(config, credentials, build_payment_payload(data), "create-payment")

    async def get_by_id(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        payment_id: str,
    ) -> ConnectorResult:
        return await self._get(config, credentials, payment_id, "get-payment")

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
        return await self._query_list(config, credentials, conditions, options, "list-payments")

    async def void(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        payment_id: str,
        sync_token: str,
    ) -> ConnectorResult:
        logger.info(f"Voiding payment: {payment_id}")
        return await self._operation(config, credentials, payment_id, sync_token, "void")

    async def get_for_invoice(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        invoice_id: str,
    ) -> ConnectorResult:
        """QBO cannot filter on LinkedTxn, so payments are scanned locally."""
        result = await self._query_list(
            config, credentials, [], QueryOptions(max_results=FOR_INVOICE_SCAN_LIMIT), "get-payments-for-invoice",
        )
        if not result.success:
            return result
        payments = [p for p in result.data if links_invoice(p, invoice_id)]
        return ConnectorResult(success=True, data=payments, metadata=result.metadata)

    async def get_for_customer(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        customer_id: str,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> ConnectorResult:
        conditions = [f"CustomerRef = '{escape_query(customer_id)}'"]
        if from_date:
            conditions.append(f"TxnDate >= '{from_date}'")
        if to_date:
            conditions.append(f"TxnDate <= '{to_date}'")
        options = QueryOptions(max_results=limit or 100, order_by="TxnDate DESC")
        return await self._query_list(config, credentials, conditions, options, "get-customer-payments")

    async def get_unapplied(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        customer_id: Optional[str] = None,
    ) -> ConnectorResult:
        conditions = ["UnappliedAmt > 0"]
        if customer_id:
            conditions.append(f"CustomerRef = '{escape_query(customer_id)}'")
        return await self._query_list(
            config, credentials, conditions, QueryOptions(max_results=100), "get-unapplied-payments",
        )


# Singleton instance
quickbooks_payment_service = QuickBooksPaymentService()
