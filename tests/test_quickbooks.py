"""
B2B-INTEGRATIONS — QuickBooks Online Connector Tests
OAuth2 token cache, REST client, error taxonomy, entity services,
canonical mapping and the connector entry point.

Run: pytest tests/ -v
"""

import asyncio
import re
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from app.schemas.connectors import (
    CanonicalAddress,
    CanonicalCustomer,
    CanonicalProduct,
    ConnectorResult,
    ListPage,
    PaymentInvoiceLink,
    QueryOptions,
    QuickBooksConnectionConfig,
    QuickBooksCredentials,
    QuickBooksCustomerInput,
    QuickBooksInvoiceInput,
    QuickBooksItemType,
    QuickBooksLineInput,
    QuickBooksOAuth2Config,
    QuickBooksPaymentInput,
    QuickBooksTokenResult,
    ResultMetadata,
)

NOW = datetime(2026, 1, 15, 16, 0, tzinfo=timezone.utc)


def fixed_clock():
    return NOW


def make_config(**overrides):
    values = {"realm_id": "9130354", "environment": "sandbox"}
    values.update(overrides)
    return QuickBooksConnectionConfig(**values)


def make_credentials(**overrides):
    values = {
        "client_id": "client-abc",
        "client_secret": "secret-xyz",
        "access_token": "access-1",
        "refresh_token": "refresh-1",
        "expires_at": NOW + timedelta(hours=1),
    }
    values.update(overrides)
    return QuickBooksCredentials(oauth2=QuickBooksOAuth2Config(**values))


def mock_http_client(*responses, error=None):
    client = MagicMock()
    for method in ("post", "get", "request"):
        setattr(client, method, AsyncMock(side_effect=error if error else list(responses)))
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = client
    factory.return_value.__aexit__.return_value = False
    return factory, client


def qb_response(status_code=200, json_data=None):
    response = MagicMock(spec=httpx.Response)
    response.status_code = status_code
    response.is_success = 200 <= status_code < 300
    response.content = b"{}" if json_data is not None else b""
    response.text = ""
    response.json.return_value = json_data
    return response


def ok(data=None, **metadata):
    return ConnectorResult(success=True, data=data, metadata=ResultMetadata(**metadata))


def mock_rest_client():
    rest = MagicMock()
    for method in ("get", "post", "delete", "send", "query"):
        setattr(rest, method, AsyncMock())
    return rest


# ─────────────────────────────────────────────────────────────
# OAUTH2
# ─────────────────────────────────────────────────────────────

from app.connectors.quickbooks.auth import QuickBooksAuthError, QuickBooksAuthService


class TestQuickBooksAuth:

    def setup_method(self):
        self.auth = QuickBooksAuthService(clock=fixed_clock)
        self.config = make_config()

    def test_valid_supplied_token_is_adopted(self):
        factory, client = mock_http_client()
        with patch("httpx.AsyncClient", factory):
            token = asyncio.run(self.auth.get_access_token(self.config, make_credentials()))
        assert token == "access-1"
        client.post.assert_not_awaited()
        assert self.auth.get_token_info("9130354", "client-abc")["cached"] is True

    def test_token_inside_refresh_buffer_is_refreshed_then_cached(self):
        credentials = make_credentials(expires_at=NOW + timedelta(minutes=3))
        factory, client = mock_http_client(
            qb_response(200, {"access_token": "access-2", "refresh_token": "refresh-2", "expires_in": 3600}),
        )
        with patch("httpx.AsyncClient", factory):
            first = asyncio.run(self.auth.get_access_token(self.config, credentials))
            second = asyncio.run(self.auth.get_access_token(self.config, credentials))

        assert first == second == "access-2"
        assert client.post.await_count == 1
        kwargs = client.post.await_args.kwargs
        assert kwargs["data"] == {"grant_type": "refresh_token", "refresh_token": "refresh-1"}
        assert kwargs["headers"]["Authorization"].startswith("Basic ")

        info = self.auth.get_token_info("9130354", "client-abc")
        assert info["remaining_ms"] == 3600 * 1000

    def test_refresh_failure_asks_for_reauthorization(self):
        credentials = make_credentials(access_token=None, expires_at=None)
        factory, _ = mock_http_client(qb_response(400, {"error": "invalid_grant"}))
        with patch("httpx.AsyncClient", factory):
            with pytest.raises(QuickBooksAuthError) as exc_info:
                asyncio.run(self.auth.get_access_token(self.config, credentials))
        assert "Re-authorization" in exc_info.value.message
        assert exc_info.value.qb_response == {"error": "invalid_grant"}

    def test_missing_oauth2_and_refresh_token(self):
        with pytest.raises(QuickBooksAuthError):
            asyncio.run(self.auth.get_access_token(self.config, QuickBooksCredentials()))

        expired = make_credentials(expires_at=NOW - timedelta(hours=1), refresh_token=None)
        with pytest.raises(QuickBooksAuthError) as exc_info:
            asyncio.run(self.auth.get_access_token(self.config, expired))
        assert exc_info.value.message == "No valid access token available"

    def test_invalidate_and_manual_cache_update(self):
        token = QuickBooksTokenResult(access_token="manual", expires_at=NOW + timedelta(hours=2))
        self.auth.update_token_cache("9130354", "client-abc", token)
        expired = make_credentials(expires_at=NOW - timedelta(hours=1))
        assert asyncio.run(self.auth.get_access_token(self.config, expired)) == "manual"

        self.auth.invalidate_token("9130354", "client-abc")
        assert self.auth.get_token_info("9130354", "client-abc") == {"cached": False}

    def test_validate_credentials(self):
        valid, errors = QuickBooksAuthService.validate_credentials(self.config, make_credentials())
        assert valid and errors == []

        config = make_config(realm_id="", environment="staging")
        credentials = make_credentials(client_secret="", access_token=None, refresh_token=None)
        valid, errors = QuickBooksAuthService.validate_credentials(config, credentials)
        assert not valid
        assert "Realm ID (Company ID) is required" in errors
        assert "Environment must be sandbox or production" in errors
        assert "OAuth2 client secret is required" in errors
        assert "Either access token or refresh token is required" in errors

    def test_authentication_check(self):
        factory, client = mock_http_client(qb_response(200, {"CompanyInfo": {}}), qb_response(401, {}))
        with patch("httpx.AsyncClient", factory):
            assert asyncio.run(self.auth.test_authentication(self.config, make_credentials())) == (True, None)
            ok_flag, error = asyncio.run(self.auth.test_authentication(self.config, make_credentials()))
        assert ok_flag is False
        assert error == "Unexpected response status: 401"
        url = client.get.await_args_list[0].args[0]
        assert url.startswith("https://sandbox-quickbooks.api.intuit.com/v3/company/9130354/companyinfo/9130354")


# ─────────────────────────────────────────────────────────────
# REST CLIENT
# ─────────────────────────────────────────────────────────────

from app.connectors.quickbooks.rest_client import QuickBooksRestClient


class TestQuickBooksRestClient:

    def setup_method(self):
        self.auth = MagicMock()
        self.auth.get_access_token = AsyncMock(return_value="tok")
        self.rest = QuickBooksRestClient(auth=self.auth)
        self.config = make_config()
        self.credentials = make_credentials()

    def test_build_url(self):
        production = make_config(environment="production", realm_id="123")
        assert self.rest.build_url(production, "/v3/company/{realmId}/customer") == (
            "https://quickbooks.api.intuit.com/v3/company/123/customer?minorversion=65"
        )
        url = self.rest.build_url(self.config, "/v3/company/{realmId}/invoice", {"operation": "void", "sendTo": None})
        assert url.startswith("https://sandbox-quickbooks.api.intuit.com/v3/company/9130354/invoice?")
        assert parse_qs(urlparse(url).query) == {"minorversion": ["65"], "operation": ["void"]}

    def test_get_sends_bearer_token(self):
        factory, client = mock_http_client(qb_response(200, {"Customer": {"Id": "1"}}))
        with patch("httpx.AsyncClient", factory):
            result = asyncio.run(self.rest.get(self.config, self.credentials, "/v3/company/{realmId}/customer/1"))

        assert result.success
        assert result.data == {"Customer": {"Id": "1"}}
        assert result.metadata.request_id.startswith("qb-")
        method, url = client.request.await_args.args
        headers = client.request.await_args.kwargs["headers"]
        assert method == "GET"
        assert "/customer/1?minorversion=65" in url
        assert headers["Authorization"] == "Bearer tok"
        assert "Content-Type" not in headers

    def test_delete_and_send_are_posts(self):
        factory, client = mock_http_client(qb_response(200, {"Invoice": {}}), qb_response(200, {"Invoice": {}}))
        with patch("httpx.AsyncClient", factory):
            asyncio.run(self.rest.delete(self.config, self.credentials, "/v3/company/{realmId}/invoice",
                                         {"Id": "7", "SyncToken": "1"}))
            asyncio.run(self.rest.send(self.config, self.credentials, "/v3/company/{realmId}/invoice/7",
                                       "ap@acme.com"))

        delete_call, send_call = client.request.await_args_list
        assert delete_call.args[0] == "POST"
        assert "operation=delete" in delete_call.args[1]
        assert delete_call.kwargs["json"] == {"Id": "7", "SyncToken": "1"}
        assert "/invoice/7/send?" in send_call.args[1]
        assert parse_qs(urlparse(send_call.args[1]).query)["sendTo"] == ["ap@acme.com"]
        assert send_call.kwargs["headers"]["Content-Type"] == "application/octet-stream"

    def test_query_paging_metadata(self):
        body = {"QueryResponse": {"Customer": [{"Id": "1"}, {"Id": "2"}],
                                  "startPosition": 1, "maxResults": 2, "totalCount": 5}}
        factory, client = mock_http_client(qb_response(200, body))
        options = QueryOptions(order_by="DisplayName", start_position=1, max_results=2)
        with patch("httpx.AsyncClient", factory):
            result = asyncio.run(self.rest.query(self.config, self.credentials, "SELECT * FROM Customer", options))

        assert result.success
        assert result.metadata.total_results == 5
        assert result.metadata.has_more is True
        query = parse_qs(urlparse(client.request.await_args.args[1]).query)["query"][0]
        assert query == "SELECT * FROM Customer ORDERBY DisplayName STARTPOSITION 1 MAXRESULTS 2"

    def test_last_page_has_no_more(self):
        body = {"QueryResponse": {"Item": [{"Id": "9"}], "startPosition": 5, "maxResults": 1, "totalCount": 5}}
        factory, _ = mock_http_client(qb_response(200, body))
        with patch("httpx.AsyncClient", factory):
            result = asyncio.run(self.rest.query(self.config, self.credentials, "SELECT * FROM Item"))
        assert result.metadata.has_more is False

    def test_fault_body_maps_to_failure(self):
        fault = {"Fault": {"Error": [{"code": "6240", "Message": "Duplicate Name Exists Error",
                                      "Detail": "The name supplied already exists."}]}}
        factory, _ = mock_http_client(qb_response(400, fault))
        with patch("httpx.AsyncClient", factory):
            result = asyncio.run(self.rest.post(self.config, self.credentials,
                                                "/v3/company/{realmId}/customer", {"DisplayName": "Acme"}))
        assert not result.success
        assert result.error.code == "6240"
        assert result.error.message == "Duplicate Name Exists Error"
        assert result.error.retryable is False
        assert result.error.details[0]["detail"] == "The name supplied already exists."

    def test_empty_error_body_is_retryable_on_503(self):
        factory, _ = mock_http_client(qb_response(503))
        with patch("httpx.AsyncClient", factory):
            result = asyncio.run(self.rest.get(self.config, self.credentials, "/v3/company/{realmId}/item/1"))
        assert result.error.code == "UNKNOWN_ERROR"
        assert result.error.message == "HTTP 503"
        assert result.error.retryable is True

    def test_timeout_and_auth_failures(self):
        factory, _ = mock_http_client(error=httpx.ReadTimeout("slow"))
        with patch("httpx.AsyncClient", factory):
            result = asyncio.run(self.rest.get(self.config, self.credentials, "/v3/company/{realmId}/item/1"))
        assert result.error.code == "CONNECTOR_ERROR"
        assert "did not respond" in result.error.message

        self.auth.get_access_token = AsyncMock(side_effect=QuickBooksAuthError("No valid access token available"))
        result = asyncio.run(self.rest.get(self.config, self.credentials, "/v3/company/{realmId}/item/1"))
        assert result.error.code == "CONNECTOR_ERROR"
        assert result.error.message == "No valid access token available"


# ─────────────────────────────────────────────────────────────
# ERRORS
# ─────────────────────────────────────────────────────────────

from app.connectors.quickbooks.errors import (
    QuickBooksApiError,
    QuickBooksErrorCategory,
    categorize,
    create_error_result,
    create_user_friendly_message,
    get_retry_delay,
    is_retryable,
    is_retryable_response,
    parse_error,
)


class TestQuickBooksErrors:

    def test_categorize_prefers_status_code(self):
        assert categorize(404, "6240") == QuickBooksErrorCategory.NOT_FOUND
        assert categorize(500) == QuickBooksErrorCategory.SERVER
        assert categorize(None, "6240") == QuickBooksErrorCategory.VALIDATION
        assert categorize(None, "610") == QuickBooksErrorCategory.AUTHORIZATION
        assert categorize(None, "3") == QuickBooksErrorCategory.CONCURRENCY
        assert categorize(None, "99999") == QuickBooksErrorCategory.UNKNOWN

    def test_retryability(self):
        assert is_retryable(QuickBooksErrorCategory.RATE_LIMIT)
        assert is_retryable(QuickBooksErrorCategory.AUTHENTICATION, "102")
        assert not is_retryable(QuickBooksErrorCategory.AUTHENTICATION, "100")
        assert is_retryable(QuickBooksErrorCategory.CONCURRENCY, "3")
        assert not is_retryable(QuickBooksErrorCategory.VALIDATION, "2000")

        assert is_retryable_response(429, None)
        assert is_retryable_response(400, "6000")
        assert not is_retryable_response(400, "6240")

    def test_retry_delay(self):
        assert get_retry_delay(QuickBooksErrorCategory.RATE_LIMIT, 1) == 60000
        assert get_retry_delay(QuickBooksErrorCategory.RATE_LIMIT, 4) == 300000
        assert get_retry_delay(QuickBooksErrorCategory.SERVER, 3) == 4000
        assert get_retry_delay(QuickBooksErrorCategory.SERVER, 10) == 60000

    def test_parse_error_variants(self):
        api = parse_error(QuickBooksApiError("gone", status_code=404))
        assert api.category == QuickBooksErrorCategory.NOT_FOUND
        assert api.code == "404"

        fault = parse_error({"Fault": {"Error": [{"code": "5", "Message": "Throttled"}]}})
        assert fault.category == QuickBooksErrorCategory.RATE_LIMIT
        assert fault.retryable

        network = parse_error(httpx.ConnectError("refused"))
        assert network.category == QuickBooksErrorCategory.NETWORK
        assert network.code == "NETWORK_ERROR"
        assert network.retryable

        generic = parse_error(RuntimeError("boom"))
        assert generic.code == "CONNECTOR_ERROR"
        assert generic.message == "boom"

        assert parse_error(42).code == "UNKNOWN_ERROR"

    def test_user_friendly_message_and_result(self):
        parsed = parse_error({"Fault": {"Error": [{"code": "2010", "Message": "Required param missing"}]}})
        assert create_user_friendly_message(parsed) == (
            "Validation error: Required param missing. Please check your input and try again."
        )

        result = create_error_result(httpx.ReadTimeout("slow"), "list-items", 12)
        assert not result.success
        assert result.error.code == "NETWORK_ERROR"
        assert result.error.request_id == "list-items"
        assert result.metadata.duration_ms == 12


# ─────────────────────────────────────────────────────────────
# PAYLOAD HELPERS
# ─────────────────────────────────────────────────────────────

from app.connectors.quickbooks.base import build_address, build_lines, escape_query


class TestPayloadHelpers:

    def test_escape_query(self):
        assert escape_query("O'Brien \"Co\"") == "O\\'Brien \\\"Co\\\""

    def test_escape_query_escapes_backslashes_first(self):
        assert escape_query("abc\\") == "abc\\\\"
        assert escape_query("x\\' OR Active = false") == "x\\\\\\' OR Active = false"

    def test_escaped_value_cannot_close_the_literal(self):
        value = "x\\' OR Active = false OR Name = \\'"
        escaped = escape_query(value)
        assert "'" not in re.sub(r"\\.", "", escaped)
        assert re.sub(r"\\(.)", r"\1", escaped) == value

    def test_build_address_drops_missing_fields(self):
        assert build_address({"line1": "1 Main St", "city": "Austin", "state": "TX"}) == {
            "Line1": "1 Main St", "City": "Austin", "CountrySubDivisionCode": "TX",
        }
        assert build_address(None) is None

    def test_build_lines(self):
        lines = build_lines([
            QuickBooksLineInput(item_id="5", quantity=2, unit_price=12.5, description="Widget"),
            {"item_id": "6", "amount": 40, "tax_code_id": "TAX"},
            {"description": "Freebie"},
        ])
        assert [line["LineNum"] for line in lines] == [1, 2, 3]
        assert lines[0]["Amount"] == 25
        assert lines[0]["SalesItemLineDetail"] == {"ItemRef": {"value": "5"}, "Qty": 2, "UnitPrice": 12.5}
        assert lines[0]["Description"] == "Widget"
        assert lines[1]["Amount"] == 40
        assert lines[1]["SalesItemLineDetail"]["TaxCodeRef"] == {"value": "TAX"}
        assert lines[2]["Amount"] == 0
        assert all(line["DetailType"] == "SalesItemLineDetail" for line in lines)


# ─────────────────────────────────────────────────────────────
# ENTITY SERVICES
# ─────────────────────────────────────────────────────────────

from app.connectors.quickbooks.customer_service import QuickBooksCustomerService
from app.connectors.quickbooks.invoice_service import QuickBooksInvoiceService
from app.connectors.quickbooks.item_service import QuickBooksItemService
from app.connectors.quickbooks.payment_service import QuickBooksPaymentService, build_payment_payload


class TestEntityServices:

    def setup_method(self):
        self.rest = mock_rest_client()
        self.config = make_config()
        self.credentials = make_credentials()

    def test_create_customer_unwraps_entity(self):
        self.rest.post.return_value = ok({"Customer": {"Id": "58", "DisplayName": "Acme"}})
        service = QuickBooksCustomerService(rest_client=self.rest)
        data = QuickBooksCustomerInput(display_name="Acme", email="ap@acme.com",
                                       billing_address={"line1": "1 Main St", "city": "Austin"})
        result = asyncio.run(service.create(self.config, self.credentials, data))

        assert result.data == {"Id": "58", "DisplayName": "Acme"}
        _, _, path, payload = self.rest.post.await_args.args
        assert path == "/v3/company/{realmId}/customer"
        assert payload == {
            "DisplayName": "Acme",
            "PrimaryEmailAddr": {"Address": "ap@acme.com"},
            "BillAddr": {"Line1": "1 Main St", "City": "Austin"},
        }

    def test_sparse_update_and_deactivate(self):
        self.rest.post.return_value = ok({"Customer": {"Id": "58", "Active": False}})
        service = QuickBooksCustomerService(rest_client=self.rest)
        asyncio.run(service.deactivate(self.config, self.credentials, "58", "3"))
        payload = self.rest.post.await_args.args[3]
        assert payload == {"Id": "58", "SyncToken": "3", "sparse": True, "Active": False}

    def test_customer_list_builds_where_clause(self):
        self.rest.query.return_value = ok({"QueryResponse": {"Customer": [{"Id": "1"}]}}, total_results=1)
        service = QuickBooksCustomerService(rest_client=self.rest)
        result = asyncio.run(service.list(self.config, self.credentials, active=True, search_name="O'Brien"))

        assert result.data == [{"Id": "1"}]
        query = self.rest.query.await_args.args[2]
        assert query == "SELECT * FROM Customer WHERE Active = true AND DisplayName LIKE '%O\\'Brien%'"

    def test_failure_passes_through(self):
        self.rest.get.return_value = ConnectorResult.failure(code="610", message="Object Not Found")
        service = QuickBooksItemService(rest_client=self.rest)
        result = asyncio.run(service.get_by_id(self.config, self.credentials, "404"))
        assert not result.success
        assert result.error.code == "610"

    def test_rest_client_exception_becomes_error_result(self):
        self.rest.get.side_effect = httpx.ConnectError("refused")
        service = QuickBooksItemService(rest_client=self.rest)
        result = asyncio.run(service.get_by_id(self.config, self.credentials, "1"))
        assert result.error.code == "NETWORK_ERROR"
        assert result.error.retryable

    def test_low_stock_items_query(self):
        self.rest.query.return_value = ok({"QueryResponse": {}})
        service = QuickBooksItemService(rest_client=self.rest)
        result = asyncio.run(service.get_low_stock_items(self.config, self.credentials))

        assert result.data == []
        query, options = self.rest.query.await_args.args[2:4]
        assert query == "SELECT * FROM Item WHERE Type = 'Inventory' AND Active = true AND QtyOnHand < 10"
        assert options.max_results == 100

    def test_sku_lookup_returns_first_match(self):
        self.rest.query.return_value = ok({"QueryResponse": {"Item": [{"Id": "3", "Sku": "W-1"}]}})
        service = QuickBooksItemService(rest_client=self.rest)
        result = asyncio.run(service.get_by_sku(self.config, self.credentials, "W-1"))
        assert result.data == {"Id": "3", "Sku": "W-1"}
        assert self.rest.query.await_args.args[3].max_results == 1

    def test_invoice_void_and_overdue_query(self):
        self.rest.post.return_value = ok({"Invoice": {"Id": "130", "Balance": 0}})
        self.rest.query.return_value = ok({"QueryResponse": {"Invoice": []}})
        service = QuickBooksInvoiceService(rest_client=self.rest, today=lambda: date(2026, 1, 15))

        asyncio.run(service.void(self.config, self.credentials, "130", "2"))
        args, kwargs = self.rest.post.await_args
        assert args[3] == {"Id": "130", "SyncToken": "2"}
        assert kwargs["params"] == {"operation": "void"}

        asyncio.run(service.get_overdue(self.config, self.credentials, customer_id="58"))
        query, options = self.rest.query.await_args.args[2:4]
        assert query == ("SELECT * FROM Invoice WHERE Balance > 0 AND DueDate < '2026-01-15' "
                         "AND CustomerRef = '58'")
        assert options.order_by == "DueDate"

    def test_invoice_create_payload(self):
        self.rest.post.return_value = ok({"Invoice": {"Id": "131"}})
        service = QuickBooksInvoiceService(rest_client=self.rest)
        data = QuickBooksInvoiceInput(
            customer_id="58",
            lines=[QuickBooksLineInput(item_id="5", quantity=1, unit_price=100)],
            due_date="2026-02-14",
            bill_email="ap@acme.com",
        )
        asyncio.run(service.create(self.config, self.credentials, data))
        payload = self.rest.post.await_args.args[3]
        assert payload["CustomerRef"] == {"value": "58"}
        assert payload["Line"][0]["Amount"] == 100
        assert payload["DueDate"] == "2026-02-14"
        assert payload["BillEmail"] == {"Address": "ap@acme.com"}

    def test_payment_payload_splits_unspecified_amounts(self):
        payload = build_payment_payload(QuickBooksPaymentInput(
            customer_id="58",
            total_amt=100,
            invoices=[PaymentInvoiceLink(invoice_id="130", amount=30), PaymentInvoiceLink(invoice_id="131")],
        ))
        assert payload["CustomerRef"] == {"value": "58"}
        assert [line["Amount"] for line in payload["Line"]] == [30, 50]
        assert payload["Line"][1]["LinkedTxn"] == [{"TxnId": "131", "TxnType": "Invoice"}]

    def test_payments_for_invoice_are_filtered_locally(self):
        payments = [
            {"Id": "1", "Line": [{"Amount": 10, "LinkedTxn": [{"TxnId": "130", "TxnType": "Invoice"}]}]},
            {"Id": "2", "Line": [{"Amount": 10, "LinkedTxn": [{"TxnId": "999", "TxnType": "Invoice"}]}]},
            {"Id": "3"},
        ]
        self.rest.query.return_value = ok({"QueryResponse": {"Payment": payments}})
        service = QuickBooksPaymentService(rest_client=self.rest)
        result = asyncio.run(service.get_for_invoice(self.config, self.credentials, "130"))
        assert [p["Id"] for p in result.data] == ["1"]
        assert self.rest.query.await_args.args[2] == "SELECT * FROM Payment"


# ─────────────────────────────────────────────────────────────
# CANONICAL MAPPING
# ─────────────────────────────────────────────────────────────

from app.connectors.quickbooks import mapper


class TestQuickBooksMapper:

    def test_customer_to_canonical(self):
        customer = mapper.customer_to_canonical({
            "Id": "58",
            "SyncToken": "2",
            "DisplayName": "Acme Corp",
            "CompanyName": "Acme Corp",
            "PrimaryEmailAddr": {"Address": "ap@acme.com"},
            "Active": True,
            "Balance": 150.0,
            "BillAddr": {"Line1": "1 Main St", "City": "Austin", "CountrySubDivisionCode": "TX",
                         "PostalCode": "78701", "Country": "US"},
            "MetaData": {"CreateTime": "2026-01-01T00:00:00-08:00"},
        })
        assert customer.id == "58"
        assert customer.source_system == "quickbooks_online"
        assert customer.type == "business"
        assert customer.status == "active"
        assert customer.currency == "USD"
        assert customer.addresses[0].type == "billing"
        assert customer.addresses[0].state == "TX"
        assert customer.metadata["sync_token"] == "2"
        assert customer.created_at == "2026-01-01T00:00:00-08:00"

    def test_individual_customer_name_and_inactive(self):
        customer = mapper.customer_to_canonical({"Id": "7", "GivenName": "Ana", "FamilyName": "Ruiz", "Active": False})
        assert customer.name == "Ana Ruiz"
        assert customer.type == "individual"
        assert customer.status == "inactive"

    def test_invoice_to_canonical(self):
        invoice = mapper.invoice_to_canonical({
            "Id": "130",
            "DocNumber": "1037",
            "CustomerRef": {"value": "58", "name": "Acme Corp"},
            "TotalAmt": 200,
            "Balance": 50,
            "TxnTaxDetail": {"TotalTax": 10},
            "Line": [
                {"Id": "1", "LineNum": 1, "Amount": 200, "DetailType": "SalesItemLineDetail",
                 "SalesItemLineDetail": {"ItemRef": {"value": "5", "name": "Widget"}, "Qty": 4, "UnitPrice": 50}},
                {"Amount": 10, "DetailType": "DiscountLineDetail"},
                {"Amount": 190, "DetailType": "SubTotalLineDetail"},
            ],
        })
        assert invoice.invoice_number == "1037"
        assert invoice.customer_name == "Acme Corp"
        assert invoice.status == "partial"
        assert invoice.amount_paid == 150
        assert invoice.discount == 10
        assert invoice.tax == 10
        assert len(invoice.items) == 1
        assert invoice.items[0].sku == "Widget"
        assert invoice.items[0].unit == "EA"

    def test_invoice_status(self):
        assert mapper.map_invoice_status({"TotalAmt": 100, "Balance": 0}) == "paid"
        assert mapper.map_invoice_status({"TotalAmt": 100, "Balance": 100}) == "unpaid"

    def test_sales_receipt_is_completed_order(self):
        order = mapper.sales_receipt_to_canonical({"Id": "9", "TotalAmt": 30, "PaymentMethodRef": {"name": "Cash"}})
        assert order.status == "completed"
        assert order.order_number == "9"
        assert order.metadata["payment_method"] == "Cash"

    def test_payment_to_canonical(self):
        payment = mapper.payment_to_canonical({
            "Id": "200",
            "TotalAmt": 80,
            "UnappliedAmt": 30,
            "CustomerRef": {"value": "58"},
            "Line": [{"Amount": 50, "LinkedTxn": [{"TxnId": "130", "TxnType": "Invoice"}]}],
        })
        assert payment.status == "partial"
        assert payment.applied_invoices[0].invoice_id == "130"
        assert payment.applied_invoices[0].amount == 50
        assert mapper.map_payment_status({"TotalAmt": 80, "UnappliedAmt": 80}) == "unapplied"
        assert mapper.map_payment_status({"TotalAmt": 80, "UnappliedAmt": 0}) == "applied"

    def test_item_type_mapping(self):
        assert mapper.map_item_type("NonInventory") == "non_inventory"
        assert mapper.map_item_type(None) == "product"

        stock = mapper.product_from_canonical(CanonicalProduct(
            id="", source_system="shop", name="Widget", sku="W-1", type="inventory",
            price=9.5, is_stock_item=True, quantity_on_hand=4,
        ))
        assert stock.type == QuickBooksItemType.INVENTORY
        assert stock.track_qty_on_hand is True
        assert stock.qty_on_hand == 4

        generic = mapper.product_from_canonical(CanonicalProduct(
            id="", source_system="shop", name="Gadget", type="product", is_stock_item=False, quantity_on_hand=4,
        ))
        assert generic.type == QuickBooksItemType.NON_INVENTORY
        assert generic.qty_on_hand is None

    def test_customer_from_canonical(self):
        data = mapper.customer_from_canonical(CanonicalCustomer(
            id="", source_system="shop", name="Acme Corp", type="business", email="",
            addresses=[CanonicalAddress(type="shipping", line1="2 Dock Rd", city="Austin")],
        ))
        assert data.display_name == "Acme Corp"
        assert data.company_name == "Acme Corp"
        assert data.email is None
        assert data.billing_address is None
        assert data.shipping_address.line1 == "2 Dock Rd"


# ─────────────────────────────────────────────────────────────
# CONNECTOR
# ─────────────────────────────────────────────────────────────

from app.connectors.quickbooks.connector import QuickBooksConnector


def mock_entity_service(*methods):
    service = MagicMock()
    for method in methods:
        setattr(service, method, AsyncMock())
    return service


class TestQuickBooksConnector:

    def setup_method(self):
        self.auth = QuickBooksAuthService(clock=fixed_clock)
        self.auth.test_authentication = AsyncMock(return_value=(True, None))
        self.customers = mock_entity_service("create", "get_by_id", "list")
        self.invoices = mock_entity_service("get_by_id", "void")
        self.connector = QuickBooksConnector(auth=self.auth, customers=self.customers, invoices=self.invoices)

    def test_operations_require_initialize(self):
        result = asyncio.run(self.connector.get_customer("1"))
        assert result.error.code == "NOT_INITIALIZED"
        self.customers.get_by_id.assert_not_awaited()

    def test_initialize_rejects_invalid_credentials(self):
        with pytest.raises(QuickBooksAuthError) as exc_info:
            self.connector.initialize(make_config(realm_id=""), make_credentials())
        assert exc_info.value.status_code == 400
        assert not self.connector.initialized

    def test_test_connection(self):
        self.connector.initialize(make_config(), make_credentials())
        result = asyncio.run(self.connector.test_connection())
        assert result.success
        assert result.data["connected"] is True

        self.auth.test_authentication = AsyncMock(return_value=(False, "Unexpected response status: 401"))
        result = asyncio.run(self.connector.test_connection())
        assert result.error.code == "CONNECTION_FAILED"
        assert result.error.retryable

    def test_create_customer_from_canonical(self):
        self.connector.initialize(make_config(), make_credentials())
        self.customers.create.return_value = ok({"Id": "58", "DisplayName": "Acme Corp"})
        canonical = CanonicalCustomer(id="", source_system="shop", name="Acme Corp", email="ap@acme.com")

        result = asyncio.run(self.connector.create_customer(canonical))

        sent = self.customers.create.await_args.args[2]
        assert isinstance(sent, QuickBooksCustomerInput)
        assert sent.email == "ap@acme.com"
        assert isinstance(result.data, CanonicalCustomer)
        assert result.data.id == "58"

    def test_list_returns_page(self):
        self.connector.initialize(make_config(), make_credentials())
        self.customers.list.return_value = ok([{"Id": "1", "DisplayName": "A"}], total_results=3, has_more=True)
        result = asyncio.run(self.connector.list_customers(active=True))

        assert isinstance(result.data, ListPage)
        assert result.data.total == 3
        assert result.data.has_more is True
        assert result.data.items[0].name == "A"
        assert self.customers.list.await_args.kwargs == {"active": True}

    def test_failures_are_not_mapped(self):
        self.connector.initialize(make_config(), make_credentials())
        failure = ConnectorResult.failure(code="6240", message="Duplicate")
        self.invoices.void.return_value = failure
        assert asyncio.run(self.connector.void_invoice("130", "2")) is failure

    def test_metadata(self):
        metadata = self.connector.get_metadata()
        assert metadata.id == "quickbooks-online"
        assert "void_invoice" in metadata.supported_operations
