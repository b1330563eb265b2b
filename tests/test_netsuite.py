"""
B2B-INTEGRATIONS — NetSuite Connector Tests
TBA signing, REST client retries, error catalogue, record services,
SuiteQL builders, canonical mapping and capability dispatch.

Run: pytest tests/ -v
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from app.schemas.connectors import (
    CanonicalAddress,
    CanonicalCustomer,
    CanonicalLineItem,
    CanonicalOrder,
    NetSuiteAddressInput,
    NetSuiteConnectionConfig,
    NetSuiteCredentials,
    NetSuiteCustomerInput,
    NetSuiteInventoryCheckRequest,
    NetSuiteOrderLineInput,
    NetSuitePagination,
    NetSuiteSalesOrderInput,
    NetSuiteSalesOrderUpdate,
    NetSuiteSearchFilter,
    NetSuiteSearchParams,
)

ACCOUNT = "1234567_SB1"
BASE_URL = "https://1234567-sb1.suitetalk.api.netsuite.com"


def make_credentials(**overrides):
    values = {
        "consumer_key": "ck",
        "consumer_secret": "cs",
        "token_id": "tk",
        "token_secret": "ts",
        "realm": ACCOUNT,
    }
    values.update(overrides)
    return NetSuiteCredentials(**values)


def mock_http_client(*responses, error=None):
    client = MagicMock()
    client.request = AsyncMock(side_effect=error if error else list(responses))
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = client
    factory.return_value.__aexit__.return_value = False
    return factory, client


def ns_response(status_code=200, json_data=None, headers=None):
    response = MagicMock(spec=httpx.Response)
    response.status_code = status_code
    response.is_success = 200 <= status_code < 300
    response.content = b"{}" if json_data is not None else b""
    response.text = ""
    response.headers = headers or {}
    response.json.return_value = json_data
    return response


def mock_rest_client():
    rest = MagicMock()
    for method in ("get", "post", "patch", "delete", "execute_suiteql", "test_connection"):
        setattr(rest, method, AsyncMock())
    return rest


# ─────────────────────────────────────────────────────────────
# TOKEN-BASED AUTHENTICATION
# ─────────────────────────────────────────────────────────────

from app.connectors.netsuite.auth import NetSuiteAuthError, NetSuiteAuthService, percent_encode


class TestNetSuiteAuth:

    def setup_method(self):
        self.auth = NetSuiteAuthService(nonce_factory=lambda: "fixednonce", clock=lambda: 1700000000.7)
        self.auth.set_credentials(make_credentials())

    def test_percent_encode(self):
        assert percent_encode("a b&c~/") == "a%20b%26c~%2F"

    def test_base_string_merges_and_sorts_query_params(self):
        base = NetSuiteAuthService.build_base_string(
            "get",
            "https://ACME.suitetalk.api.netsuite.com/services/rest/record/v1/customer?offset=0&limit=5",
            {"oauth_nonce": "n", "oauth_timestamp": "1"},
        )
        assert base == (
            "GET&https%3A%2F%2Facme.suitetalk.api.netsuite.com%2Fservices%2Frest%2Frecord%2Fv1%2Fcustomer"
            "&limit%3D5%26oauth_nonce%3Dn%26oauth_timestamp%3D1%26offset%3D0"
        )

    def test_authorization_header(self):
        url = f"{BASE_URL}/services/rest/record/v1/customer/42"
        header = self.auth.generate_authorization_header("GET", url)

        assert header.startswith(f'OAuth realm="{ACCOUNT}", ')
        assert 'oauth_consumer_key="ck"' in header
        assert 'oauth_token="tk"' in header
        assert 'oauth_nonce="fixednonce"' in header
        assert 'oauth_timestamp="1700000000"' in header
        assert 'oauth_signature_method="HMAC-SHA256"' in header
        assert 'oauth_version="1.0"' in header

        base = NetSuiteAuthService.build_base_string("GET", url, {
            "oauth_consumer_key": "ck",
            "oauth_token": "tk",
            "oauth_nonce": "fixednonce",
            "oauth_timestamp": "1700000000",
            "oauth_signature_method": "HMAC-SHA256",
            "oauth_version": "1.0",
        })
        signature = NetSuiteAuthService.sign(base, "cs", "ts")
        assert f'oauth_signature="{percent_encode(signature)}"' in header

    def test_signature_depends_on_both_secrets(self):
        base = "GET&x&y"
        assert NetSuiteAuthService.sign(base, "cs", "ts") != NetSuiteAuthService.sign(base, "cs", "other")

    def test_header_requires_credentials(self):
        auth = NetSuiteAuthService()
        assert not auth.has_credentials()
        with pytest.raises(NetSuiteAuthError):
            auth.generate_authorization_header("GET", BASE_URL)

    def test_validate_credentials(self):
        valid, errors = NetSuiteAuthService.validate_credentials(make_credentials())
        assert valid and errors == []

        valid, errors = NetSuiteAuthService.validate_credentials(NetSuiteCredentials())
        assert not valid
        assert len(errors) == 5
        assert "Realm (account ID) is required" in errors


# ─────────────────────────────────────────────────────────────
# REST CLIENT
# ─────────────────────────────────────────────────────────────

from app.connectors.netsuite.errors import NetSuiteApiError
from app.connectors.netsuite.rest_client import NetSuiteRestClient, calculate_backoff, transform_error


class TestNetSuiteRestClient:

    def setup_method(self):
        auth = NetSuiteAuthService(nonce_factory=lambda: "n", clock=lambda: 1700000000)
        auth.set_credentials(make_credentials())
        self.sleep = AsyncMock()
        self.rest = NetSuiteRestClient(auth=auth, sleep=self.sleep)
        self.rest.configure(NetSuiteConnectionConfig(account_id=ACCOUNT, retry_attempts=2))

    def test_urls(self):
        assert self.rest.base_url == BASE_URL
        assert self.rest.build_url("/customer/1") == f"{BASE_URL}/services/rest/record/v1/customer/1"
        assert self.rest.build_suiteql_url() == f"{BASE_URL}/services/rest/query/v1/suiteql"

        custom = NetSuiteRestClient()
        custom.configure(NetSuiteConnectionConfig(account_id=ACCOUNT, base_url="https://proxy.local"))
        assert custom.build_url("item/3") == "https://proxy.local/services/rest/record/v1/item/3"

    def test_get_with_params_and_pagination(self):
        factory, client = mock_http_client(ns_response(200, {"id": "42"}))
        with patch("httpx.AsyncClient", factory):
            record = asyncio.run(self.rest.get("customer/42", {"expandSubResources": True},
                                               NetSuitePagination(offset=10, limit=5)))

        assert record == {"id": "42"}
        method, url = client.request.await_args.args
        headers = client.request.await_args.kwargs["headers"]
        assert method == "GET"
        assert parse_qs(urlparse(url).query) == {"expandSubResources": ["true"], "offset": ["10"], "limit": ["5"]}
        assert headers["Authorization"].startswith(f'OAuth realm="{ACCOUNT}"')

    def test_suiteql_is_transient_post(self):
        factory, client = mock_http_client(ns_response(200, {"items": [{"test": 1}], "hasMore": False}))
        with patch("httpx.AsyncClient", factory):
            response = asyncio.run(self.rest.execute_suiteql("SELECT 1 AS test", NetSuitePagination(limit=1)))

        assert response["items"] == [{"test": 1}]
        method, url = client.request.await_args.args
        kwargs = client.request.await_args.kwargs
        assert method == "POST"
        assert url == f"{BASE_URL}/services/rest/query/v1/suiteql?limit=1"
        assert kwargs["json"] == {"q": "SELECT 1 AS test"}
        assert kwargs["headers"]["Prefer"] == "transient"

    def test_create_returns_id_from_location(self):
        location = f"{BASE_URL}/services/rest/record/v1/customer/987"
        factory, _ = mock_http_client(ns_response(204, headers={"Location": location}))
        with patch("httpx.AsyncClient", factory):
            assert asyncio.run(self.rest.post("customer", {"companyName": "Acme"})) == {"id": "987"}

    def test_server_error_is_retried(self):
        factory, client = mock_http_client(ns_response(503), ns_response(200, {"id": "1"}))
        with patch("httpx.AsyncClient", factory):
            assert asyncio.run(self.rest.get("customer/1")) == {"id": "1"}
        assert client.request.await_count == 2
        self.sleep.assert_awaited_once()

    def test_rate_limit_exhausts_attempts(self):
        factory, client = mock_http_client(
            ns_response(429, {"title": "Too Many Requests"}),
            ns_response(429, {"title": "Too Many Requests"}),
        )
        with patch("httpx.AsyncClient", factory):
            with pytest.raises(NetSuiteApiError) as exc_info:
                asyncio.run(self.rest.get("customer/1"))
        assert exc_info.value.status_code == 429
        assert exc_info.value.message == "NetSuite Error: Too Many Requests"
        assert client.request.await_count == 2

    def test_client_error_is_not_retried(self):
        body = {"o:errorCode": "INVALID_FLD_VALUE", "o:errorDetails": [{"detail": "Invalid email"}]}
        factory, client = mock_http_client(ns_response(400, body))
        with patch("httpx.AsyncClient", factory):
            with pytest.raises(NetSuiteApiError) as exc_info:
                asyncio.run(self.rest.patch("customer/1", {"email": "nope"}))
        assert exc_info.value.error_code == "INVALID_FLD_VALUE"
        assert exc_info.value.message == "NetSuite Error [INVALID_FLD_VALUE]: Invalid email"
        assert client.request.await_count == 1
        self.sleep.assert_not_awaited()

    def test_timeout_retried_then_raised(self):
        factory, client = mock_http_client(error=httpx.ReadTimeout("slow"))
        with patch("httpx.AsyncClient", factory):
            with pytest.raises(NetSuiteApiError) as exc_info:
                asyncio.run(self.rest.get("customer/1"))
        assert "timed out" in exc_info.value.message
        assert client.request.await_count == 2

    def test_unconfigured_client_raises(self):
        with pytest.raises(NetSuiteApiError):
            asyncio.run(NetSuiteRestClient().get("customer/1"))

    def test_connection_check_reports_failure(self):
        factory, _ = mock_http_client(ns_response(401, {"title": "Unauthorized", "detail": "Invalid login"}))
        with patch("httpx.AsyncClient", factory):
            result = asyncio.run(self.rest.test_connection())
        assert result["success"] is False
        assert result["message"] == "NetSuite Error: Unauthorized - Invalid login"

    def test_backoff_bounds(self):
        assert 1000 <= calculate_backoff(1) < 2000
        assert 4000 <= calculate_backoff(3) < 5000
        assert 30000 <= calculate_backoff(10) < 31000

    def test_transform_error_status_detail(self):
        body = {"status": {"statusDetail": [{"code": "RCRD_DSNT_EXIST", "message": "That record does not exist."}]}}
        error = transform_error(404, body, "")
        assert error.message == "NetSuite Error [RCRD_DSNT_EXIST]: That record does not exist."
        assert error.error_code == "RCRD_DSNT_EXIST"
        assert transform_error(500, None, "boom").message == "NetSuite Error: boom"


# ─────────────────────────────────────────────────────────────
# ERROR CATALOGUE
# ─────────────────────────────────────────────────────────────

from app.connectors.netsuite.errors import (
    NetSuiteErrorCategory,
    extract_error_code,
    get_retry_delay,
    get_user_friendly_message,
    is_retryable,
    parse_error,
)


class TestNetSuiteErrors:

    def test_known_code_from_api_error(self):
        error = NetSuiteApiError("NetSuite Error [RCRD_DSNT_EXIST]: gone", status_code=404,
                                 error_code="RCRD_DSNT_EXIST")
        parsed = parse_error(error)
        assert parsed.code == "RCRD_DSNT_EXIST"
        assert parsed.category == NetSuiteErrorCategory.NOT_FOUND
        assert parsed.retryable is False
        assert parsed.suggested_action == "Verify the resource exists and check the ID"

    def test_status_code_fallback(self):
        parsed = parse_error(NetSuiteApiError("NetSuite Error: Too Many Requests", status_code=429))
        assert parsed.code == "HTTP_429"
        assert parsed.category == NetSuiteErrorCategory.RATE_LIMIT
        assert parsed.retryable
        assert parsed.details == ["NetSuite Error: Too Many Requests"]

        assert parse_error(NetSuiteApiError("x", status_code=503)).category == NetSuiteErrorCategory.SERVER_ERROR
        assert parse_error(NetSuiteApiError("x", status_code=418)).category == NetSuiteErrorCategory.UNKNOWN

    def test_code_extracted_from_message(self):
        assert extract_error_code("NetSuite Error [DUP_RCRD]: exists") == "DUP_RCRD"
        assert extract_error_code("Error Code: SERVER_BUSY please retry") == "SERVER_BUSY"
        assert extract_error_code("plain failure") is None

        parsed = parse_error(RuntimeError("Error Code: SERVER_BUSY please retry"))
        assert parsed.category == NetSuiteErrorCategory.SERVER_ERROR
        assert parsed.retryable

    def test_network_errors(self):
        parsed = parse_error(httpx.ConnectTimeout("connect timed out"))
        assert parsed.code == "NETWORK_ERROR"
        assert parsed.category == NetSuiteErrorCategory.NETWORK
        assert is_retryable(httpx.ConnectError("refused"))

    def test_raw_bodies(self):
        parsed = parse_error({"status": {"statusDetail": [{"code": "DUP_RCRD", "message": "dup"}]}})
        assert parsed.code == "DUP_RCRD"
        assert parsed.category == NetSuiteErrorCategory.VALIDATION
        assert parsed.message == "dup"

        parsed = parse_error({"o:errorCode": "INVALID_LOGIN_CREDENTIALS"})
        assert parsed.category == NetSuiteErrorCategory.AUTHENTICATION
        assert parsed.message == "Invalid login credentials"

        assert parse_error("something odd").code == "UNKNOWN_ERROR"
        assert parse_error(None).message == "An unknown error occurred"

    def test_retry_delay(self):
        assert get_retry_delay(NetSuiteErrorCategory.RATE_LIMIT, 1) == 10000
        assert get_retry_delay(NetSuiteErrorCategory.RATE_LIMIT, 4) == 60000
        assert get_retry_delay(NetSuiteErrorCategory.SERVER_ERROR, 6) == 30000
        assert get_retry_delay(NetSuiteErrorCategory.NETWORK, 5) == 10000

    def test_user_friendly_message(self):
        parsed = parse_error({"o:errorCode": "MISSING_REQD_FLD", "title": "Missing field: entity"})
        assert get_user_friendly_message(parsed) == "The request contains invalid data: Missing field: entity"


# ─────────────────────────────────────────────────────────────
# RECORD SERVICES
# ─────────────────────────────────────────────────────────────

from app.connectors.netsuite.base import build_address, sql_literal
from app.connectors.netsuite.customer_service import (
    NetSuiteCustomerService,
    build_customer_payload,
    build_customer_update,
)
from app.connectors.netsuite.inventory_service import NetSuiteInventoryService
from app.connectors.netsuite.invoice_service import NetSuiteInvoiceService
from app.connectors.netsuite.item_service import NetSuiteItemService
from app.connectors.netsuite.sales_order_service import (
    NetSuiteSalesOrderService,
    build_sales_order_payload,
    build_sales_order_update,
)


class TestPayloadBuilders:

    def test_sql_literal_escapes_quotes(self):
        assert sql_literal("O'Neil") == "'O''Neil'"
        assert sql_literal(42) == "'42'"

    def test_build_address(self):
        address = NetSuiteAddressInput(addr1="1 Main St", city="Austin", country="US")
        assert build_address(address) == {"addr1": "1 Main St", "city": "Austin", "country": {"id": "US"}}

    def test_customer_payload(self):
        payload = build_customer_payload(NetSuiteCustomerInput(
            company_name="Acme Corp",
            is_person=False,
            email="ap@acme.com",
            external_id="ORG-1",
            subsidiary="1",
            addresses=[NetSuiteAddressInput(label="HQ", default_billing=True, addr1="1 Main St")],
            custom_fields={"custentity_tier": "gold"},
        ))
        assert payload["isPerson"] is False
        assert payload["companyName"] == "Acme Corp"
        assert payload["custentity_external_id"] == payload["custentity_b2b_org_id"] == "ORG-1"
        assert payload["subsidiary"] == {"id": "1"}
        assert payload["addressbook"]["items"][0] == {
            "label": "HQ",
            "defaultShipping": False,
            "defaultBilling": True,
            "addressBookAddress": {"addr1": "1 Main St"},
        }
        assert payload["custentity_tier"] == "gold"

    def test_customer_update_sends_only_explicit_fields(self):
        update = build_customer_update(NetSuiteCustomerInput(email="new@acme.com", phone=None))
        assert update == {"email": "new@acme.com", "phone": None}

    def test_sales_order_payload(self):
        payload = build_sales_order_payload(NetSuiteSalesOrderInput(
            customer_id="42",
            external_id="PO-9",
            items=[
                NetSuiteOrderLineInput(item_id="5", quantity=2, rate=10),
                NetSuiteOrderLineInput(item_id="6", quantity=1, location="3"),
            ],
            shipping_address=NetSuiteAddressInput(addr1="2 Dock Rd", zip="78701"),
        ))
        assert payload["entity"] == {"id": "42"}
        assert payload["custbody_b2b_order_id"] == "PO-9"
        assert payload["shippingAddress"] == {"addr1": "2 Dock Rd", "zip": "78701"}
        assert payload["item"]["items"] == [
            {"lineNumber": 1, "item": {"id": "5"}, "quantity": 2, "rate": 10},
            {"lineNumber": 2, "item": {"id": "6"}, "quantity": 1, "location": {"id": "3"}},
        ]

    def test_sales_order_update(self):
        assert build_sales_order_update(NetSuiteSalesOrderUpdate(ship_method="7")) == {"shipMethod": {"id": "7"}}
        assert build_sales_order_update(NetSuiteSalesOrderUpdate(memo=None)) == {"memo": None}


class TestRecordServices:

    def setup_method(self):
        self.rest = mock_rest_client()

    def test_lookup_by_external_id_fetches_full_record(self):
        self.rest.execute_suiteql.return_value = {"items": [{"id": 42}]}
        self.rest.get.return_value = {"id": "42", "companyName": "Acme"}
        service = NetSuiteCustomerService(self.rest)

        customer = asyncio.run(service.get_by_external_id("ORG-1"))

        assert customer["companyName"] == "Acme"
        query, pagination = self.rest.execute_suiteql.await_args.args
        assert "custentity_external_id = 'ORG-1'" in query
        assert pagination.limit == 1
        self.rest.get.assert_awaited_once_with("customer/42", {"expandSubResources": True})

    def test_lookup_failure_yields_none(self):
        self.rest.execute_suiteql.side_effect = NetSuiteApiError("NetSuite Error: boom", status_code=500)
        service = NetSuiteCustomerService(self.rest)
        assert asyncio.run(service.get_by_email("ap@acme.com")) is None

        self.rest.execute_suiteql.side_effect = None
        self.rest.execute_suiteql.return_value = {"items": []}
        assert asyncio.run(service.get_by_email("ap@acme.com")) is None
        self.rest.get.assert_not_awaited()

    def test_customer_list_query(self):
        self.rest.execute_suiteql.return_value = {"items": []}
        service = NetSuiteCustomerService(self.rest)
        asyncio.run(service.list(search_term="O'Neil", subsidiary="2"))

        query = self.rest.execute_suiteql.await_args.args[0]
        assert "isinactive = 'F'" in query
        assert "subsidiary = '2'" in query
        assert "LOWER(companyname) LIKE LOWER('%O''Neil%')" in query
        assert query.endswith("ORDER BY companyname, entityid")

    def test_balance_info(self):
        self.rest.get.return_value = {"id": "42", "balance": 250, "creditLimit": 1000, "overdueBalance": 50}
        info = asyncio.run(NetSuiteCustomerService(self.rest).get_balance_info("42"))
        assert info["available_credit"] == 750
        assert info["overdue_balance"] == 50
        assert info["unbilled_orders"] == 0

    def test_sales_order_status_and_close(self):
        self.rest.get.return_value = {"id": "5", "tranId": "SO100",
                                      "status": {"id": "B", "refName": "Pending Fulfillment"}}
        service = NetSuiteSalesOrderService(self.rest)

        status = asyncio.run(service.get_status("5"))
        assert status == {"id": "5", "status": "Pending Fulfillment", "status_id": "B", "tran_id": "SO100"}

        asyncio.run(service.close("5"))
        self.rest.patch.assert_awaited_once_with("salesOrder/5", {"isclosed": True})

    def test_sales_order_list_filters(self):
        self.rest.execute_suiteql.return_value = {"items": []}
        asyncio.run(NetSuiteSalesOrderService(self.rest).list(
            status="pendingBilling", customer_id="42", from_date="2026-01-01",
        ))
        query = self.rest.execute_suiteql.await_args.args[0]
        assert "type = 'SalesOrd'" in query
        assert "status = 'pendingBilling'" in query
        assert "entity = '42'" in query
        assert "trandate >= TO_DATE('2026-01-01', 'YYYY-MM-DD')" in query

    def test_invoices_for_sales_order(self):
        self.rest.execute_suiteql.return_value = {"items": [{"id": 1}, {"id": 2}]}
        self.rest.get.side_effect = lambda endpoint, params=None: {"id": endpoint.rsplit("/", 1)[-1]}
        invoices = asyncio.run(NetSuiteInvoiceService(self.rest).get_by_sales_order("5"))
        assert invoices == [{"id": "1"}, {"id": "2"}]
        assert "createdfrom = '5'" in self.rest.execute_suiteql.await_args.args[0]

    def test_invoice_list_and_aging(self):
        self.rest.execute_suiteql.return_value = {"items": []}
        service = NetSuiteInvoiceService(self.rest)
        asyncio.run(service.list(min_amount=10, has_balance=False))
        query = self.rest.execute_suiteql.await_args.args[0]
        assert "total >= 10.0" in query
        assert "amountremaining = 0" in query

        self.rest.execute_suiteql.return_value = {"items": [{"current": 100, "days1to30": 50, "total": 150}]}
        aging = asyncio.run(service.get_aging_summary("42"))
        assert aging == {
            "current": 100,
            "days_1_to_30": 50,
            "days_31_to_60": 0,
            "days_61_to_90": 0,
            "over_90": 0,
            "total": 150,
        }

    def test_overdue_invoices_query(self):
        self.rest.execute_suiteql.return_value = {"items": []}
        asyncio.run(NetSuiteInvoiceService(self.rest).get_overdue_invoices("42"))
        query = self.rest.execute_suiteql.await_args.args[0]
        assert "amountremaining > 0 AND duedate < SYSDATE AND entity = '42'" in query

    def test_item_lookup_uses_record_type_of_match(self):
        self.rest.execute_suiteql.return_value = {"items": [{"id": 7, "itemtype": "Service"}]}
        self.rest.get.return_value = {"id": "7", "itemType": "Service"}
        item = asyncio.run(NetSuiteItemService(self.rest).get_by_sku("CONSULT-1"))
        assert item["id"] == "7"
        assert "itemid = 'CONSULT-1'" in self.rest.execute_suiteql.await_args.args[0]
        self.rest.get.assert_awaited_once_with("serviceItem/7", {"expandSubResources": True})

    def test_item_list_flags(self):
        self.rest.execute_suiteql.return_value = {"items": []}
        asyncio.run(NetSuiteItemService(self.rest).list(is_taxable=True, is_online=False, include_inactive=True))
        query = self.rest.execute_suiteql.await_args.args[0]
        assert "istaxable = 'T'" in query
        assert "isonline = 'F'" in query
        assert "isinactive" not in query.split("WHERE", 1)[1]

    def test_inventory_without_rows_is_zero(self):
        self.rest.execute_suiteql.return_value = {"items": []}
        status = asyncio.run(NetSuiteInventoryService(self.rest).check_availability(
            NetSuiteInventoryCheckRequest(item_id="5", location_id="3"),
        ))
        assert status["item"] == {"id": "5"}
        assert status["location"] == {"id": "3"}
        assert status["quantity_on_hand"] == 0
        assert status["quantity_back_ordered"] == 0

    def test_inventory_check(self):
        self.rest.execute_suiteql.return_value = {"items": [{
            "itemid": 5, "locationid": "3", "quantityonhand": 12, "quantityavailable": 9, "averagecost": 4.5,
        }]}
        status = asyncio.run(NetSuiteInventoryService(self.rest).check_availability(
            NetSuiteInventoryCheckRequest(item_id="5", location_id="3"),
        ))
        assert status["item"] == {"id": "5"}
        assert status["quantity_available"] == 9
        assert status["average_cost"] == 4.5
        assert "location.id = '3'" in self.rest.execute_suiteql.await_args.args[0]

    def test_multiple_availability_keeps_every_item(self):
        self.rest.execute_suiteql.return_value = {"items": [{"itemid": 11, "quantityonhand": 4}]}
        result = asyncio.run(NetSuiteInventoryService(self.rest).check_multiple_availability(["11", "12"]))
        assert result["11"]["quantity_on_hand"] == 4
        assert result["12"]["quantity_on_hand"] == 0
        assert "item.id IN ('11', '12')" in self.rest.execute_suiteql.await_args.args[0]

    def test_multiple_availability_empty_input(self):
        assert asyncio.run(NetSuiteInventoryService(self.rest).check_multiple_availability([])) == {}
        self.rest.execute_suiteql.assert_not_awaited()


# ─────────────────────────────────────────────────────────────
# SAVED SEARCHES
# ─────────────────────────────────────────────────────────────

from app.connectors.netsuite.saved_search_service import NetSuiteSavedSearchService, build_condition


class TestSavedSearches:

    def setup_method(self):
        self.rest = mock_rest_client()
        self.rest.execute_suiteql.return_value = {"items": [{"id": "1"}], "totalResults": 40}
        self.service = NetSuiteSavedSearchService(self.rest)

    def test_build_condition(self):
        def condition(operator, value=None):
            return build_condition(NetSuiteSearchFilter(field="email", operator=operator, value=value))

        assert condition("is", "a@b.com") == "email = 'a@b.com'"
        assert condition("greaterthan", 5) == "email > 5"
        assert condition("anyof", ["1", "2"]) == "email IN ('1', '2')"
        assert condition("noneof", "3") == "email NOT IN ('3')"
        assert condition("contains", "acme") == "LOWER(email) LIKE LOWER('%acme%')"
        assert condition("startswith", "ap") == "LOWER(email) LIKE LOWER('ap%')"
        assert condition("isempty") == "email IS NULL"
        assert condition("isnotnull") == "email IS NOT NULL"
        assert condition("whatever", "x") == "email = 'x'"

    def test_saved_search_uses_default_page(self):
        result = asyncio.run(self.service.execute_saved_search("customsearch_open_orders"))
        query, pagination = self.rest.execute_suiteql.await_args.args
        assert query == "SELECT * FROM SAVEDSEARCH('customsearch_open_orders')"
        assert pagination.limit == 100
        assert result.total_results == 40
        assert result.results == [{"id": "1"}]

    def test_ad_hoc_search(self):
        params = NetSuiteSearchParams(
            record_type="customer",
            columns=["id", "email"],
            filters=[NetSuiteSearchFilter(field="balance", operator=">", value=0)],
            page_size=20,
            page_index=2,
        )
        result = asyncio.run(self.service.search(params))
        query, pagination = self.rest.execute_suiteql.await_args.args
        assert query == "SELECT id, email FROM customer WHERE balance > 0"
        assert (pagination.offset, pagination.limit) == (40, 20)
        assert result.page_index == 2
        assert result.page_size == 20

    def test_search_requires_target(self):
        with pytest.raises(ValueError):
            asyncio.run(self.service.search(NetSuiteSearchParams()))

    def test_search_records_booleans(self):
        asyncio.run(self.service.search_records("item", {"isinactive": False, "itemtype": "Service"},
                                                order_by="itemid"))
        query = self.rest.execute_suiteql.await_args.args[0]
        assert query == "SELECT * FROM item WHERE isinactive = 'F' AND itemtype = 'Service' ORDER BY itemid ASC"

    def test_page_index_from_offset(self):
        result = asyncio.run(self.service.execute_query("SELECT id FROM item",
                                                        NetSuitePagination(offset=50, limit=25)))
        assert result.page_index == 2


# ─────────────────────────────────────────────────────────────
# CANONICAL MAPPING
# ─────────────────────────────────────────────────────────────

from app.connectors.netsuite import mapper


class TestNetSuiteMapper:

    def test_customer_to_canonical(self):
        customer = mapper.customer_to_canonical({
            "id": 42,
            "entityId": "CUST-42",
            "companyName": "Acme Corp",
            "isPerson": False,
            "balance": 250,
            "creditLimit": 1000,
            "terms": {"id": "2", "refName": "Net 30"},
            "currency": {"id": "1", "refName": "USD"},
            "custentity_external_id": "ORG-1",
            "addressbook": {"items": [{"addressBookAddress": {"addr1": "1 Main St", "zip": "78701",
                                                              "country": {"id": "US"}}}]},
        })
        assert customer.id == "42"
        assert customer.source_system == "netsuite"
        assert customer.external_id == "ORG-1"
        assert customer.type == "business"
        assert customer.payment_terms == "Net 30"
        assert customer.available_credit == 750
        assert customer.addresses[0].postal_code == "78701"
        assert customer.addresses[0].country == "US"

    def test_person_name_falls_back(self):
        customer = mapper.customer_to_canonical({"id": 1, "isPerson": True, "firstName": "Ana", "lastName": "Ruiz"})
        assert customer.name == "Ana Ruiz"
        assert customer.type == "individual"
        assert mapper.customer_to_canonical({"id": 2, "entityId": "E-2"}).name == "E-2"

    def test_sales_order_lines_fulfillment(self):
        order = mapper.sales_order_to_canonical({
            "id": 5,
            "tranId": "SO100",
            "status": {"id": "B", "refName": "Pending Fulfillment"},
            "entity": {"id": "42", "refName": "Acme Corp"},
            "total": 60,
            "item": [
                {"item": {"id": "5", "refName": "W-1"}, "quantity": 3, "quantityFulfilled": 3, "amount": 30},
                {"item": {"id": "6"}, "quantity": 2, "quantityFulfilled": 0, "isClosed": True},
                {"item": {"id": "7"}, "quantity": 3, "quantityFulfilled": 1},
            ],
        })
        assert order.order_number == "SO100"
        assert order.status == "Pending Fulfillment"
        assert order.status_code == "B"
        assert order.customer_name == "Acme Corp"
        assert [line.line_number for line in order.items] == [1, 2, 3]
        assert [line.is_fulfilled for line in order.items] == [True, True, False]
        assert order.items[0].sku == "W-1"

    def test_invoice_to_canonical(self):
        invoice = mapper.invoice_to_canonical({
            "id": 9,
            "tranId": "INV-9",
            "createdFrom": {"id": "5", "refName": "Sales Order #SO100"},
            "total": 60,
            "amountPaid": 20,
            "amountRemaining": 40,
            "item": {"items": [{"item": {"id": "5"}, "quantity": 1, "rate": 60, "amount": 60}]},
        })
        assert invoice.order_id == "5"
        assert invoice.amount_due == 40
        assert invoice.items[0].is_fulfilled is None
        assert invoice.status == "Unknown"

    def test_item_to_canonical(self):
        item = mapper.item_to_canonical({"id": 3, "itemId": "W-1", "itemType": "InvtPart", "basePrice": 9.5})
        assert item.sku == "W-1"
        assert item.name == "W-1"
        assert item.type == "inventory"
        assert item.is_stock_item is True
        assert mapper.map_item_type("Mystery") == "unknown"

    def test_inventory_to_canonical(self):
        status = mapper.inventory_to_canonical(
            {"item": {"id": "5"}, "location": {"id": "3", "ref_name": "Main"}, "quantity_available": 9},
            as_of="2026-01-15T00:00:00+00:00",
        )
        assert status.product_id == "5"
        assert status.location_name == "Main"
        assert status.quantity_available == 9
        assert status.quantity_on_hand == 0
        assert status.as_of_date == "2026-01-15T00:00:00+00:00"

    def test_customer_from_canonical(self):
        payload = mapper.customer_from_canonical(CanonicalCustomer(
            id="", source_system="shop", name="Acme Corp", type="business", email="ap@acme.com",
            external_id="ORG-1", addresses=[CanonicalAddress(line1="1 Main St", country="US")],
        ))
        assert payload["isPerson"] is False
        assert payload["companyName"] == "Acme Corp"
        assert payload["custentity_external_id"] == "ORG-1"
        assert payload["addressbook"]["items"][0]["addressBookAddress"] == {
            "addr1": "1 Main St", "country": {"id": "US"},
        }

    def test_order_from_canonical(self):
        payload = mapper.order_from_canonical(CanonicalOrder(
            id="", source_system="shop", customer_id="42", external_id="PO-9",
            items=[CanonicalLineItem(line_number=1, product_id="5", quantity=2, unit_price=10)],
            shipping_address=CanonicalAddress(line1="2 Dock Rd", phone="555"),
        ))
        assert payload["entity"] == {"id": "42"}
        assert payload["custbody_external_id"] == "PO-9"
        assert payload["shippingAddress"] == {"addr1": "2 Dock Rd"}
        assert payload["item"]["items"] == [{"lineNumber": 1, "item": {"id": "5"}, "quantity": 2, "rate": 10}]


# ─────────────────────────────────────────────────────────────
# CONNECTOR
# ─────────────────────────────────────────────────────────────

from app.connectors.netsuite.connector import NetSuiteConnector


class TestNetSuiteConnector:

    def setup_method(self):
        self.rest = mock_rest_client()
        self.connector = NetSuiteConnector(auth=NetSuiteAuthService(), rest_client=self.rest)
        self.config = NetSuiteConnectionConfig(account_id=ACCOUNT)

    def initialize(self):
        self.connector.initialize(self.config, make_credentials(realm=""))

    def test_initialize_defaults_realm_to_account(self):
        self.initialize()
        assert self.connector.credentials.realm == ACCOUNT
        self.rest.configure.assert_called_once_with(self.config)

    def test_initialize_rejects_missing_secrets(self):
        with pytest.raises(NetSuiteAuthError) as exc_info:
            self.connector.initialize(self.config, make_credentials(token_secret=""))
        assert exc_info.value.status_code == 400
        assert "Token secret is required" in exc_info.value.message

    def test_unknown_capability_and_not_initialized(self):
        result = asyncio.run(self.connector.execute_capability("order.teleport", {}))
        assert result.error.code == "UNKNOWN_CAPABILITY"

        result = asyncio.run(self.connector.execute_capability("customer.get", {"id": "42"}))
        assert result.error.code == "NOT_INITIALIZED"

    def test_create_customer_refetches_record(self):
        self.initialize()
        self.rest.post.return_value = {"id": "42"}
        self.rest.get.return_value = {"id": 42, "companyName": "Acme Corp", "email": "ap@acme.com"}

        result = asyncio.run(self.connector.execute_capability(
            "customer.create", {"company_name": "Acme Corp", "email": "ap@acme.com"},
        ))

        assert result.success
        assert result.data.id == "42"
        assert result.data.name == "Acme Corp"
        assert self.rest.post.await_args.args[0] == "customer"
        self.rest.get.assert_awaited_once_with("customer/42", {"expandSubResources": True})

    def test_list_customers(self):
        self.initialize()
        self.rest.execute_suiteql.return_value = {
            "items": [{"id": 1, "companyName": "A"}, {"id": 2, "companyName": "B"}],
            "totalResults": 12,
            "hasMore": True,
        }
        result = asyncio.run(self.connector.execute_capability(
            "customer.list", {"filters": {"search_term": "a"}, "pagination": {"offset": 0, "limit": 2}},
        ))
        assert [c.name for c in result.data["items"]] == ["A", "B"]
        assert result.data["total_results"] == 12
        assert result.data["has_more"] is True
        assert self.rest.execute_suiteql.await_args.args[1].limit == 2

    def test_netsuite_failure_becomes_classified_result(self):
        self.initialize()
        self.rest.get.side_effect = NetSuiteApiError(
            "NetSuite Error [RCRD_DSNT_EXIST]: That record does not exist.",
            status_code=404, error_code="RCRD_DSNT_EXIST",
        )
        result = asyncio.run(self.connector.execute_capability("salesOrder.get", {"id": "999"}))
        assert not result.success
        assert result.error.code == "RCRD_DSNT_EXIST"
        assert result.error.retryable is False
        assert result.error.details["category"] == "NOT_FOUND"

    def test_inventory_check_multiple(self):
        self.initialize()
        self.rest.execute_suiteql.return_value = {"items": [{"itemid": 11, "quantityavailable": 3}]}
        result = asyncio.run(self.connector.execute_capability(
            "inventory.checkMultiple", {"item_ids": ["11", "12"]},
        ))
        items = {entry["item_id"]: entry for entry in result.data["items"]}
        assert items["11"]["quantity_available"] == 3
        assert items["12"]["quantity_available"] == 0

    def test_close_sales_order(self):
        self.initialize()
        self.rest.get.return_value = {"id": "5", "status": {"id": "H", "refName": "Closed"}}
        result = asyncio.run(self.connector.execute_capability("salesOrder.close", {"id": "5"}))
        self.rest.patch.assert_awaited_once_with("salesOrder/5", {"isclosed": True})
        assert result.data["status"] == "Closed"

    def test_test_connection(self):
        result = asyncio.run(self.connector.test_connection())
        assert result.success is False

        self.initialize()
        self.rest.test_connection.return_value = {"success": True, "message": "Successfully connected to NetSuite",
                                                  "latency_ms": 80}
        result = asyncio.run(self.connector.test_connection())
        assert result.success
        assert result.latency_ms == 80
        assert "invoice.overdue" in result.capabilities

    def test_capabilities_and_destroy(self):
        capabilities = self.connector.get_capabilities()
        assert {c["code"] for c in capabilities} == set(self.connector.get_metadata().supported_operations)
        assert len(self.connector.get_credential_requirements()) == 5

        self.initialize()
        self.connector.destroy()
        assert not self.connector.auth.has_credentials()
        assert self.connector.config is None
