"""
B2B-INTEGRATIONS Core Configuration
PAC / SAT endpoints, ERP connector defaults and application settings.
"""

from enum import Enum

from pydantic_settings import BaseSettings


class PacName(str, Enum):
    FINKOK = "finkok"
    FACTURAPI = "facturapi"
    SWSAPIEN = "swsapien"
    MOCK = "mock"


class Settings(BaseSettings):
    app_name: str = "B2B-INTEGRATIONS"
    app_version: str = "1.0.0"
    debug: bool = True
    log_level: str = "INFO"

    # CFDI / PAC
    cfdi_pac_name: str = PacName.MOCK.value
    cfdi_pac_sandbox: bool = True
    cfdi_pac_username: str = ""
    cfdi_pac_password: str = ""
    cfdi_pac_rfc_reseller: str = ""
    cfdi_pac_timeout_seconds: int = 30
    sat_validation_url: str = (
        "https://consultaqr.facturaelectronica.sat.gob.mx/ConsultaCFDIService.svc"
    )
    sat_validation_timeout_seconds: int = 30

    # QuickBooks Online
    quickbooks_client_id: str = ""
    quickbooks_client_secret: str = ""
    quickbooks_sandbox: bool = True
    quickbooks_timeout_seconds: int = 30

    # NetSuite
    netsuite_api_version: str = "v1"
    netsuite_timeout_ms: int = 30000
    netsuite_retry_attempts: int = 3

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()


# ─────────────────────────────────────────────────────────────
# PAC URL REGISTRY
# Source: each PAC's public integration guide.
# Mock provider has no endpoints; it never leaves the process.
# ─────────────────────────────────────────────────────────────

PAC_URLS = {
    PacName.FINKOK: {
        "sandbox":    "https://demo-facturacion.finkok.com/servicios/rest",
        "production": "https://facturacion.finkok.com/servicios/rest",
    },
    PacName.FACTURAPI: {
        "sandbox":    "https://www.facturapi.io",
        "production": "https://www.facturapi.io",
    },
    PacName.SWSAPIEN: {
        "sandbox":    "https://services.test.sw.com.mx",
        "production": "https://services.sw.com.mx",
    },
    PacName.MOCK: {
        "sandbox":    "",
        "production": "",
    },
}


# ─────────────────────────────────────────────────────────────
# SAT / ERP ENDPOINTS
# ─────────────────────────────────────────────────────────────

SAT_SOAP_ACTION = "http://tempuri.org/IConsultaCFDIService/Consulta"
SAT_QR_VERIFY_URL = "https://verificacfdi.facturaelectronica.sat.gob.mx/default.aspx"

QUICKBOOKS_URLS = {
    "sandbox":    "https://sandbox-quickbooks.api.intuit.com",
    "production": "https://quickbooks.api.intuit.com",
    "token":      "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer",
    "revoke":     "https://developer.api.intuit.com/v2/oauth2/tokens/revoke",
}

NETSUITE_REST_DOMAIN = "suitetalk.api.netsuite.com"


def get_pac_url(pac_name: str, sandbox: bool = True) -> str:
    """Get the PAC base URL for a provider and environment."""
    try:
        urls = PAC_URLS[PacName(pac_name)]
    except ValueError:
        raise ValueError(f"Unknown PAC provider: {pac_name}")
    return urls["sandbox" if sandbox else "production"]


def get_quickbooks_base_url(sandbox: bool) -> str:
    return QUICKBOOKS_URLS["sandbox" if sandbox else "production"]


def get_netsuite_base_url(account_id: str) -> str:
    """NetSuite account ids use '_' for sandboxes; the hostname uses '-'."""
    host = account_id.lower().replace("_", "-")
    return f"https://{host}.{NETSUITE_REST_DOMAIN}"
