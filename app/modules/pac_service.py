"""
B2B-INTEGRATIONS — CFDI Module 3: PacService
Stamping (timbrado) and cancellation through a PAC (Proveedor Autorizado de Certificación).

Flow:
1. Sealed CFDI XML arrives (from XmlGenerator + SignatureService)
2. The configured provider POSTs it to the PAC
3. PAC returns the XML with the TimbreFiscalDigital inside cfdi:Complemento
4. extract_timbre() pulls UUID / FechaTimbrado / SelloSAT back out

Providers:
- finkok:    XML over HTTP Basic auth
- facturapi: JSON, Bearer API key (the configured password)
- swsapien:  token from /security/authenticate, then base64 XML stamp
- mock:      in-process, deterministic UUID, never touches the network

Cancellation (CFDI 4.0):
- motivo 01 ("errores con relación") requires folio_sustitucion
- 201 / cancelled → cancelled, 202 → pending (receiver must accept), else rejected
"""

import base64
import hashlib
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

import httpx

from app.core.config import PacName, get_pac_url, settings
from app.modules.xml_generator import TFD_NAMESPACE, xml_generator
from app.schemas.cfdi import (
    CancelRequest,
    CancelResponse,
    MotivoCancelacion,
    PacConfig,
    PacStatus,
    StampRequest,
    StampResponse,
    TimbreFiscalDigital,
)
from app.utils.cfdi_helpers import code, escape_xml, find_local, format_amount, parse_xml

logger = logging.getLogger(__name__)

MOCK_RFC_PROV_CERTIF = "SAT970701NN3"
MOCK_NO_CERTIFICADO_SAT = "00001000000506790941"
MOCK_SELLO_SAT = "MOCK_SELLO_SAT_BASE64_ENCODED"

TEST_CONNECTION_UUID = "00000000-0000-0000-0000-000000000000"
TEST_CONNECTION_RFC = "XAXX010101000"


class PacError(Exception):
    """Raised by providers when a PAC answers with something unparseable."""
    def __init__(self, message: str, status_code: int = 500, pac_response: dict = None):
        self.message = message
        self.status_code = status_code
        self.pac_response = pac_response or {}
        super().__init__(self.message)


# ─────────────────────────────────────────────────────────────
# PROVIDERS
# ─────────────────────────────────────────────────────────────

class PacProvider:
    """Base class for PAC back ends."""

    name = "base"

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout or settings.cfdi_pac_timeout_seconds

    async def stamp(self, xml: str, config: PacConfig) -> StampResponse:
        raise NotImplementedError

    async def cancel(self, request: CancelRequest, config: PacConfig) -> CancelResponse:
        raise NotImplementedError

    async def get_status(self, uuid: str, rfc_emisor: str, config: PacConfig) -> PacStatus:
        raise NotImplementedError

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, verify=True)

    def _transport_error(self, e: httpx.HTTPError) -> str:
        if isinstance(e, httpx.TimeoutException):
            return f"PAC {self.name} did not respond within {self.timeout}s"
        if isinstance(e, httpx.ConnectError):
            return f"Could not connect to PAC {self.name}: {e}"
        return f"Connection to PAC {self.name} failed: {e}"

    @staticmethod
    def _json(response: httpx.Response) -> dict:
        try:
            return response.json()
        except ValueError:
            raise PacError(
                message=f"PAC returned a non-JSON response (HTTP {response.status_code}): {response.text[:300]}",
                status_code=response.status_code,
            )


class FinkokProvider(PacProvider):
    name = PacName.FINKOK.value

    @staticmethod
    def _headers(config: PacConfig, content_type: Optional[str] = "application/xml") -> dict:
        token = base64.b64encode(f"{config.username}:{config.password}".encode("utf-8")).decode("ascii")
        headers = {"Authorization": f"Basic {token}"}
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    async def stamp(self, xml: str, config: PacConfig) -> StampResponse:
        try:
            async with self._client() as client:
                response = await client.post(f"{config.base_url}/stamp", content=xml.encode("utf-8"), headers=self._headers(config))
        except httpx.HTTPError as e:
            logger.warning(f"Finkok stamp transport error: {e}")
            return StampResponse(success=False, error_code="CONNECTION_ERROR", error_message=self._transport_error(e))

        if not response.is_success:
            return StampResponse(
                success=False,
                error_code=str(response.status_code),
                error_message=response.text or f"HTTP {response.status_code}",
            )
        return self._parse_stamp_response(response.text)

    def _parse_stamp_response(self, text: str) -> StampResponse:
        root = parse_xml(text)
        if root is not None:
            tfd = find_local(root, "TimbreFiscalDigital")
            if tfd is not None and tfd.get("UUID") and tfd.get("FechaTimbrado"):
                return StampResponse(
                    success=True,
                    xml=text,
                    uuid=tfd.get("UUID"),
                    fecha_timbrado=tfd.get("FechaTimbrado"),
                    no_certificado_sat=tfd.get("NoCertificadoSAT"),
                    sello_sat=tfd.get("SelloSAT"),
                )
            fault = find_local(root, "fault")
            if fault is None:
                fault = find_local(root, "error")
            if fault is not None and fault.text:
                return StampResponse(success=False, error_code="STAMP_FAILED", error_message=fault.text.strip())

        return StampResponse(success=False, error_code="STAMP_FAILED", error_message="Failed to stamp CFDI")

    async def cancel(self, request: CancelRequest, config: PacConfig) -> CancelResponse:
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{config.base_url}/cancel",
                    content=self._build_cancel_request(request).encode("utf-8"),
                    headers=self._headers(config),
                )
        except httpx.HTTPError as e:
            logger.warning(f"Finkok cancel transport error: {e}")
            return CancelResponse(success=False, error_code="CONNECTION_ERROR", error_message=self._transport_error(e))

        if not response.is_success:
            return CancelResponse(
                success=False,
                error_code=str(response.status_code),
                error_message=response.text or f"HTTP {response.status_code}",
            )
        return self._parse_cancel_response(response.text)

    def _parse_cancel_response(self, text: str) -> CancelResponse:
        root = parse_xml(text)
        status_el = find_local(root, "status") if root is not None else None
        if status_el is None or not status_el.text:
            return CancelResponse(
                success=False,
                error_code="CANCEL_FAILED",
                error_message="Failed to parse cancellation response",
            )

        status = status_el.text.strip().lower()
        acuse_el = find_local(root, "acuse")
        if status in ("cancelled", "201"):
            normalized = "cancelled"
        elif status == "202":
            normalized = "pending"
        else:
            normalized = "rejected"

        return CancelResponse(
            success=status in ("cancelled", "201", "202"),
            status=normalized,
            acuse=acuse_el.text if acuse_el is not None else None,
        )

    @staticmethod
    def _build_cancel_request(request: CancelRequest) -> str:
        lines = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            "<cancelacion>",
            f"  <uuid>{escape_xml(request.uuid)}</uuid>",
            f"  <rfcEmisor>{escape_xml(request.rfc_emisor)}</rfcEmisor>",
            f"  <rfcReceptor>{escape_xml(request.rfc_receptor)}</rfcReceptor>",
            f"  <total>{format_amount(request.total)}</total>",
            f"  <motivo>{code(request.motivo)}</motivo>",
        ]
        if request.folio_sustitucion:
            lines.append(f"  <folioSustitucion>{escape_xml(request.folio_sustitucion)}</folioSustitucion>")
        lines.append("</cancelacion>")
        return "\n".join(lines)

    async def get_status(self, uuid: str, rfc_emisor: str, config: PacConfig) -> PacStatus:
        try:
            async with self._client() as client:
                response = await client.get(
                    f"{config.base_url}/status",
                    params={"uuid": uuid, "rfc": rfc_emisor},
                    headers=self._headers(config, content_type=None),
                )
        except httpx.HTTPError as e:
            return PacStatus(error=self._transport_error(e))

        if not response.is_success:
            return PacStatus(error=f"HTTP {response.status_code}")
        return PacStatus(status=self._json(response).get("status") or "unknown")


class FacturapiProvider(PacProvider):
    name = PacName.FACTURAPI.value

    async def stamp(self, xml: str, config: PacConfig) -> StampResponse:
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{config.base_url}/v2/invoices/stamp",
                    content=xml.encode("utf-8"),
                    headers={"Content-Type": "application/xml", "Authorization": f"Bearer {config.password}"},
                )
        except httpx.HTTPError as e:
            logger.warning(f"Facturapi stamp transport error: {e}")
            return StampResponse(success=False, error_code="CONNECTION_ERROR", error_message=self._transport_error(e))

        data = self._json(response)
        if not response.is_success:
            return StampResponse(
                success=False,
                error_code=str(data.get("code") or response.status_code),
                error_message=data.get("message") or "Stamp failed",
            )

        return StampResponse(
            success=True,
            xml=data.get("xml"),
            uuid=data.get("uuid"),
            fecha_timbrado=data.get("fecha_timbrado"),
            no_certificado_sat=data.get("no_certificado_sat"),
            sello_sat=data.get("sello_sat"),
            cadena_original=data.get("cadena_original"),
        )

    async def cancel(self, request: CancelRequest, config: PacConfig) -> CancelResponse:
        try:
            async with self._client() as client:
                response = await client.request(
                    "DELETE",
                    f"{config.base_url}/v2/invoices/{request.uuid}/cancel",
                    json={"motive": code(request.motivo), "substitution": request.folio_sustitucion},
                    headers={"Authorization": f"Bearer {config.password}"},
                )
        except httpx.HTTPError as e:
            logger.warning(f"Facturapi cancel transport error: {e}")
            return CancelResponse(success=False, error_code="CONNECTION_ERROR", error_message=self._transport_error(e))

        data = self._json(response)
        if not response.is_success:
            return CancelResponse(
                success=False,
                error_code=str(data.get("code") or response.status_code),
                error_message=data.get("message") or "Cancel failed",
            )
        return CancelResponse(success=True, status=data.get("status"), acuse=data.get("acuse"))

    async def get_status(self, uuid: str, rfc_emisor: str, config: PacConfig) -> PacStatus:
        try:
            async with self._client() as client:
                response = await client.get(
                    f"{config.base_url}/v2/invoices/{uuid}/status",
                    headers={"Authorization": f"Bearer {config.password}"},
                )
        except httpx.HTTPError as e:
            return PacStatus(error=self._transport_error(e))

        if not response.is_success:
            return PacStatus(error=f"HTTP {response.status_code}")
        return PacStatus(status=self._json(response).get("status") or "unknown")


class SwSapienProvider(PacProvider):
    name = PacName.SWSAPIEN.value

    async def _authenticate(self, client: httpx.AsyncClient, config: PacConfig) -> Optional[str]:
        response = await client.post(
            f"{config.base_url}/security/authenticate",
            json={"user": config.username, "password": config.password},
        )
        if not response.is_success:
            return None
        return (self._json(response).get("data") or {}).get("token")

    async def stamp(self, xml: str, config: PacConfig) -> StampResponse:
        try:
            async with self._client() as client:
                token = await self._authenticate(client, config)
                if not token:
                    return StampResponse(
                        success=False,
                        error_code="AUTH_FAILED",
                        error_message="Failed to authenticate with SW Sapien",
                    )
                response = await client.post(
                    f"{config.base_url}/cfdi33/stamp/v4",
                    json={"xml": base64.b64encode(xml.encode("utf-8")).decode("ascii")},
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.HTTPError as e:
            logger.warning(f"SW Sapien stamp transport error: {e}")
            return StampResponse(success=False, error_code="CONNECTION_ERROR", error_message=self._transport_error(e))

        result = self._json(response)
        if not response.is_success or result.get("status") != "success":
            return StampResponse(
                success=False,
                error_code=result.get("messageDetail") or result.get("status"),
                error_message=result.get("message") or "Stamp failed",
            )

        data = result.get("data") or {}
        return StampResponse(
            success=True,
            xml=base64.b64decode(data.get("cfdi", "")).decode("utf-8"),
            uuid=data.get("uuid"),
            fecha_timbrado=data.get("fechaTimbrado"),
            no_certificado_sat=data.get("noCertificadoSAT"),
            sello_sat=data.get("selloSAT"),
            cadena_original=data.get("cadenaOriginalSAT"),
        )

    async def cancel(self, request: CancelRequest, config: PacConfig) -> CancelResponse:
        try:
            async with self._client() as client:
                token = await self._authenticate(client, config)
                if not token:
                    return CancelResponse(
                        success=False,
                        error_code="AUTH_FAILED",
                        error_message="Failed to authenticate with SW Sapien",
                    )
                response = await client.post(
                    f"{config.base_url}/cfdi33/cancel/csd",
                    json={
                        "uuid": request.uuid,
                        "rfc": request.rfc_emisor,
                        "motivo": code(request.motivo),
                        "folioSustitucion": request.folio_sustitucion or "",
                    },
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.HTTPError as e:
            logger.warning(f"SW Sapien cancel transport error: {e}")
            return CancelResponse(success=False, error_code="CONNECTION_ERROR", error_message=self._transport_error(e))

        result = self._json(response)
        if not response.is_success or result.get("status") != "success":
            return CancelResponse(
                success=False,
                error_code=result.get("messageDetail") or result.get("status"),
                error_message=result.get("message") or "Cancel failed",
            )
        data = result.get("data") or {}
        return CancelResponse(success=True, status=data.get("status"), acuse=data.get("acuse"))

    async def get_status(self, uuid: str, rfc_emisor: str, config: PacConfig) -> PacStatus:
        return PacStatus(status="unknown", error="Not implemented")


class MockPacProvider(PacProvider):
    """
    In-process PAC for tests and demos.
    The UUID is derived from the XML, so stamping the same XML twice yields the same UUID.
    """

    name = PacName.MOCK.value

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        super().__init__()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    @staticmethod
    def mock_uuid(xml: str) -> str:
        h = list(hashlib.sha256(xml.encode("utf-8")).hexdigest()[:32])
        h[12] = "4"
        h[16] = "89ab"[int(h[16], 16) & 0x3]
        s = "".join(h).upper()
        return f"{s[0:8]}-{s[8:12]}-{s[12:16]}-{s[16:20]}-{s[20:32]}"

    async def stamp(self, xml: str, config: PacConfig) -> StampResponse:
        uuid = self.mock_uuid(xml)
        fecha_timbrado = self.clock().strftime("%Y-%m-%dT%H:%M:%S")

        root = parse_xml(xml)
        sello_cfd = (root.get("Sello") if root is not None else None) or "mock-sello"

        timbre = TimbreFiscalDigital(
            uuid=uuid,
            fecha_timbrado=fecha_timbrado,
            rfc_prov_certif=MOCK_RFC_PROV_CERTIF,
            sello_cfd=sello_cfd,
            no_certificado_sat=MOCK_NO_CERTIFICADO_SAT,
            sello_sat=MOCK_SELLO_SAT,
        )
        tfd_xml = xml_generator.build_timbre(timbre, with_namespace=True)

        if "</cfdi:Complemento>" in xml:
            stamped = xml.replace("</cfdi:Complemento>", f"{tfd_xml}\n</cfdi:Complemento>", 1)
        elif "<cfdi:Addenda" in xml:
            # Complemento precedes Addenda in the schema sequence
            stamped = xml.replace(
                "<cfdi:Addenda",
                f"<cfdi:Complemento>\n{tfd_xml}\n</cfdi:Complemento>\n<cfdi:Addenda",
                1,
            )
        elif "</cfdi:Comprobante>" in xml:
            stamped = xml.replace(
                "</cfdi:Comprobante>",
                f"<cfdi:Complemento>\n{tfd_xml}\n</cfdi:Complemento>\n</cfdi:Comprobante>",
                1,
            )
        else:
            stamped = xml

        return StampResponse(
            success=True,
            xml=stamped,
            uuid=uuid,
            fecha_timbrado=fecha_timbrado,
            no_certificado_sat=MOCK_NO_CERTIFICADO_SAT,
            sello_sat=MOCK_SELLO_SAT,
            cadena_original=xml_generator.generate_cadena_original_tfd(timbre, sello_cfd),
        )

    async def cancel(self, request: CancelRequest, config: PacConfig) -> CancelResponse:
        return CancelResponse(
            success=True,
            status="cancelled",
            acuse=(
                f'<?xml version="1.0"?><Acuse><UUID>{request.uuid}</UUID>'
                f"<Status>Cancelado</Status></Acuse>"
            ),
            status_date=self.clock().isoformat(),
        )

    async def get_status(self, uuid: str, rfc_emisor: str, config: PacConfig) -> PacStatus:
        return PacStatus(status="Vigente")


# ─────────────────────────────────────────────────────────────
# SERVICE
# ─────────────────────────────────────────────────────────────

class PacService:
    """
    Routes stamp / cancel / status calls to the configured PAC provider.

    Usage:
        result = await pac_service.stamp(StampRequest(xml=sealed_xml))
        timbre = pac_service.extract_timbre(result.xml)
    """

    def __init__(self, providers: Optional[list[PacProvider]] = None):
        self.providers: dict[str, PacProvider] = {}
        for provider in providers or [FinkokProvider(), FacturapiProvider(), SwSapienProvider(), MockPacProvider()]:
            self.providers[provider.name] = provider

    def get_pac_config(self) -> PacConfig:
        """PacConfig from settings (CFDI_PAC_* environment variables)."""
        pac_name = settings.cfdi_pac_name
        production_url = sandbox_url = ""
        try:
            production_url = get_pac_url(pac_name, sandbox=False)
            sandbox_url = get_pac_url(pac_name, sandbox=True)
        except ValueError:
            logger.warning(f"No URL registry entry for PAC provider: {pac_name}")
        return PacConfig(
            pac_name=pac_name,
            production_url=production_url,
            sandbox_url=sandbox_url,
            username=settings.cfdi_pac_username,
            password=settings.cfdi_pac_password,
            sandbox=settings.cfdi_pac_sandbox,
            rfc_reseller=settings.cfdi_pac_rfc_reseller or None,
        )

    async def stamp(self, request: StampRequest, config: Optional[PacConfig] = None) -> StampResponse:
        pac_config = config or self.get_pac_config()
        provider = self.providers.get(pac_config.pac_name)
        if provider is None:
            return StampResponse(
                success=False,
                error_code="INVALID_PAC",
                error_message=f"Unknown PAC provider: {pac_config.pac_name}",
            )

        logger.info(f"Stamping CFDI with PAC: {pac_config.pac_name} (sandbox: {pac_config.sandbox})")

        try:
            result = await provider.stamp(request.xml, pac_config)
        except PacError as e:
            logger.warning(f"PAC stamp error: {e.message}")
            return StampResponse(success=False, error_code="PAC_ERROR", error_message=e.message)
        except Exception as e:
            logger.exception(f"PAC stamp error: {e}")
            return StampResponse(success=False, error_code="PAC_ERROR", error_message=str(e) or "Unknown PAC error")

        if result.success:
            logger.info(f"CFDI stamped successfully. UUID: {result.uuid}")
        else:
            logger.warning(f"CFDI stamp failed: {result.error_message}")
        return result

    async def cancel(self, request: CancelRequest, config: Optional[PacConfig] = None) -> CancelResponse:
        pac_config = config or self.get_pac_config()
        provider = self.providers.get(pac_config.pac_name)
        if provider is None:
            return CancelResponse(
                success=False,
                error_code="INVALID_PAC",
                error_message=f"Unknown PAC provider: {pac_config.pac_name}",
            )

        logger.info(f"Cancelling CFDI {request.uuid} with PAC: {pac_config.pac_name}")

        if request.motivo == MotivoCancelacion.ERRORES_CON_RELACION and not request.folio_sustitucion:
            return CancelResponse(
                success=False,
                error_code="INVALID_REQUEST",
                error_message="folioSustitucion is required when motivo is 01",
            )

        try:
            result = await provider.cancel(request, pac_config)
        except PacError as e:
            logger.warning(f"PAC cancel error: {e.message}")
            return CancelResponse(success=False, error_code="PAC_ERROR", error_message=e.message)
        except Exception as e:
            logger.exception(f"PAC cancel error: {e}")
            return CancelResponse(success=False, error_code="PAC_ERROR", error_message=str(e) or "Unknown PAC error")

        if result.success:
            logger.info(f"CFDI {request.uuid} cancellation: {result.status}")
        else:
            logger.warning(f"CFDI cancellation failed: {result.error_message}")
        return result

    async def get_status(self, uuid: str, rfc_emisor: str, config: Optional[PacConfig] = None) -> PacStatus:
        pac_config = config or self.get_pac_config()
        provider = self.providers.get(pac_config.pac_name)
        if provider is None:
            return PacStatus(error=f"Unknown PAC provider: {pac_config.pac_name}")
        try:
            return await provider.get_status(uuid, rfc_emisor, pac_config)
        except PacError as e:
            return PacStatus(error=e.message)

    def extract_timbre(self, stamped_xml: str) -> Optional[TimbreFiscalDigital]:
        """Pull the TimbreFiscalDigital attributes out of a stamped CFDI."""
        root = parse_xml(stamped_xml)
        if root is None:
            logger.error("Failed to extract TimbreFiscalDigital: XML is not well-formed")
            return None

        tfd = root.find(f".//{{{TFD_NAMESPACE}}}TimbreFiscalDigital")
        if tfd is None or not tfd.get("UUID") or not tfd.get("FechaTimbrado"):
            return None

        return TimbreFiscalDigital(
            version=tfd.get("Version") or "1.1",
            uuid=tfd.get("UUID"),
            fecha_timbrado=tfd.get("FechaTimbrado"),
            rfc_prov_certif=tfd.get("RfcProvCertif", ""),
            sello_cfd=tfd.get("SelloCFD", ""),
            no_certificado_sat=tfd.get("NoCertificadoSAT", ""),
            sello_sat=tfd.get("SelloSAT", ""),
        )

    def register_provider(self, name: str, provider: PacProvider) -> None:
        self.providers[name] = provider
        logger.info(f"Registered PAC provider: {name}")

    def get_available_providers(self) -> list[str]:
        return list(self.providers.keys())

    async def test_connection(self, config: Optional[PacConfig] = None) -> dict:
        """
        Query the status of the all-zeros UUID. Any answer from the PAC,
        even "not found", proves connectivity.
        """
        pac_config = config or self.get_pac_config()
        if pac_config.pac_name not in self.providers:
            return {"success": False, "error": f"Unknown PAC provider: {pac_config.pac_name}"}
        try:
            status = await self.get_status(TEST_CONNECTION_UUID, TEST_CONNECTION_RFC, pac_config)
        except Exception as e:
            logger.exception(f"PAC connection test failed: {e}")
            return {"success": False, "error": str(e) or "Connection test failed"}
        return {"success": True, "status": status.status}


# Singleton instance
pac_service = PacService()
