"""
B2B-INTEGRATIONS — CFDI Module 4: SatValidationService
Local structural validation of CFDI 4.0 documents plus the SAT Consulta web service.

Flow:
1. validate_structure() runs before sealing; any error stops the pipeline
2. After stamping, validate_with_sat() asks SAT for the Estado of the UUID
3. Vigente → valid; Cancelado / No Encontrado → not valid

SAT Consulta Endpoint:
- URL: POST https://consultaqr.facturaelectronica.sat.gob.mx/ConsultaCFDIService.svc
- Headers: SOAPAction: http://tempuri.org/IConsultaCFDIService/Consulta
- Body: tem:Consulta / tem:expresionImpresa = ?re=RFCE&rr=RFCR&tt=TOTAL&id=UUID
- TOTAL: 6 decimals, zero-padded to 17 characters
- Response: a:Estado, a:EsCancelable, a:EstatusCancelacion
"""

import logging
import re
from datetime import datetime, timezone
from typing import Optional

import httpx

from app.core.config import SAT_SOAP_ACTION, settings
from app.schemas.cfdi import (
    Comprobante,
    Concepto,
    ImpuestoDetalle,
    Impuesto,
    MetodoPago,
    ObjetoImp,
    Receptor,
    RegimenFiscal,
    SatValidationRequest,
    SatValidationResponse,
    TipoComprobante,
    TipoFactor,
    ValidationIssue,
    ValidationResult,
)
from app.utils.cfdi_helpers import (
    escape_xml,
    find_local,
    format_qr_total,
    is_persona_fisica,
    parse_xml,
    validate_cfdi_fecha,
    validate_postal_code,
    validate_rfc,
)

logger = logging.getLogger(__name__)

AMOUNT_TOLERANCE = 0.01

VALID_CURRENCIES = {
    "MXN", "USD", "EUR", "GBP", "CAD", "JPY", "CHF", "AUD", "CNY", "HKD",
    "NZD", "SEK", "DKK", "NOK", "SGD", "ZAR", "BRL", "ARS", "CLP", "COP",
    "XXX",  # Sin moneda
}

VALID_REGIMENES = {r.value for r in RegimenFiscal}
VALID_TIPOS = {t.value for t in TipoComprobante}
VALID_OBJETO_IMP = {o.value for o in ObjetoImp}
VALID_IMPUESTOS = {i.value for i in Impuesto}
VALID_TIPO_FACTOR = {t.value for t in TipoFactor}

# UsoCFDI deducciones personales: only for personas físicas
USO_PERSONA_FISICA_ONLY = {f"D{n:02d}" for n in range(1, 11)}

PAGO_CLAVE_PROD_SERV = "84111506"
PAGO_CLAVE_UNIDAD = "ACT"


class SatValidationError(Exception):
    """Raised when the SAT Consulta response cannot be understood."""
    def __init__(self, message: str, status_code: int = 500, sat_response: str = None):
        self.message = message
        self.status_code = status_code
        self.sat_response = sat_response or ""
        super().__init__(self.message)


class SatValidationService:
    """
    Usage:
        result = sat_validation.validate_structure(comprobante)
        estado = await sat_validation.validate_with_sat(SatValidationRequest(...))
    """

    TIMEOUT_SECONDS = 30

    def __init__(self, url: Optional[str] = None, timeout: Optional[float] = None):
        self.url = url or settings.sat_validation_url
        self.timeout = timeout or settings.sat_validation_timeout_seconds or self.TIMEOUT_SECONDS

    # ═════════════════════════════════════════════════════════
    # SAT WEB SERVICE
    # ═════════════════════════════════════════════════════════

    async def validate_with_sat(self, request: SatValidationRequest) -> SatValidationResponse:
        logger.debug(f"Validating CFDI {request.uuid} with SAT")

        body = self._build_soap_request(request.uuid, request.rfc_emisor, request.rfc_receptor, request.total)
        headers = {
            "Content-Type": "text/xml; charset=utf-8",
            "SOAPAction": SAT_SOAP_ACTION,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, verify=True) as client:
                response = await client.post(self.url, content=body.encode("utf-8"), headers=headers)
        except httpx.TimeoutException:
            logger.warning(f"SAT Consulta timeout for {request.uuid}")
            return SatValidationResponse(valid=False, error=f"SAT service did not respond within {self.timeout}s")
        except httpx.ConnectError as e:
            logger.warning(f"SAT Consulta connection error: {e}")
            return SatValidationResponse(valid=False, error=f"Could not connect to SAT service: {e}")
        except Exception as e:
            logger.exception(f"SAT validation error: {e}")
            return SatValidationResponse(valid=False, error=str(e) or "SAT validation failed")

        if not response.is_success:
            return SatValidationResponse(valid=False, error=f"SAT service returned HTTP {response.status_code}")

        try:
            return self._parse_sat_response(response.text)
        except SatValidationError as e:
            logger.warning(f"SAT response for {request.uuid}: {e.message}")
            return SatValidationResponse(valid=False, error=e.message)

    @staticmethod
    def _build_soap_request(uuid: str, rfc_emisor: str, rfc_receptor: str, total: float) -> str:
        expresion = escape_xml(
            f"?re={rfc_emisor}&rr={rfc_receptor}&tt={format_qr_total(total)}&id={uuid}"
        )
        return (
            '<?xml version="1.0" encoding="utf-8"?>\n'
            '<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/" xmlns:tem="http://tempuri.org/">\n'
            "  <soap:Body>\n"
            "    <tem:Consulta>\n"
            f"      <tem:expresionImpresa>{expresion}</tem:expresionImpresa>\n"
            "    </tem:Consulta>\n"
            "  </soap:Body>\n"
            "</soap:Envelope>"
        )

    @staticmethod
    def _parse_sat_response(text: str) -> SatValidationResponse:
        root = parse_xml(text)
        if root is None:
            raise SatValidationError("Failed to parse SAT response", sat_response=text[:300])

        def value(name: str) -> Optional[str]:
            el = find_local(root, name)
            return el.text.strip() if el is not None and el.text else None

        estado = value("Estado")
        if not estado:
            raise SatValidationError("Could not parse SAT response", sat_response=text[:300])

        if estado == "Vigente":
            normalized = "Vigente"
        elif estado == "Cancelado":
            normalized = "Cancelado"
        else:
            normalized = "No Encontrado"

        return SatValidationResponse(
            valid=normalized == "Vigente",
            estado=normalized,
            es_cancelable=value("EsCancelable"),
            estatus_cancelacion=value("EstatusCancelacion"),
            fecha_validacion=datetime.now(timezone.utc).isoformat(),
        )

    # ═════════════════════════════════════════════════════════
    # LOCAL STRUCTURE
    # ═════════════════════════════════════════════════════════

    def validate_structure(self, c: Comprobante) -> ValidationResult:
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []

        def err(code: str, message: str, field: str, catalog: Optional[str] = None) -> None:
            errors.append(ValidationIssue(
                code=code, message=message, field=field, severity="error", catalog_reference=catalog,
            ))

        if c.version != "4.0":
            err("CFDI40001", f'Version must be "4.0", got "{c.version}"', "version")

        if not validate_cfdi_fecha(c.fecha):
            err("CFDI40002", "Fecha must be in ISO 8601 format (YYYY-MM-DDTHH:MM:SS)", "fecha")

        for rfc, field in ((c.emisor.rfc, "emisor.rfc"), (c.receptor.rfc, "receptor.rfc")):
            if not validate_rfc(rfc):
                err("CFDI40003", f"Invalid RFC format: {rfc}", field)

        if not validate_postal_code(c.lugar_expedicion):
            err("CFDI40005", "LugarExpedicion must be a valid 5-digit postal code",
                "lugar_expedicion", "c_CodigoPostal")
        if not validate_postal_code(c.receptor.domicilio_fiscal_receptor):
            err("CFDI40006", "DomicilioFiscalReceptor must be a valid 5-digit postal code",
                "receptor.domicilio_fiscal_receptor", "c_CodigoPostal")

        if c.moneda not in VALID_CURRENCIES:
            err("CFDI40007", "Invalid currency code", "moneda", "c_Moneda")

        if c.moneda not in ("MXN", "XXX") and (c.tipo_cambio is None or c.tipo_cambio <= 0):
            err("CFDI40008", "TipoCambio is required when Moneda is not MXN", "tipo_cambio")

        if c.tipo_de_comprobante not in VALID_TIPOS:
            err("CFDI40009", f"Invalid TipoDeComprobante: {c.tipo_de_comprobante}",
                "tipo_de_comprobante", "c_TipoDeComprobante")

        if c.tipo_de_comprobante in (TipoComprobante.INGRESO.value, TipoComprobante.EGRESO.value):
            if not c.metodo_pago:
                err("CFDI40010", "MetodoPago is required for Ingreso/Egreso", "metodo_pago")
            if c.metodo_pago == MetodoPago.PUE.value and not c.forma_pago:
                err("CFDI40011", "FormaPago is required when MetodoPago is PUE", "forma_pago")

        if not c.conceptos:
            err("CFDI40012", "At least one Concepto is required", "conceptos")
        for index, concepto in enumerate(c.conceptos):
            self._validate_concepto(concepto, index, errors, warnings)

        calculated_subtotal = sum(con.importe for con in c.conceptos)
        if abs(calculated_subtotal - c.sub_total) > AMOUNT_TOLERANCE:
            err("CFDI40013",
                f"SubTotal mismatch. Expected {calculated_subtotal:.2f}, got {c.sub_total:.2f}",
                "sub_total")

        trasladados = (c.impuestos.total_impuestos_trasladados or 0) if c.impuestos else 0
        retenidos = (c.impuestos.total_impuestos_retenidos or 0) if c.impuestos else 0
        calculated_total = c.sub_total - (c.descuento or 0) + trasladados - retenidos
        if abs(calculated_total - c.total) > AMOUNT_TOLERANCE:
            err("CFDI40014",
                f"Total mismatch. Expected {calculated_total:.2f}, got {c.total:.2f}",
                "total")

        self._validate_impuestos_consistency(c, errors)

        for regimen, field in (
            (c.emisor.regimen_fiscal, "emisor.regimen_fiscal"),
            (c.receptor.regimen_fiscal_receptor, "receptor.regimen_fiscal_receptor"),
        ):
            if regimen not in VALID_REGIMENES:
                err("CFDI40004", f"Invalid RegimenFiscal: {regimen}", field, "c_RegimenFiscal")

        self._validate_uso_cfdi(c.receptor, errors)

        if c.tipo_de_comprobante == TipoComprobante.PAGO.value:
            self._validate_pago_type(c, errors)

        if errors:
            logger.info(f"CFDI {c.serie_folio} failed local validation: {[e.code for e in errors]}")

        return ValidationResult(
            valid=not errors,
            errors=errors,
            warnings=warnings,
            validated_at=datetime.now(timezone.utc),
        )

    def _validate_concepto(
        self,
        concepto: Concepto,
        index: int,
        errors: list[ValidationIssue],
        warnings: list[ValidationIssue],
    ) -> None:
        prefix = f"conceptos[{index}]"

        def err(code: str, message: str, field: str, catalog: Optional[str] = None) -> None:
            errors.append(ValidationIssue(
                code=code, message=message, field=f"{prefix}.{field}", catalog_reference=catalog,
            ))

        if not re.fullmatch(r"\d{8}", concepto.clave_prod_serv or ""):
            err("CFDI40020", "ClaveProdServ must be 8 digits", "clave_prod_serv", "c_ClaveProdServ")

        if not re.fullmatch(r"[A-Z0-9]{2,3}", concepto.clave_unidad or ""):
            err("CFDI40021", "ClaveUnidad must be 2-3 alphanumeric characters", "clave_unidad", "c_ClaveUnidad")

        if concepto.cantidad <= 0:
            err("CFDI40022", "Cantidad must be greater than 0", "cantidad")

        if concepto.valor_unitario < 0:
            err("CFDI40023", "ValorUnitario cannot be negative", "valor_unitario")

        expected = concepto.cantidad * concepto.valor_unitario
        if abs(expected - concepto.importe) > AMOUNT_TOLERANCE:
            warnings.append(ValidationIssue(
                code="CFDI40024",
                message=f"Importe calculation mismatch. Expected {expected:.2f}, got {concepto.importe:.2f}",
                field=f"{prefix}.importe",
                severity="warning",
            ))

        if concepto.descuento is not None and concepto.descuento < 0:
            err("CFDI40025", "Descuento cannot be negative", "descuento")

        if concepto.objeto_imp not in VALID_OBJETO_IMP:
            err("CFDI40026", f"Invalid ObjetoImp: {concepto.objeto_imp}", "objeto_imp", "c_ObjetoImp")

        if concepto.objeto_imp == ObjetoImp.SI_OBJETO_IMPUESTO.value:
            if not concepto.impuestos or not concepto.impuestos.traslados:
                err("CFDI40027", 'Impuestos required when ObjetoImp is "02"', "impuestos")

        if concepto.impuestos:
            for i, traslado in enumerate(concepto.impuestos.traslados):
                self._validate_traslado(traslado, f"{prefix}.impuestos.traslados[{i}]", errors)

    @staticmethod
    def _validate_traslado(traslado: ImpuestoDetalle, prefix: str, errors: list[ValidationIssue]) -> None:
        if traslado.impuesto not in VALID_IMPUESTOS:
            errors.append(ValidationIssue(
                code="CFDI40030", message=f"Invalid Impuesto: {traslado.impuesto}",
                field=f"{prefix}.impuesto", catalog_reference="c_Impuesto",
            ))
        if traslado.tipo_factor not in VALID_TIPO_FACTOR:
            errors.append(ValidationIssue(
                code="CFDI40031", message=f"Invalid TipoFactor: {traslado.tipo_factor}",
                field=f"{prefix}.tipo_factor", catalog_reference="c_TipoFactor",
            ))
        if traslado.base <= 0:
            errors.append(ValidationIssue(
                code="CFDI40032", message="Base must be greater than 0", field=f"{prefix}.base",
            ))
        if traslado.tipo_factor != TipoFactor.EXENTO.value:
            if traslado.tasa_o_cuota is None:
                errors.append(ValidationIssue(
                    code="CFDI40033", message="TasaOCuota is required when TipoFactor is not Exento",
                    field=f"{prefix}.tasa_o_cuota",
                ))
            if traslado.importe is None:
                errors.append(ValidationIssue(
                    code="CFDI40034", message="Importe is required when TipoFactor is not Exento",
                    field=f"{prefix}.importe",
                ))

    @staticmethod
    def _validate_impuestos_consistency(c: Comprobante, errors: list[ValidationIssue]) -> None:
        """Document-level totals must equal the sum of the concept taxes."""
        if not c.impuestos:
            return

        total_trasladados = 0.0
        total_retenidos = 0.0
        for concepto in c.conceptos:
            if not concepto.impuestos:
                continue
            total_trasladados += sum(t.importe for t in concepto.impuestos.traslados if t.importe is not None)
            total_retenidos += sum(r.importe for r in concepto.impuestos.retenciones if r.importe is not None)

        doc_tras = c.impuestos.total_impuestos_trasladados
        if doc_tras is not None and abs(total_trasladados - doc_tras) > AMOUNT_TOLERANCE:
            errors.append(ValidationIssue(
                code="CFDI40040",
                message=(
                    f"TotalImpuestosTrasladados mismatch. Sum of conceptos: {total_trasladados:.2f}, "
                    f"Document: {doc_tras:.2f}"
                ),
                field="impuestos.total_impuestos_trasladados",
            ))

        doc_ret = c.impuestos.total_impuestos_retenidos
        if doc_ret is not None and abs(total_retenidos - doc_ret) > AMOUNT_TOLERANCE:
            errors.append(ValidationIssue(
                code="CFDI40041",
                message=(
                    f"TotalImpuestosRetenidos mismatch. Sum of conceptos: {total_retenidos:.2f}, "
                    f"Document: {doc_ret:.2f}"
                ),
                field="impuestos.total_impuestos_retenidos",
            ))

    @staticmethod
    def _validate_uso_cfdi(receptor: Receptor, errors: list[ValidationIssue]) -> None:
        if not is_persona_fisica(receptor.rfc) and receptor.uso_cfdi in USO_PERSONA_FISICA_ONLY:
            errors.append(ValidationIssue(
                code="CFDI40050",
                message=f"UsoCFDI {receptor.uso_cfdi} is only valid for persona fisica",
                field="receptor.uso_cfdi",
                catalog_reference="c_UsoCFDI",
            ))

    @staticmethod
    def _validate_pago_type(c: Comprobante, errors: list[ValidationIssue]) -> None:
        def err(code: str, message: str, field: str) -> None:
            errors.append(ValidationIssue(code=code, message=message, field=field))

        if c.sub_total != 0:
            err("CFDI40060", "SubTotal must be 0 for TipoDeComprobante P (Pago)", "sub_total")
        if c.total != 0:
            err("CFDI40061", "Total must be 0 for TipoDeComprobante P (Pago)", "total")
        if c.forma_pago:
            err("CFDI40062", "FormaPago is not allowed for TipoDeComprobante P (Pago)", "forma_pago")
        if c.metodo_pago:
            err("CFDI40063", "MetodoPago is not allowed for TipoDeComprobante P (Pago)", "metodo_pago")
        if not c.complemento or not c.complemento.pagos:
            err("CFDI40064", "Pagos 2.0 complement is required for TipoDeComprobante P (Pago)", "complemento.pagos")

        if len(c.conceptos) != 1:
            err("CFDI40065", "Exactly one Concepto is required for TipoDeComprobante P (Pago)", "conceptos")
            return
        concepto = c.conceptos[0]
        if concepto.clave_prod_serv != PAGO_CLAVE_PROD_SERV:
            err("CFDI40066", f"ClaveProdServ must be {PAGO_CLAVE_PROD_SERV} for Pago type", "conceptos[0].clave_prod_serv")
        if concepto.clave_unidad != PAGO_CLAVE_UNIDAD:
            err("CFDI40067", f"ClaveUnidad must be {PAGO_CLAVE_UNIDAD} for Pago type", "conceptos[0].clave_unidad")


# Singleton instance
sat_validation = SatValidationService()
