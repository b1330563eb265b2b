"""
B2B-INTEGRATIONS — CFDI Module 7: CfdiService
Single entry point for CFDI 4.0 operations.

Flow:
1. create_invoice / create_credit_note / create_payment_receipt / create_transfer
   force the TipoDeComprobante rules of each document type
2. Everything else is delegated to DocumentService, XmlGenerator,
   SignatureService, PacService, SatValidationService and PdfService
"""

import logging
from typing import Optional

from app.modules.document_service import DocumentService, document_service
from app.modules.pac_service import PacService, pac_service
from app.modules.pdf_service import PdfService, pdf_service
from app.modules.sat_validation import SatValidationService, sat_validation
from app.modules.signature_service import SignatureService, signature_service
from app.modules.xml_generator import XmlGenerator, xml_generator
from app.schemas.cfdi import (
    CertificateInfo,
    CfdiDocument,
    CfdiStatus,
    Complemento,
    Comprobante,
    Concepto,
    CreateDocumentOptions,
    CreateInvoiceOptions,
    CsdCertificate,
    DocumentProcessingResult,
    Emisor,
    Exportacion,
    Impuestos,
    MotivoCancelacion,
    ObjetoImp,
    PacConfig,
    Pagos20,
    PdfGenerationResult,
    PdfOptions,
    Receptor,
    RetencionResumen,
    SatValidationRequest,
    SatValidationResponse,
    StatusChangeCallback,
    TimbreFiscalDigital,
    TipoComprobante,
    TipoFactor,
    TrasladoResumen,
    ValidationResult,
)
from app.utils.cfdi_helpers import code

logger = logging.getLogger(__name__)

PAGO_CONCEPTO = {
    "clave_prod_serv": "84111506",
    "cantidad": 1,
    "clave_unidad": "ACT",
    "descripcion": "Pago",
    "valor_unitario": 0,
    "importe": 0,
    "objeto_imp": ObjetoImp.NO_OBJETO_IMPUESTO,
}


class CfdiService:
    """
    Usage:
        c = cfdi_service.build_comprobante(fecha=..., emisor=..., receptor=..., conceptos=[...], lugar_expedicion="06600")
        result = await cfdi_service.create_invoice(c, CreateInvoiceOptions(tenant_id="t1", csd=csd))
    """

    def __init__(
        self,
        documents: Optional[DocumentService] = None,
        xml: Optional[XmlGenerator] = None,
        signature: Optional[SignatureService] = None,
        pac: Optional[PacService] = None,
        sat: Optional[SatValidationService] = None,
        pdf: Optional[PdfService] = None,
    ):
        self.documents = documents or document_service
        self.xml = xml or xml_generator
        self.signature = signature or signature_service
        self.pac = pac or pac_service
        self.sat = sat or sat_validation
        self.pdf = pdf or pdf_service

    # ═════════════════════════════════════════════════════════
    # DOCUMENT CREATION
    # ═════════════════════════════════════════════════════════

    async def create_invoice(self, comprobante: Comprobante, options: CreateInvoiceOptions) -> DocumentProcessingResult:
        logger.info(f"Creating invoice {comprobante.serie_folio}")
        c = comprobante.model_copy(deep=True)
        c.tipo_de_comprobante = TipoComprobante.INGRESO

        if options.comercio_exterior or options.addenda:
            c = self._apply_complements(c, options)

        return await self.documents.create_and_stamp(c, self._document_options(options))

    async def create_credit_note(self, comprobante: Comprobante, options: CreateInvoiceOptions) -> DocumentProcessingResult:
        logger.info(f"Creating credit note {comprobante.serie_folio}")
        c = comprobante.model_copy(deep=True)
        c.tipo_de_comprobante = TipoComprobante.EGRESO
        return await self.documents.create_and_stamp(c, self._document_options(options))

    async def create_payment_receipt(
        self,
        comprobante: Comprobante,
        pagos: Pagos20,
        options: CreateInvoiceOptions,
    ) -> DocumentProcessingResult:
        """
        Complemento de Recepción de Pagos: totals are zero, no forma/método
        de pago, a single 84111506 "Pago" concepto and the Pagos 2.0 node.
        """
        logger.info(f"Creating payment receipt {comprobante.serie_folio}")
        c = comprobante.model_copy(deep=True)
        c.tipo_de_comprobante = TipoComprobante.PAGO
        c.sub_total = 0
        c.total = 0
        c.descuento = None
        c.metodo_pago = None
        c.forma_pago = None
        c.moneda = "XXX"
        c.tipo_cambio = None
        c.impuestos = None
        c.conceptos = [Concepto(**PAGO_CONCEPTO)]

        complemento = c.complemento or Complemento()
        complemento.pagos = pagos
        c.complemento = complemento

        return await self.documents.create_and_stamp(c, self._document_options(options))

    async def create_transfer(self, comprobante: Comprobante, options: CreateInvoiceOptions) -> DocumentProcessingResult:
        logger.info(f"Creating transfer {comprobante.serie_folio}")
        c = comprobante.model_copy(deep=True)
        c.tipo_de_comprobante = TipoComprobante.TRASLADO
        c.metodo_pago = None
        c.forma_pago = None
        return await self.documents.create_and_stamp(c, self._document_options(options))

    # ═════════════════════════════════════════════════════════
    # DOCUMENT MANAGEMENT
    # ═════════════════════════════════════════════════════════

    async def cancel_cfdi(
        self,
        document_id_or_uuid: str,
        motivo: MotivoCancelacion,
        folio_sustitucion: Optional[str] = None,
    ) -> DocumentProcessingResult:
        return await self.documents.cancel_document(document_id_or_uuid, motivo, folio_sustitucion)

    def get_document(self, document_id: str) -> Optional[CfdiDocument]:
        return self.documents.get_document(document_id)

    def get_document_by_uuid(self, uuid: str) -> Optional[CfdiDocument]:
        return self.documents.get_document_by_uuid(uuid)

    def get_documents_by_tenant(self, tenant_id: str) -> list[CfdiDocument]:
        return self.documents.get_documents_by_tenant(tenant_id)

    def get_documents_by_status(self, status: CfdiStatus, tenant_id: Optional[str] = None) -> list[CfdiDocument]:
        return self.documents.get_documents_by_status(status, tenant_id)

    async def refresh_document_status(self, document_id: str) -> Optional[CfdiDocument]:
        return await self.documents.refresh_status(document_id)

    def get_statistics(self, tenant_id: Optional[str] = None) -> dict:
        return self.documents.get_statistics(tenant_id)

    def on_status_change(self, callback: StatusChangeCallback) -> None:
        self.documents.on_status_change(callback)

    # ═════════════════════════════════════════════════════════
    # XML / VALIDATION / CERTIFICATES
    # ═════════════════════════════════════════════════════════

    def generate_xml(self, comprobante: Comprobante) -> str:
        """XML of an unstamped comprobante."""
        return self.xml.generate_cfdi(comprobante)

    def generate_cadena_original(self, comprobante: Comprobante) -> str:
        return self.xml.generate_cadena_original(comprobante)

    def validate_structure(self, comprobante: Comprobante) -> ValidationResult:
        return self.sat.validate_structure(comprobante)

    async def validate_with_sat(
        self,
        uuid: str,
        rfc_emisor: str,
        rfc_receptor: str,
        total: float,
    ) -> SatValidationResponse:
        return await self.sat.validate_with_sat(SatValidationRequest(
            uuid=uuid, rfc_emisor=rfc_emisor, rfc_receptor=rfc_receptor, total=total,
        ))

    def parse_certificate(self, certificate: bytes) -> CertificateInfo:
        return self.signature.parse_certificate(certificate)

    def validate_csd_pair(self, certificate: bytes, key: bytes, password: str) -> dict:
        return self.signature.validate_csd_pair(certificate, key, password)

    def generate_test_csd(self, rfc: str, nombre: str) -> CsdCertificate:
        return self.signature.generate_test_csd(rfc, nombre)

    def generate_qr_string(self, uuid: str, rfc_emisor: str, rfc_receptor: str, total: float, sello: str) -> str:
        return self.signature.generate_qr_string(uuid, rfc_emisor, rfc_receptor, total, sello)

    # ═════════════════════════════════════════════════════════
    # PDF / PAC
    # ═════════════════════════════════════════════════════════

    def generate_pdf(
        self,
        comprobante: Comprobante,
        timbre: Optional[TimbreFiscalDigital] = None,
        cadena_original: Optional[str] = None,
        logo: Optional[str] = None,
    ) -> PdfGenerationResult:
        return self.pdf.generate_pdf(PdfOptions(
            comprobante=comprobante, timbre=timbre, cadena_original=cadena_original, logo=logo,
        ))

    def generate_html(
        self,
        comprobante: Comprobante,
        timbre: Optional[TimbreFiscalDigital] = None,
        cadena_original: Optional[str] = None,
        logo: Optional[str] = None,
    ) -> str:
        return self.pdf.generate_html(PdfOptions(
            comprobante=comprobante, timbre=timbre, cadena_original=cadena_original, logo=logo,
        ))

    def get_available_pac_providers(self) -> list[str]:
        return self.pac.get_available_providers()

    async def test_pac_connection(self, config: Optional[PacConfig] = None) -> dict:
        return await self.pac.test_connection(config)

    # ═════════════════════════════════════════════════════════
    # BUILDERS
    # ═════════════════════════════════════════════════════════

    def build_comprobante(
        self,
        fecha: str,
        emisor: Emisor,
        receptor: Receptor,
        conceptos: list[Concepto],
        lugar_expedicion: str,
        serie: Optional[str] = None,
        folio: Optional[str] = None,
        forma_pago: Optional[str] = None,
        metodo_pago: Optional[str] = None,
        condiciones_de_pago: Optional[str] = None,
        moneda: Optional[str] = None,
        tipo_cambio: Optional[float] = None,
    ) -> Comprobante:
        """
        Ingreso comprobante with SubTotal, Descuento, Impuestos and Total
        computed from the conceptos. Traslados are grouped per
        impuesto / tipo factor / tasa; retenciones per impuesto.
        """
        subtotal = sum(c.importe for c in conceptos)
        descuento = sum(c.descuento or 0 for c in conceptos)

        traslados: dict[tuple, TrasladoResumen] = {}
        retenciones: dict[str, RetencionResumen] = {}
        for concepto in conceptos:
            if not concepto.impuestos:
                continue
            for t in concepto.impuestos.traslados:
                key = (t.impuesto, t.tipo_factor, t.tasa_o_cuota)
                resumen = traslados.get(key)
                if resumen is None:
                    resumen = TrasladoResumen(
                        base=0, impuesto=t.impuesto, tipo_factor=t.tipo_factor,
                        tasa_o_cuota=t.tasa_o_cuota,
                        importe=None if code(t.tipo_factor) == TipoFactor.EXENTO.value else 0,
                    )
                    traslados[key] = resumen
                resumen.base += t.base
                if resumen.importe is not None:
                    resumen.importe += t.importe or 0
            for r in concepto.impuestos.retenciones:
                resumen = retenciones.setdefault(r.impuesto, RetencionResumen(impuesto=r.impuesto, importe=0))
                resumen.importe += r.importe or 0

        total_traslados = round(sum(t.importe or 0 for t in traslados.values()), 2)
        total_retenciones = round(sum(r.importe for r in retenciones.values()), 2)
        total = round(subtotal - descuento + total_traslados - total_retenciones, 2)

        impuestos = None
        if traslados or retenciones:
            impuestos = Impuestos(
                total_impuestos_trasladados=total_traslados if total_traslados > 0 else None,
                total_impuestos_retenidos=total_retenciones if total_retenciones > 0 else None,
                traslados=list(traslados.values()),
                retenciones=list(retenciones.values()),
            )

        return Comprobante(
            serie=serie,
            folio=folio,
            fecha=fecha,
            forma_pago=forma_pago,
            metodo_pago=metodo_pago,
            condiciones_de_pago=condiciones_de_pago,
            sub_total=round(subtotal, 2),
            descuento=round(descuento, 2) if descuento > 0 else None,
            moneda=moneda or "MXN",
            tipo_cambio=tipo_cambio,
            total=total,
            tipo_de_comprobante=TipoComprobante.INGRESO,
            exportacion=Exportacion.NO_APLICA,
            lugar_expedicion=lugar_expedicion,
            emisor=emisor,
            receptor=receptor,
            conceptos=conceptos,
            impuestos=impuestos,
        )

    # ─────────────────────────────────────────────────────────
    # Internal
    # ─────────────────────────────────────────────────────────

    @staticmethod
    def _document_options(options: CreateInvoiceOptions) -> CreateDocumentOptions:
        return CreateDocumentOptions(
            tenant_id=options.tenant_id,
            csd=options.csd,
            generate_pdf=options.generate_pdf,
            pdf_logo=options.pdf_logo,
            validate_with_sat=options.validate_with_sat,
            pac_config=options.pac_config,
        )

    @staticmethod
    def _apply_complements(c: Comprobante, options: CreateInvoiceOptions) -> Comprobante:
        if options.comercio_exterior:
            complemento = c.complemento or Complemento()
            complemento.comercio_exterior = options.comercio_exterior
            c.complemento = complemento
            if not c.exportacion or c.exportacion == Exportacion.NO_APLICA.value:
                c.exportacion = Exportacion.DEFINITIVA

        if options.addenda:
            c.addenda = options.addenda

        return c


# Singleton instance
cfdi_service = CfdiService()
