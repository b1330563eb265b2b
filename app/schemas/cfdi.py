"""
B2B-INTEGRATIONS CFDI 4.0 Schemas
Comprobante model, complements, and service request/response models.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ─────────────────────────────────────────────────────────────
# ENUMS (SAT catalogues)
# ─────────────────────────────────────────────────────────────

class TipoComprobante(str, Enum):
    INGRESO = "I"
    EGRESO = "E"
    TRASLADO = "T"
    NOMINA = "N"
    PAGO = "P"


class Exportacion(str, Enum):
    NO_APLICA = "01"
    DEFINITIVA = "02"
    TEMPORAL = "03"
    DEFINITIVA_CLAVE_DISTINTA = "04"


class MetodoPago(str, Enum):
    PUE = "PUE"  # Pago en una sola exhibición
    PPD = "PPD"  # Pago en parcialidades o diferido


class FormaPago(str, Enum):
    EFECTIVO = "01"
    CHEQUE_NOMINATIVO = "02"
    TRANSFERENCIA_ELECTRONICA = "03"
    TARJETA_CREDITO = "04"
    MONEDERO_ELECTRONICO = "05"
    DINERO_ELECTRONICO = "06"
    VALES_DESPENSA = "08"
    DACION_EN_PAGO = "12"
    PAGO_POR_SUBROGACION = "13"
    PAGO_POR_CONSIGNACION = "14"
    CONDONACION = "15"
    COMPENSACION = "17"
    NOVACION = "23"
    CONFUSION = "24"
    REMISION_DE_DEUDA = "25"
    PRESCRIPCION_O_CADUCIDAD = "26"
    A_SATISFACCION_DEL_ACREEDOR = "27"
    TARJETA_DEBITO = "28"
    TARJETA_SERVICIOS = "29"
    APLICACION_ANTICIPOS = "30"
    INTERMEDIARIO_PAGOS = "31"
    POR_DEFINIR = "99"


class UsoCfdi(str, Enum):
    ADQUISICION_MERCANCIAS = "G01"
    DEVOLUCIONES_DESCUENTOS_BONIFICACIONES = "G02"
    GASTOS_EN_GENERAL = "G03"
    CONSTRUCCIONES = "I01"
    MOBILIARIO_EQUIPO_OFICINA = "I02"
    EQUIPO_TRANSPORTE = "I03"
    EQUIPO_COMPUTO = "I04"
    DADOS_TROQUELES_MOLDES = "I05"
    COMUNICACIONES_TELEFONICAS = "I06"
    COMUNICACIONES_SATELITALES = "I07"
    OTRA_MAQUINARIA_EQUIPO = "I08"
    HONORARIOS_MEDICOS = "D01"
    GASTOS_MEDICOS_INCAPACIDAD = "D02"
    GASTOS_FUNERALES = "D03"
    DONATIVOS = "D04"
    INTERESES_CREDITOS_HIPOTECARIOS = "D05"
    APORTACIONES_SAR = "D06"
    PRIMAS_SEGUROS_GASTOS_MEDICOS = "D07"
    GASTOS_TRANSPORTACION_ESCOLAR = "D08"
    DEPOSITOS_CUENTAS_AHORRO = "D09"
    PAGOS_SERVICIOS_EDUCATIVOS = "D10"
    SIN_EFECTOS_FISCALES = "S01"
    PAGOS = "CP01"
    NOMINA = "CN01"


class RegimenFiscal(str, Enum):
    GENERAL_LEY_PERSONAS_MORALES = "601"
    PERSONAS_MORALES_FINES_NO_LUCRATIVOS = "603"
    SUELDOS_SALARIOS = "605"
    ARRENDAMIENTO = "606"
    ENAJENACION_ADQUISICION_BIENES = "607"
    DEMAS_INGRESOS = "608"
    RESIDENTES_EXTRANJERO_ESTABLECIMIENTO = "609"
    RESIDENTES_EXTRANJERO_SIN_ESTABLECIMIENTO = "610"
    INGRESOS_DIVIDENDOS = "611"
    PERSONAS_FISICAS_ACTIVIDADES_EMPRESARIALES = "612"
    INGRESOS_INTERESES = "614"
    INGRESOS_PREMIOS = "615"
    SIN_OBLIGACIONES_FISCALES = "616"
    SOCIEDADES_COOPERATIVAS_PRODUCCION = "620"
    INCORPORACION_FISCAL = "621"
    ACTIVIDADES_AGRICOLAS_GANADERAS = "622"
    OPCIONAL_GRUPOS_SOCIEDADES = "623"
    COORDINADOS = "624"
    ACTIVIDADES_EMPRESARIALES_PLATAFORMAS = "625"
    SIMPLIFICADO_CONFIANZA = "626"


class Impuesto(str, Enum):
    ISR = "001"
    IVA = "002"
    IEPS = "003"


class TipoFactor(str, Enum):
    TASA = "Tasa"
    CUOTA = "Cuota"
    EXENTO = "Exento"


class ObjetoImp(str, Enum):
    NO_OBJETO_IMPUESTO = "01"
    SI_OBJETO_IMPUESTO = "02"
    SI_OBJETO_NO_OBLIGADO_DESGLOSE = "03"
    SI_OBJETO_NO_CAUSA_IMPUESTO = "04"


class TipoRelacion(str, Enum):
    NOTA_CREDITO = "01"
    NOTA_DEBITO = "02"
    DEVOLUCION_MERCANCIA = "03"
    SUSTITUCION_CFDI_PREVIOS = "04"
    TRASLADOS_MERCANCIAS_PREVIAMENTE = "05"
    FACTURA_TRASLADOS_PREVIOS = "06"
    CFDI_APLICACION_ANTICIPO = "07"
    FACTURA_PAGOS_DIFERIDO = "08"
    FACTURA_PARCIALIDADES = "09"


class MotivoCancelacion(str, Enum):
    ERRORES_CON_RELACION = "01"  # Requires folio_sustitucion
    ERRORES_SIN_RELACION = "02"
    NO_SE_LLEVO_OPERACION = "03"
    OPERACION_NOMINATIVA_FACTURA_GLOBAL = "04"


class CfdiStatus(str, Enum):
    DRAFT = "draft"
    SEALED = "sealed"
    STAMPED = "stamped"
    VALID = "valid"
    CANCELLED = "cancelled"
    CANCELLATION_PENDING = "cancellation_pending"
    CANCELLATION_REJECTED = "cancellation_rejected"


# ─────────────────────────────────────────────────────────────
# BASE
# Catalogue fields are plain strings so that local validation can
# report unknown codes instead of failing at construction time.
# Enum members are stored as their SAT code.
# ─────────────────────────────────────────────────────────────

class CfdiModel(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    @field_validator("*", mode="before")
    @classmethod
    def _enum_to_code(cls, value: Any) -> Any:
        if isinstance(value, Enum):
            return value.value
        return value


# ─────────────────────────────────────────────────────────────
# PARTIES
# ─────────────────────────────────────────────────────────────

class Emisor(CfdiModel):
    rfc: str
    nombre: str
    regimen_fiscal: str
    fac_atr_adquirente: Optional[str] = None


class Receptor(CfdiModel):
    rfc: str
    nombre: str
    domicilio_fiscal_receptor: str = Field(..., description="Código postal (5 dígitos)")
    regimen_fiscal_receptor: str
    uso_cfdi: str
    residencia_fiscal: Optional[str] = None
    num_reg_id_trib: Optional[str] = None


# ─────────────────────────────────────────────────────────────
# CONCEPTOS
# ─────────────────────────────────────────────────────────────

class ImpuestoDetalle(CfdiModel):
    base: float
    impuesto: str
    tipo_factor: str
    tasa_o_cuota: Optional[float] = None
    importe: Optional[float] = None


class ImpuestosConcepto(CfdiModel):
    traslados: list[ImpuestoDetalle] = Field(default_factory=list)
    retenciones: list[ImpuestoDetalle] = Field(default_factory=list)


class InformacionAduanera(CfdiModel):
    numero_pedimento: str


class CuentaPredial(CfdiModel):
    numero: str


class ACuentaTerceros(CfdiModel):
    rfc_a_cuenta_terceros: str
    nombre_a_cuenta_terceros: str
    regimen_fiscal_a_cuenta_terceros: str
    domicilio_fiscal_a_cuenta_terceros: str


class Parte(CfdiModel):
    clave_prod_serv: str
    no_identificacion: Optional[str] = None
    cantidad: float
    clave_unidad: Optional[str] = None
    unidad: Optional[str] = None
    descripcion: str
    valor_unitario: Optional[float] = None
    importe: Optional[float] = None
    informacion_aduanera: list[InformacionAduanera] = Field(default_factory=list)


class Concepto(CfdiModel):
    clave_prod_serv: str
    no_identificacion: Optional[str] = None
    cantidad: float
    clave_unidad: str
    unidad: Optional[str] = None
    descripcion: str
    valor_unitario: float
    importe: float
    descuento: Optional[float] = None
    objeto_imp: str
    impuestos: Optional[ImpuestosConcepto] = None
    a_cuenta_terceros: Optional[ACuentaTerceros] = None
    informacion_aduanera: list[InformacionAduanera] = Field(default_factory=list)
    cuenta_predial: list[CuentaPredial] = Field(default_factory=list)
    complemento_concepto: Optional[dict] = None
    parte: list[Parte] = Field(default_factory=list)


# ─────────────────────────────────────────────────────────────
# DOCUMENT-LEVEL TAXES / RELATIONS
# ─────────────────────────────────────────────────────────────

class TrasladoResumen(CfdiModel):
    base: float
    impuesto: str
    tipo_factor: str
    tasa_o_cuota: Optional[float] = None
    importe: Optional[float] = None


class RetencionResumen(CfdiModel):
    impuesto: str
    importe: float


class Impuestos(CfdiModel):
    total_impuestos_trasladados: Optional[float] = None
    total_impuestos_retenidos: Optional[float] = None
    traslados: list[TrasladoResumen] = Field(default_factory=list)
    retenciones: list[RetencionResumen] = Field(default_factory=list)


class CfdiRelacionados(CfdiModel):
    tipo_relacion: str
    uuids: list[str] = Field(default_factory=list)


class InformacionGlobal(CfdiModel):
    periodicidad: str = Field(..., description="01 diario .. 05 bimestral")
    meses: str
    anio: int


class TimbreFiscalDigital(CfdiModel):
    version: str = "1.1"
    uuid: str
    fecha_timbrado: str
    rfc_prov_certif: str
    sello_cfd: str
    no_certificado_sat: str
    sello_sat: str


# ─────────────────────────────────────────────────────────────
# PAGOS 2.0 COMPLEMENT
# ─────────────────────────────────────────────────────────────

class Pagos20Totales(CfdiModel):
    total_retenciones_iva: Optional[float] = None
    total_retenciones_isr: Optional[float] = None
    total_retenciones_ieps: Optional[float] = None
    total_traslados_base_iva16: Optional[float] = None
    total_traslados_impuesto_iva16: Optional[float] = None
    total_traslados_base_iva8: Optional[float] = None
    total_traslados_impuesto_iva8: Optional[float] = None
    total_traslados_base_iva0: Optional[float] = None
    total_traslados_impuesto_iva0: Optional[float] = None
    total_traslados_base_iva_exento: Optional[float] = None
    monto_total_pagos: float


class Pagos20RetencionDR(CfdiModel):
    base_dr: float
    impuesto_dr: str
    tipo_factor_dr: str
    tasa_o_cuota_dr: float
    importe_dr: float


class Pagos20TrasladoDR(CfdiModel):
    base_dr: float
    impuesto_dr: str
    tipo_factor_dr: str
    tasa_o_cuota_dr: Optional[float] = None
    importe_dr: Optional[float] = None


class Pagos20ImpuestosDR(CfdiModel):
    retenciones_dr: list[Pagos20RetencionDR] = Field(default_factory=list)
    traslados_dr: list[Pagos20TrasladoDR] = Field(default_factory=list)


class Pagos20RetencionP(CfdiModel):
    impuesto_p: str
    importe_p: float


class Pagos20TrasladoP(CfdiModel):
    base_p: float
    impuesto_p: str
    tipo_factor_p: str
    tasa_o_cuota_p: Optional[float] = None
    importe_p: Optional[float] = None


class Pagos20ImpuestosP(CfdiModel):
    retenciones_p: list[Pagos20RetencionP] = Field(default_factory=list)
    traslados_p: list[Pagos20TrasladoP] = Field(default_factory=list)


class Pagos20DoctoRelacionado(CfdiModel):
    id_documento: str
    serie: Optional[str] = None
    folio: Optional[str] = None
    moneda_dr: str
    equivalencia_dr: float = 1
    num_parcialidad: int
    imp_saldo_ant: float
    imp_pagado: float
    imp_saldo_insoluto: float
    objeto_imp_dr: str
    impuestos_dr: Optional[Pagos20ImpuestosDR] = None


class Pagos20Pago(CfdiModel):
    fecha_pago: str
    forma_de_pago_p: str
    moneda_p: str
    tipo_cambio_p: Optional[float] = None
    monto: float
    rfc_emisor_cta_ord: Optional[str] = None
    nom_banco_ord_ext: Optional[str] = None
    cta_ordenante: Optional[str] = None
    rfc_emisor_cta_ben: Optional[str] = None
    cta_beneficiario: Optional[str] = None
    tipo_cad_pago: Optional[str] = None
    cert_pago: Optional[str] = None
    cad_pago: Optional[str] = None
    sello_pago: Optional[str] = None
    docto_relacionado: list[Pagos20DoctoRelacionado] = Field(default_factory=list)
    impuestos_p: Optional[Pagos20ImpuestosP] = None


class Pagos20(CfdiModel):
    version: str = "2.0"
    totales: Pagos20Totales
    pago: list[Pagos20Pago] = Field(default_factory=list)


# ─────────────────────────────────────────────────────────────
# COMERCIO EXTERIOR 2.0 COMPLEMENT
# ─────────────────────────────────────────────────────────────

class CceDomicilio(CfdiModel):
    calle: str
    numero_exterior: Optional[str] = None
    numero_interior: Optional[str] = None
    colonia: Optional[str] = None
    localidad: Optional[str] = None
    referencia: Optional[str] = None
    municipio: Optional[str] = None
    estado: str
    pais: str
    codigo_postal: str


class CcePropietario(CfdiModel):
    num_reg_id_trib: str
    residencia_fiscal: str


class CceDestinatario(CfdiModel):
    num_reg_id_trib: Optional[str] = None
    nombre: Optional[str] = None
    domicilio: Optional[CceDomicilio] = None


class CceDescripcionEspecifica(CfdiModel):
    marca: str
    modelo: Optional[str] = None
    sub_modelo: Optional[str] = None
    numero_serie: Optional[str] = None


class CceMercancia(CfdiModel):
    no_identificacion: str
    fraccion_arancelaria: Optional[str] = None
    cantidad_aduana: Optional[float] = None
    unidad_aduana: Optional[str] = None
    valor_unitario_aduana: Optional[float] = None
    valor_dolares: float
    descripciones_especificas: list[CceDescripcionEspecifica] = Field(default_factory=list)


class ComercioExterior(CfdiModel):
    version: str = "2.0"
    motivo_traslado: Optional[str] = None
    clave_de_pedimento: Optional[str] = None
    certificado_origen: Optional[int] = None
    num_certificado_origen: Optional[str] = None
    num_exportador_confiable: Optional[str] = None
    incoterm: Optional[str] = None
    subdivision: Optional[int] = None
    observaciones: Optional[str] = None
    tipo_cambio_usd: float
    total_usd: float
    emisor_domicilio: Optional[CceDomicilio] = None
    propietario: list[CcePropietario] = Field(default_factory=list)
    destinatario: list[CceDestinatario] = Field(default_factory=list)
    mercancias: list[CceMercancia] = Field(default_factory=list)


# ─────────────────────────────────────────────────────────────
# ADDENDA (retailer-specific)
# ─────────────────────────────────────────────────────────────

class AddendaAmazon(CfdiModel):
    vendor_code: str
    ship_to_location_code: str
    bill_to_location_code: str
    purchase_order_number: str
    purchase_order_date: str
    delivery_note_number: Optional[str] = None
    asn_number: Optional[str] = None


class AddendaWalmart(CfdiModel):
    provider_number: str
    store_number: str
    purchase_order_number: str
    invoice_type: str = "Normal"  # Normal | Devolucion
    delivery_date: Optional[str] = None
    reference: Optional[str] = None


class AddendaLiverpool(CfdiModel):
    provider_number: str
    purchase_order_number: str
    delivery_number: Optional[str] = None
    reference1: Optional[str] = None
    reference2: Optional[str] = None


class AddendaSoriana(CfdiModel):
    provider_number: str
    order_number: str
    store_number: str
    delivery_folio: Optional[str] = None


class Addenda(CfdiModel):
    custom: Optional[str] = Field(None, description="Raw XML, emitted verbatim")
    amazon: Optional[AddendaAmazon] = None
    walmart: Optional[AddendaWalmart] = None
    liverpool: Optional[AddendaLiverpool] = None
    soriana: Optional[AddendaSoriana] = None


class Complemento(CfdiModel):
    timbre_fiscal_digital: Optional[TimbreFiscalDigital] = None
    pagos: Optional[Pagos20] = None
    comercio_exterior: Optional[ComercioExterior] = None


# ─────────────────────────────────────────────────────────────
# COMPROBANTE
# ─────────────────────────────────────────────────────────────

class Comprobante(CfdiModel):
    """CFDI 4.0 root document."""
    version: str = "4.0"
    serie: Optional[str] = None
    folio: Optional[str] = None
    fecha: str = Field(..., description="YYYY-MM-DDTHH:MM:SS, hora local del emisor")
    sello: Optional[str] = None
    forma_pago: Optional[str] = None
    no_certificado: Optional[str] = None
    certificado: Optional[str] = None
    condiciones_de_pago: Optional[str] = None
    sub_total: float
    descuento: Optional[float] = None
    moneda: str = "MXN"
    tipo_cambio: Optional[float] = None
    total: float
    tipo_de_comprobante: str = TipoComprobante.INGRESO.value
    exportacion: str = Exportacion.NO_APLICA.value
    metodo_pago: Optional[str] = None
    lugar_expedicion: str
    confirmacion: Optional[str] = None
    informacion_global: Optional[InformacionGlobal] = None
    cfdi_relacionados: list[CfdiRelacionados] = Field(default_factory=list)
    emisor: Emisor
    receptor: Receptor
    conceptos: list[Concepto] = Field(default_factory=list)
    impuestos: Optional[Impuestos] = None
    complemento: Optional[Complemento] = None
    addenda: Optional[Addenda] = None

    @property
    def serie_folio(self) -> str:
        return f"{self.serie or ''}{self.folio or ''}"


# ─────────────────────────────────────────────────────────────
# CERTIFICATES
# ─────────────────────────────────────────────────────────────

class CsdCertificate(BaseModel):
    """CSD pair as handed over by the tenant (base64 DER, not persisted)."""
    no_certificado: str
    certificado: str = Field(..., description=".cer en base64 (DER)")
    private_key: str = Field(..., description=".key en base64 (PKCS#8 DER cifrado)")
    password: str
    rfc_emisor: str
    valid_to: Optional[datetime] = None


class CertificateInfo(BaseModel):
    serial_number: str
    no_certificado: str
    rfc: str
    nombre: str
    valid_from: datetime
    valid_to: datetime
    is_valid: bool
    certificado_base64: str


class SealResult(BaseModel):
    sello: str
    cadena_original: str


# ─────────────────────────────────────────────────────────────
# PAC
# ─────────────────────────────────────────────────────────────

class PacConfig(BaseModel):
    pac_name: str
    production_url: str = ""
    sandbox_url: str = ""
    username: str = ""
    password: str = ""
    sandbox: bool = True
    rfc_reseller: Optional[str] = None

    @property
    def base_url(self) -> str:
        return self.sandbox_url if self.sandbox else self.production_url


class StampRequest(BaseModel):
    xml: str
    allow_duplicates: bool = False


class StampResponse(BaseModel):
    success: bool
    xml: Optional[str] = None
    uuid: Optional[str] = None
    fecha_timbrado: Optional[str] = None
    no_certificado_sat: Optional[str] = None
    sello_sat: Optional[str] = None
    cadena_original: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class CancelRequest(BaseModel):
    uuid: str
    rfc_emisor: str
    rfc_receptor: str
    total: float
    motivo: MotivoCancelacion
    folio_sustitucion: Optional[str] = None


class CancelResponse(BaseModel):
    success: bool
    acuse: Optional[str] = None
    status: Optional[str] = Field(None, description="cancelled | pending | rejected")
    status_date: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class PacStatus(BaseModel):
    status: str = "unknown"
    error: Optional[str] = None


# ─────────────────────────────────────────────────────────────
# SAT VALIDATION
# ─────────────────────────────────────────────────────────────

class SatValidationRequest(BaseModel):
    uuid: str
    rfc_emisor: str
    rfc_receptor: str
    total: float


class SatValidationResponse(BaseModel):
    valid: bool
    estado: Optional[str] = Field(None, description="Vigente | Cancelado | No Encontrado")
    es_cancelable: Optional[str] = None
    estatus_cancelacion: Optional[str] = None
    fecha_validacion: Optional[str] = None
    error: Optional[str] = None


class ValidationIssue(BaseModel):
    code: str
    message: str
    field: Optional[str] = None
    severity: str = "error"  # error | warning
    catalog_reference: Optional[str] = None


class ValidationResult(BaseModel):
    valid: bool
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)
    validated_at: datetime


# ─────────────────────────────────────────────────────────────
# PDF
# ─────────────────────────────────────────────────────────────

class PdfOptions(BaseModel):
    comprobante: Comprobante
    timbre: Optional[TimbreFiscalDigital] = None
    cadena_original: Optional[str] = None
    logo: Optional[str] = Field(None, description="PNG en base64")
    template: str = "standard"
    primary_color: str = "#1a5276"
    secondary_color: str = "#f8f9fa"
    show_qr: bool = True
    notes: Optional[str] = None


class PdfGenerationResult(BaseModel):
    success: bool
    pdf: Optional[bytes] = None
    error: Optional[str] = None


# ─────────────────────────────────────────────────────────────
# DOCUMENT LIFECYCLE
# ─────────────────────────────────────────────────────────────

class StatusHistoryEntry(BaseModel):
    status: CfdiStatus
    timestamp: datetime
    message: Optional[str] = None
    user_id: Optional[str] = None


class CancellationInfo(BaseModel):
    motivo: MotivoCancelacion
    folio_sustitucion: Optional[str] = None
    requested_at: datetime
    processed_at: Optional[datetime] = None
    acuse: Optional[str] = None


class CfdiDocument(BaseModel):
    document_id: str
    tenant_id: str
    status: CfdiStatus = CfdiStatus.DRAFT
    comprobante: Comprobante
    sealed_xml: Optional[str] = None
    stamped_xml: Optional[str] = None
    timbre: Optional[TimbreFiscalDigital] = None
    cadena_original: Optional[str] = None
    qr_string: Optional[str] = None
    pdf: Optional[str] = Field(None, description="PDF en base64")
    created_at: datetime
    updated_at: datetime
    status_history: list[StatusHistoryEntry] = Field(default_factory=list)
    cancellation: Optional[CancellationInfo] = None
    validation_errors: list[ValidationIssue] = Field(default_factory=list)


class CreateDocumentOptions(BaseModel):
    tenant_id: str
    csd: CsdCertificate
    generate_pdf: bool = False
    pdf_logo: Optional[str] = None
    validate_with_sat: bool = False
    pac_config: Optional[PacConfig] = None


class CreateInvoiceOptions(CreateDocumentOptions):
    pagos: Optional[Pagos20] = None
    comercio_exterior: Optional[ComercioExterior] = None
    addenda: Optional[Addenda] = None


class DocumentProcessingResult(BaseModel):
    success: bool
    document: Optional[CfdiDocument] = None
    error: Optional[str] = None
    validation_result: Optional[ValidationResult] = None


class StatusChangeEvent(BaseModel):
    document_id: str
    status: CfdiStatus
    previous_status: Optional[CfdiStatus] = None
    message: Optional[str] = None
    timestamp: datetime


StatusChangeCallback = Callable[[StatusChangeEvent], None]
