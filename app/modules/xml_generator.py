"""
B2B-INTEGRATIONS — CFDI Module 1: XmlGenerator
Serializes a Comprobante into CFDI 4.0 XML and computes its cadena original.

Flow:
1. Comprobante model arrives fully populated (totals already computed)
2. generate_cadena_original() walks the fields in the SAT XSLT order
3. SignatureService seals that string and sets Sello/NoCertificado/Certificado
4. generate_cfdi() serializes the sealed model; that XML goes to the PAC

SAT serialization rules:
- Attribute order on every element is fixed (see _root_attrs and builders)
- Amounts: 2 decimals. TasaOCuota: 6 decimals.
- Optional attributes are omitted, never emitted empty
- Cadena original: "||" + "|".join(values) + "||", absent values skipped
- TipoFactor "Exento" carries neither TasaOCuota nor Importe
"""

import logging
from typing import Any, Optional

from app.schemas.cfdi import (
    Addenda,
    CceDestinatario,
    CceDomicilio,
    CceMercancia,
    CfdiRelacionados,
    ComercioExterior,
    Complemento,
    Comprobante,
    Concepto,
    Emisor,
    Impuestos,
    ImpuestosConcepto,
    InformacionGlobal,
    Pagos20,
    Pagos20DoctoRelacionado,
    Pagos20ImpuestosDR,
    Pagos20ImpuestosP,
    Pagos20Pago,
    Pagos20Totales,
    Parte,
    Receptor,
    TimbreFiscalDigital,
    TipoFactor,
)
from app.utils.cfdi_helpers import code, escape_xml, format_amount, format_quantity, format_rate

logger = logging.getLogger(__name__)

CFDI_NAMESPACE = "http://www.sat.gob.mx/cfd/4"
XSI_NAMESPACE = "http://www.w3.org/2001/XMLSchema-instance"
TFD_NAMESPACE = "http://www.sat.gob.mx/TimbreFiscalDigital"
PAGOS20_NAMESPACE = "http://www.sat.gob.mx/Pagos20"
CCE20_NAMESPACE = "http://www.sat.gob.mx/ComercioExterior20"

CFDI_SCHEMA_LOCATION = (
    "http://www.sat.gob.mx/cfd/4 http://www.sat.gob.mx/sitio_internet/cfd/4/cfdv40.xsd"
)
TFD_SCHEMA_LOCATION = (
    "http://www.sat.gob.mx/TimbreFiscalDigital "
    "http://www.sat.gob.mx/sitio_internet/cfd/TimbreFiscalDigital/TimbreFiscalDigitalv11.xsd"
)
PAGOS20_SCHEMA_LOCATION = (
    "http://www.sat.gob.mx/Pagos20 http://www.sat.gob.mx/sitio_internet/cfd/Pagos/Pagos20.xsd"
)
CCE20_SCHEMA_LOCATION = (
    "http://www.sat.gob.mx/ComercioExterior20 "
    "http://www.sat.gob.mx/sitio_internet/cfd/ComercioExterior20/ComercioExterior20.xsd"
)

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'


def _attrs(pairs: list[tuple[str, Any]]) -> str:
    """Render (name, value) pairs in order, dropping None/empty values."""
    out = []
    for name, value in pairs:
        if value is None or value == "":
            continue
        out.append(f'{name}="{escape_xml(code(value))}"')
    return " ".join(out)


def _amt(value: Optional[float]) -> Optional[str]:
    return None if value is None else format_amount(value)


def _rate(value: Optional[float]) -> Optional[str]:
    return None if value is None else format_rate(value)


def _qty(value: Optional[float]) -> Optional[str]:
    return None if value is None else format_quantity(value)


def _element(tag: str, pairs: list[tuple[str, Any]], children: Optional[list[str]] = None) -> str:
    attrs = _attrs(pairs)
    open_tag = f"<{tag} {attrs}" if attrs else f"<{tag}"
    if not children:
        return f"{open_tag}/>"
    return "\n".join([f"{open_tag}>", *children, f"</{tag}>"])


class XmlGenerator:
    """
    Builds CFDI 4.0 XML and the cadena original from a Comprobante.

    Usage:
        gen = XmlGenerator()
        cadena = gen.generate_cadena_original(comprobante)
        xml = gen.generate_cfdi(sealed_comprobante)
    """

    # ═════════════════════════════════════════════════════════
    # XML
    # ═════════════════════════════════════════════════════════

    def generate_cfdi(self, comprobante: Comprobante) -> str:
        logger.debug(f"Generating CFDI XML for {comprobante.serie_folio}")

        parts = [XML_DECLARATION, self._root_open(comprobante)]
        if comprobante.informacion_global:
            parts.append(self._informacion_global(comprobante.informacion_global))
        if comprobante.cfdi_relacionados:
            parts.append(self._cfdi_relacionados(comprobante.cfdi_relacionados))
        parts.append(self._emisor(comprobante.emisor))
        parts.append(self._receptor(comprobante.receptor))
        parts.append(self._conceptos(comprobante.conceptos))
        if comprobante.impuestos:
            parts.append(self._impuestos(comprobante.impuestos))
        if comprobante.complemento and self._has_complement(comprobante.complemento):
            parts.append(self._complemento(comprobante.complemento))
        if comprobante.addenda:
            parts.append(self._addenda(comprobante.addenda))
        parts.append("</cfdi:Comprobante>")
        return "\n".join(parts)

    @staticmethod
    def _has_complement(comp: Complemento) -> bool:
        return bool(comp.timbre_fiscal_digital or comp.pagos or comp.comercio_exterior)

    def _schema_locations(self, c: Comprobante) -> str:
        locations = [CFDI_SCHEMA_LOCATION]
        comp = c.complemento
        if comp:
            if comp.timbre_fiscal_digital:
                locations.append(TFD_SCHEMA_LOCATION)
            if comp.pagos:
                locations.append(PAGOS20_SCHEMA_LOCATION)
            if comp.comercio_exterior:
                locations.append(CCE20_SCHEMA_LOCATION)
        return " ".join(locations)

    def _root_open(self, c: Comprobante) -> str:
        pairs: list[tuple[str, Any]] = [
            ("xmlns:cfdi", CFDI_NAMESPACE),
            ("xmlns:xsi", XSI_NAMESPACE),
            ("xsi:schemaLocation", self._schema_locations(c)),
            ("Version", c.version),
        ]
        comp = c.complemento
        if comp:
            if comp.timbre_fiscal_digital:
                pairs.append(("xmlns:tfd", TFD_NAMESPACE))
            if comp.pagos:
                pairs.append(("xmlns:pago20", PAGOS20_NAMESPACE))
            if comp.comercio_exterior:
                pairs.append(("xmlns:cce20", CCE20_NAMESPACE))
        pairs += [
            ("Serie", c.serie),
            ("Folio", c.folio),
            ("Fecha", c.fecha),
            ("Sello", c.sello),
            ("FormaPago", c.forma_pago),
            ("NoCertificado", c.no_certificado),
            ("Certificado", c.certificado),
            ("CondicionesDePago", c.condiciones_de_pago),
            ("SubTotal", _amt(c.sub_total)),
            ("Descuento", _amt(c.descuento)),
            ("Moneda", c.moneda),
            ("TipoCambio", _amt(c.tipo_cambio)),
            ("Total", _amt(c.total)),
            ("TipoDeComprobante", c.tipo_de_comprobante),
            ("Exportacion", c.exportacion),
            ("MetodoPago", c.metodo_pago),
            ("LugarExpedicion", c.lugar_expedicion),
            ("Confirmacion", c.confirmacion),
        ]
        return f"<cfdi:Comprobante {_attrs(pairs)}>"

    def _informacion_global(self, info: InformacionGlobal) -> str:
        return _element("cfdi:InformacionGlobal", [
            ("Periodicidad", info.periodicidad),
            ("Meses", info.meses),
            ("Año", str(info.anio)),
        ])

    def _cfdi_relacionados(self, grupos: list[CfdiRelacionados]) -> str:
        blocks = []
        for grupo in grupos:
            children = [_element("cfdi:CfdiRelacionado", [("UUID", u)]) for u in grupo.uuids]
            blocks.append(_element("cfdi:CfdiRelacionados", [("TipoRelacion", grupo.tipo_relacion)], children))
        return "\n".join(blocks)

    def _emisor(self, e: Emisor) -> str:
        return _element("cfdi:Emisor", [
            ("Rfc", e.rfc),
            ("Nombre", e.nombre),
            ("RegimenFiscal", e.regimen_fiscal),
            ("FacAtrAdquirente", e.fac_atr_adquirente),
        ])

    def _receptor(self, r: Receptor) -> str:
        return _element("cfdi:Receptor", [
            ("Rfc", r.rfc),
            ("Nombre", r.nombre),
            ("DomicilioFiscalReceptor", r.domicilio_fiscal_receptor),
            ("RegimenFiscalReceptor", r.regimen_fiscal_receptor),
            ("UsoCFDI", r.uso_cfdi),
            ("ResidenciaFiscal", r.residencia_fiscal),
            ("NumRegIdTrib", r.num_reg_id_trib),
        ])

    def _conceptos(self, conceptos: list[Concepto]) -> str:
        return "\n".join(["<cfdi:Conceptos>", *[self._concepto(c) for c in conceptos], "</cfdi:Conceptos>"])

    def _concepto(self, c: Concepto) -> str:
        pairs = [
            ("ClaveProdServ", c.clave_prod_serv),
            ("NoIdentificacion", c.no_identificacion),
            ("Cantidad", _qty(c.cantidad)),
            ("ClaveUnidad", c.clave_unidad),
            ("Unidad", c.unidad),
            ("Descripcion", c.descripcion),
            ("ValorUnitario", _amt(c.valor_unitario)),
            ("Importe", _amt(c.importe)),
            ("Descuento", _amt(c.descuento)),
            ("ObjetoImp", c.objeto_imp),
        ]
        children: list[str] = []
        if c.impuestos:
            children.append(self._concepto_impuestos(c.impuestos))
        if c.a_cuenta_terceros:
            t = c.a_cuenta_terceros
            children.append(_element("cfdi:ACuentaTerceros", [
                ("RfcACuentaTerceros", t.rfc_a_cuenta_terceros),
                ("NombreACuentaTerceros", t.nombre_a_cuenta_terceros),
                ("RegimenFiscalACuentaTerceros", t.regimen_fiscal_a_cuenta_terceros),
                ("DomicilioFiscalACuentaTerceros", t.domicilio_fiscal_a_cuenta_terceros),
            ]))
        for aduana in c.informacion_aduanera:
            children.append(_element("cfdi:InformacionAduanera", [("NumeroPedimento", aduana.numero_pedimento)]))
        for predial in c.cuenta_predial:
            children.append(_element("cfdi:CuentaPredial", [("Numero", predial.numero)]))
        if c.complemento_concepto is not None:
            # Concept-level complements are opaque; only the wrapper is emitted
            children.append("<cfdi:ComplementoConcepto>\n</cfdi:ComplementoConcepto>")
        for parte in c.parte:
            children.append(self._parte(parte))
        return _element("cfdi:Concepto", pairs, children)

    def _parte(self, p: Parte) -> str:
        pairs = [
            ("ClaveProdServ", p.clave_prod_serv),
            ("NoIdentificacion", p.no_identificacion),
            ("Cantidad", _qty(p.cantidad)),
            ("ClaveUnidad", p.clave_unidad),
            ("Unidad", p.unidad),
            ("Descripcion", p.descripcion),
            ("ValorUnitario", _amt(p.valor_unitario)),
            ("Importe", _amt(p.importe)),
        ]
        children = [
            _element("cfdi:InformacionAduanera", [("NumeroPedimento", a.numero_pedimento)])
            for a in p.informacion_aduanera
        ]
        return _element("cfdi:Parte", pairs, children)

    def _traslado_pairs(self, base, impuesto, tipo_factor, tasa, importe) -> list[tuple[str, Any]]:
        pairs = [("Base", _amt(base)), ("Impuesto", impuesto), ("TipoFactor", tipo_factor)]
        if code(tipo_factor) != TipoFactor.EXENTO.value:
            pairs += [("TasaOCuota", _rate(tasa)), ("Importe", _amt(importe))]
        return pairs

    def _retencion_pairs(self, r) -> list[tuple[str, Any]]:
        """Concept retentions always carry TasaOCuota and Importe."""
        return [
            ("Base", _amt(r.base)),
            ("Impuesto", r.impuesto),
            ("TipoFactor", r.tipo_factor),
            ("TasaOCuota", format_rate(r.tasa_o_cuota or 0)),
            ("Importe", format_amount(r.importe or 0)),
        ]

    def _concepto_impuestos(self, imp: ImpuestosConcepto) -> str:
        children = []
        if imp.traslados:
            children.append("\n".join([
                "<cfdi:Traslados>",
                *[_element("cfdi:Traslado", self._traslado_pairs(t.base, t.impuesto, t.tipo_factor, t.tasa_o_cuota, t.importe))
                  for t in imp.traslados],
                "</cfdi:Traslados>",
            ]))
        if imp.retenciones:
            children.append("\n".join([
                "<cfdi:Retenciones>",
                *[_element("cfdi:Retencion", self._retencion_pairs(r)) for r in imp.retenciones],
                "</cfdi:Retenciones>",
            ]))
        return "\n".join(["<cfdi:Impuestos>", *children, "</cfdi:Impuestos>"])

    def _impuestos(self, imp: Impuestos) -> str:
        attrs = _attrs([
            ("TotalImpuestosRetenidos", _amt(imp.total_impuestos_retenidos)),
            ("TotalImpuestosTrasladados", _amt(imp.total_impuestos_trasladados)),
        ])
        parts = [f"<cfdi:Impuestos {attrs}>" if attrs else "<cfdi:Impuestos>"]
        if imp.retenciones:
            parts.append("<cfdi:Retenciones>")
            for r in imp.retenciones:
                parts.append(_element("cfdi:Retencion", [("Impuesto", r.impuesto), ("Importe", _amt(r.importe))]))
            parts.append("</cfdi:Retenciones>")
        if imp.traslados:
            parts.append("<cfdi:Traslados>")
            for t in imp.traslados:
                parts.append(_element("cfdi:Traslado", self._traslado_pairs(t.base, t.impuesto, t.tipo_factor, t.tasa_o_cuota, t.importe)))
            parts.append("</cfdi:Traslados>")
        parts.append("</cfdi:Impuestos>")
        return "\n".join(parts)

    # === COMPLEMENTO ===

    def _complemento(self, comp: Complemento) -> str:
        parts = ["<cfdi:Complemento>"]
        if comp.timbre_fiscal_digital:
            parts.append(self.build_timbre(comp.timbre_fiscal_digital))
        if comp.pagos:
            parts.append(self._pagos20(comp.pagos))
        if comp.comercio_exterior:
            parts.append(self._comercio_exterior(comp.comercio_exterior))
        parts.append("</cfdi:Complemento>")
        return "\n".join(parts)

    def build_timbre(self, tfd: TimbreFiscalDigital, with_namespace: bool = False) -> str:
        pairs: list[tuple[str, Any]] = [("xmlns:tfd", TFD_NAMESPACE)] if with_namespace else []
        pairs += [
            ("Version", tfd.version),
            ("UUID", tfd.uuid),
            ("FechaTimbrado", tfd.fecha_timbrado),
            ("RfcProvCertif", tfd.rfc_prov_certif),
            ("SelloCFD", tfd.sello_cfd),
            ("NoCertificadoSAT", tfd.no_certificado_sat),
            ("SelloSAT", tfd.sello_sat),
        ]
        return _element("tfd:TimbreFiscalDigital", pairs)

    def _pagos20(self, pagos: Pagos20) -> str:
        parts = [f'<pago20:Pagos Version="{pagos.version}">', self._pagos20_totales(pagos.totales)]
        parts += [self._pagos20_pago(p) for p in pagos.pago]
        parts.append("</pago20:Pagos>")
        return "\n".join(parts)

    def _pagos20_totales(self, t: Pagos20Totales) -> str:
        return _element("pago20:Totales", [
            ("TotalRetencionesIVA", _amt(t.total_retenciones_iva)),
            ("TotalRetencionesISR", _amt(t.total_retenciones_isr)),
            ("TotalRetencionesIEPS", _amt(t.total_retenciones_ieps)),
            ("TotalTrasladosBaseIVA16", _amt(t.total_traslados_base_iva16)),
            ("TotalTrasladosImpuestoIVA16", _amt(t.total_traslados_impuesto_iva16)),
            ("TotalTrasladosBaseIVA8", _amt(t.total_traslados_base_iva8)),
            ("TotalTrasladosImpuestoIVA8", _amt(t.total_traslados_impuesto_iva8)),
            ("TotalTrasladosBaseIVA0", _amt(t.total_traslados_base_iva0)),
            ("TotalTrasladosImpuestoIVA0", _amt(t.total_traslados_impuesto_iva0)),
            ("TotalTrasladosBaseIVAExento", _amt(t.total_traslados_base_iva_exento)),
            ("MontoTotalPagos", _amt(t.monto_total_pagos)),
        ])

    def _pagos20_pago(self, p: Pagos20Pago) -> str:
        pairs = [
            ("FechaPago", p.fecha_pago),
            ("FormaDePagoP", p.forma_de_pago_p),
            ("MonedaP", p.moneda_p),
            ("TipoCambioP", _amt(p.tipo_cambio_p)),
            ("Monto", _amt(p.monto)),
            ("RfcEmisorCtaOrd", p.rfc_emisor_cta_ord),
            ("NomBancoOrdExt", p.nom_banco_ord_ext),
            ("CtaOrdenante", p.cta_ordenante),
            ("RfcEmisorCtaBen", p.rfc_emisor_cta_ben),
            ("CtaBeneficiario", p.cta_beneficiario),
            ("TipoCadPago", p.tipo_cad_pago),
            ("CertPago", p.cert_pago),
            ("CadPago", p.cad_pago),
            ("SelloPago", p.sello_pago),
        ]
        children = [self._pagos20_docto(d) for d in p.docto_relacionado]
        if p.impuestos_p:
            children.append(self._pagos20_impuestos_p(p.impuestos_p))
        # Pago always has at least one DoctoRelacionado, keep the open/close form
        return "\n".join([f"<pago20:Pago {_attrs(pairs)}>", *children, "</pago20:Pago>"])

    def _pagos20_docto(self, d: Pagos20DoctoRelacionado) -> str:
        pairs = [
            ("IdDocumento", d.id_documento),
            ("Serie", d.serie),
            ("Folio", d.folio),
            ("MonedaDR", d.moneda_dr),
            ("EquivalenciaDR", _amt(d.equivalencia_dr)),
            ("NumParcialidad", str(d.num_parcialidad)),
            ("ImpSaldoAnt", _amt(d.imp_saldo_ant)),
            ("ImpPagado", _amt(d.imp_pagado)),
            ("ImpSaldoInsoluto", _amt(d.imp_saldo_insoluto)),
            ("ObjetoImpDR", d.objeto_imp_dr),
        ]
        children = [self._pagos20_impuestos_dr(d.impuestos_dr)] if d.impuestos_dr else None
        return _element("pago20:DoctoRelacionado", pairs, children)

    def _pagos20_impuestos_dr(self, imp: Pagos20ImpuestosDR) -> str:
        parts = ["<pago20:ImpuestosDR>"]
        if imp.retenciones_dr:
            parts.append("<pago20:RetencionesDR>")
            for r in imp.retenciones_dr:
                parts.append(_element("pago20:RetencionDR", [
                    ("BaseDR", _amt(r.base_dr)),
                    ("ImpuestoDR", r.impuesto_dr),
                    ("TipoFactorDR", r.tipo_factor_dr),
                    ("TasaOCuotaDR", _rate(r.tasa_o_cuota_dr)),
                    ("ImporteDR", _amt(r.importe_dr)),
                ]))
            parts.append("</pago20:RetencionesDR>")
        if imp.traslados_dr:
            parts.append("<pago20:TrasladosDR>")
            for t in imp.traslados_dr:
                parts.append(_element("pago20:TrasladoDR", [
                    ("BaseDR", _amt(t.base_dr)),
                    ("ImpuestoDR", t.impuesto_dr),
                    ("TipoFactorDR", t.tipo_factor_dr),
                    ("TasaOCuotaDR", _rate(t.tasa_o_cuota_dr)),
                    ("ImporteDR", _amt(t.importe_dr)),
                ]))
            parts.append("</pago20:TrasladosDR>")
        parts.append("</pago20:ImpuestosDR>")
        return "\n".join(parts)

    def _pagos20_impuestos_p(self, imp: Pagos20ImpuestosP) -> str:
        parts = ["<pago20:ImpuestosP>"]
        if imp.retenciones_p:
            parts.append("<pago20:RetencionesP>")
            for r in imp.retenciones_p:
                parts.append(_element("pago20:RetencionP", [("ImpuestoP", r.impuesto_p), ("ImporteP", _amt(r.importe_p))]))
            parts.append("</pago20:RetencionesP>")
        if imp.traslados_p:
            parts.append("<pago20:TrasladosP>")
            for t in imp.traslados_p:
                parts.append(_element("pago20:TrasladoP", [
                    ("BaseP", _amt(t.base_p)),
                    ("ImpuestoP", t.impuesto_p),
                    ("TipoFactorP", t.tipo_factor_p),
                    ("TasaOCuotaP", _rate(t.tasa_o_cuota_p)),
                    ("ImporteP", _amt(t.importe_p)),
                ]))
            parts.append("</pago20:TrasladosP>")
        parts.append("</pago20:ImpuestosP>")
        return "\n".join(parts)

    def _comercio_exterior(self, cce: ComercioExterior) -> str:
        pairs = [
            ("Version", cce.version),
            ("MotivoTraslado", cce.motivo_traslado),
            ("ClaveDePedimento", cce.clave_de_pedimento),
            ("CertificadoOrigen", None if cce.certificado_origen is None else str(cce.certificado_origen)),
            ("NumCertificadoOrigen", cce.num_certificado_origen),
            ("NumExportadorConfiable", cce.num_exportador_confiable),
            ("Incoterm", cce.incoterm),
            ("Subdivision", None if cce.subdivision is None else str(cce.subdivision)),
            ("Observaciones", cce.observaciones),
            ("TipoCambioUSD", _amt(cce.tipo_cambio_usd)),
            ("TotalUSD", _amt(cce.total_usd)),
        ]
        children = []
        if cce.emisor_domicilio:
            children.append("\n".join(["<cce20:Emisor>", self._cce_domicilio(cce.emisor_domicilio), "</cce20:Emisor>"]))
        for prop in cce.propietario:
            children.append(_element("cce20:Propietario", [
                ("NumRegIdTrib", prop.num_reg_id_trib),
                ("ResidenciaFiscal", prop.residencia_fiscal),
            ]))
        for dest in cce.destinatario:
            children.append(self._cce_destinatario(dest))
        if cce.mercancias:
            children.append("\n".join([
                "<cce20:Mercancias>",
                *[self._cce_mercancia(m) for m in cce.mercancias],
                "</cce20:Mercancias>",
            ]))
        return "\n".join([f"<cce20:ComercioExterior {_attrs(pairs)}>", *children, "</cce20:ComercioExterior>"])

    def _cce_domicilio(self, d: CceDomicilio) -> str:
        return _element("cce20:Domicilio", [
            ("Calle", d.calle),
            ("NumeroExterior", d.numero_exterior),
            ("NumeroInterior", d.numero_interior),
            ("Colonia", d.colonia),
            ("Localidad", d.localidad),
            ("Referencia", d.referencia),
            ("Municipio", d.municipio),
            ("Estado", d.estado),
            ("Pais", d.pais),
            ("CodigoPostal", d.codigo_postal),
        ])

    def _cce_destinatario(self, d: CceDestinatario) -> str:
        pairs = [("NumRegIdTrib", d.num_reg_id_trib), ("Nombre", d.nombre)]
        children = [self._cce_domicilio(d.domicilio)] if d.domicilio else None
        return _element("cce20:Destinatario", pairs, children)

    def _cce_mercancia(self, m: CceMercancia) -> str:
        pairs = [
            ("NoIdentificacion", m.no_identificacion),
            ("FraccionArancelaria", m.fraccion_arancelaria),
            ("CantidadAduana", _amt(m.cantidad_aduana)),
            ("UnidadAduana", m.unidad_aduana),
            ("ValorUnitarioAduana", _amt(m.valor_unitario_aduana)),
            ("ValorDolares", _amt(m.valor_dolares)),
        ]
        children = [
            _element("cce20:DescripcionesEspecificas", [
                ("Marca", d.marca),
                ("Modelo", d.modelo),
                ("SubModelo", d.sub_modelo),
                ("NumeroSerie", d.numero_serie),
            ])
            for d in m.descripciones_especificas
        ]
        return _element("cce20:Mercancia", pairs, children)

    # === ADDENDA ===

    def _addenda(self, addenda: Addenda) -> str:
        parts = ["<cfdi:Addenda>"]
        if addenda.custom:
            parts.append(addenda.custom)
        if addenda.amazon:
            a = addenda.amazon
            parts.append(self._retailer_block("amz:AdditionalInformation", "amz", "http://amazon.com/cfdi/addenda", [
                ("VendorCode", a.vendor_code),
                ("ShipToLocationCode", a.ship_to_location_code),
                ("BillToLocationCode", a.bill_to_location_code),
                ("PurchaseOrderNumber", a.purchase_order_number),
                ("PurchaseOrderDate", a.purchase_order_date),
                ("DeliveryNoteNumber", a.delivery_note_number),
                ("ASNNumber", a.asn_number),
            ]))
        if addenda.walmart:
            w = addenda.walmart
            parts.append(self._retailer_block("wm:WalmartAddenda", "wm", "http://www.walmart.com.mx/cfdi/addenda", [
                ("ProviderNumber", w.provider_number),
                ("StoreNumber", w.store_number),
                ("PurchaseOrderNumber", w.purchase_order_number),
                ("InvoiceType", w.invoice_type),
                ("DeliveryDate", w.delivery_date),
                ("Reference", w.reference),
            ]))
        if addenda.liverpool:
            lp = addenda.liverpool
            parts.append(self._retailer_block("lp:LiverpoolAddenda", "lp", "http://www.liverpool.com.mx/cfdi/addenda", [
                ("ProviderNumber", lp.provider_number),
                ("PurchaseOrderNumber", lp.purchase_order_number),
                ("DeliveryNumber", lp.delivery_number),
                ("Reference1", lp.reference1),
                ("Reference2", lp.reference2),
            ]))
        if addenda.soriana:
            s = addenda.soriana
            parts.append(self._retailer_block("sor:SorianaAddenda", "sor", "http://www.soriana.com/cfdi/addenda", [
                ("ProviderNumber", s.provider_number),
                ("OrderNumber", s.order_number),
                ("StoreNumber", s.store_number),
                ("DeliveryFolio", s.delivery_folio),
            ]))
        parts.append("</cfdi:Addenda>")
        return "\n".join(parts)

    @staticmethod
    def _retailer_block(root: str, prefix: str, namespace: str, fields: list[tuple[str, Optional[str]]]) -> str:
        lines = [f'<{root} xmlns:{prefix}="{namespace}">']
        for name, value in fields:
            if value:
                lines.append(f"  <{prefix}:{name}>{escape_xml(value)}</{prefix}:{name}>")
        lines.append(f"</{root}>")
        return "\n".join(lines)

    # ═════════════════════════════════════════════════════════
    # CADENA ORIGINAL
    # ═════════════════════════════════════════════════════════

    def generate_cadena_original(self, c: Comprobante) -> str:
        parts: list[str] = []

        def add(value: Any) -> None:
            if value is None or value == "":
                return
            parts.append(code(value))

        add(c.version)
        add(c.serie)
        add(c.folio)
        add(c.fecha)
        add(c.forma_pago)
        add(c.no_certificado)
        add(c.condiciones_de_pago)
        add(_amt(c.sub_total))
        add(_amt(c.descuento))
        add(c.moneda)
        add(_amt(c.tipo_cambio))
        add(_amt(c.total))
        add(c.tipo_de_comprobante)
        add(c.exportacion)
        add(c.metodo_pago)
        add(c.lugar_expedicion)
        add(c.confirmacion)

        if c.informacion_global:
            add(c.informacion_global.periodicidad)
            add(c.informacion_global.meses)
            add(str(c.informacion_global.anio))

        for grupo in c.cfdi_relacionados:
            add(grupo.tipo_relacion)
            for uuid in grupo.uuids:
                add(uuid)

        add(c.emisor.rfc)
        add(c.emisor.nombre)
        add(c.emisor.regimen_fiscal)
        add(c.emisor.fac_atr_adquirente)

        r = c.receptor
        add(r.rfc)
        add(r.nombre)
        add(r.domicilio_fiscal_receptor)
        add(r.regimen_fiscal_receptor)
        add(r.uso_cfdi)
        add(r.residencia_fiscal)
        add(r.num_reg_id_trib)

        for concepto in c.conceptos:
            add(concepto.clave_prod_serv)
            add(concepto.no_identificacion)
            add(_qty(concepto.cantidad))
            add(concepto.clave_unidad)
            add(concepto.unidad)
            add(concepto.descripcion)
            add(_amt(concepto.valor_unitario))
            add(_amt(concepto.importe))
            add(_amt(concepto.descuento))
            add(concepto.objeto_imp)

            if concepto.impuestos:
                # Same values as the XML tax nodes
                for det in concepto.impuestos.traslados:
                    for _, value in self._traslado_pairs(det.base, det.impuesto, det.tipo_factor, det.tasa_o_cuota, det.importe):
                        add(value)
                for det in concepto.impuestos.retenciones:
                    for _, value in self._retencion_pairs(det):
                        add(value)

            if concepto.a_cuenta_terceros:
                t = concepto.a_cuenta_terceros
                add(t.rfc_a_cuenta_terceros)
                add(t.nombre_a_cuenta_terceros)
                add(t.regimen_fiscal_a_cuenta_terceros)
                add(t.domicilio_fiscal_a_cuenta_terceros)

            for aduana in concepto.informacion_aduanera:
                add(aduana.numero_pedimento)
            for predial in concepto.cuenta_predial:
                add(predial.numero)

            for parte in concepto.parte:
                add(parte.clave_prod_serv)
                add(parte.no_identificacion)
                add(_qty(parte.cantidad))
                add(parte.clave_unidad)
                add(parte.unidad)
                add(parte.descripcion)
                add(_amt(parte.valor_unitario))
                add(_amt(parte.importe))
                for aduana in parte.informacion_aduanera:
                    add(aduana.numero_pedimento)

        if c.impuestos:
            add(_amt(c.impuestos.total_impuestos_retenidos))
            add(_amt(c.impuestos.total_impuestos_trasladados))
            for ret in c.impuestos.retenciones:
                add(ret.impuesto)
                add(_amt(ret.importe))
            for tras in c.impuestos.traslados:
                for _, value in self._traslado_pairs(tras.base, tras.impuesto, tras.tipo_factor, tras.tasa_o_cuota, tras.importe):
                    add(value)

        return f"||{'|'.join(parts)}||"

    def generate_cadena_original_tfd(self, timbre: TimbreFiscalDigital, sello_cfd: str) -> str:
        parts = [
            timbre.version,
            timbre.uuid,
            timbre.fecha_timbrado,
            timbre.rfc_prov_certif,
            sello_cfd,
            timbre.no_certificado_sat,
        ]
        return f"||{'|'.join(parts)}||"


# Singleton instance
xml_generator = XmlGenerator()
