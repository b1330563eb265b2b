"""
B2B-INTEGRATIONS — CFDI Module 5: PdfService
Representación impresa of a CFDI: HTML template and PDF (fpdf2) with the SAT QR.

Required elements (Anexo 20):
- Emisor / Receptor with RFC, régimen and uso CFDI
- Conceptos, totals, taxes
- Timbre Fiscal Digital: UUID, FechaTimbrado, NoCertificadoSAT, RfcProvCertif
- Cadena original del complemento, Sello CFD, Sello SAT
- QR pointing to verificacfdi.facturaelectronica.sat.gob.mx
"""

import base64
import html
import io
import logging
from datetime import datetime
from typing import Optional

import qrcode
from fpdf import FPDF

from app.modules.signature_service import signature_service
from app.schemas.cfdi import Comprobante, PdfGenerationResult, PdfOptions, TimbreFiscalDigital

logger = logging.getLogger(__name__)

SAT_VERIFY_HOME = "https://verificacfdi.facturaelectronica.sat.gob.mx"

TIPO_COMPROBANTE_LABELS = {
    "I": "Factura",
    "E": "Nota de Crédito",
    "T": "Traslado",
    "N": "Nómina",
    "P": "Recepción de Pagos",
}

FORMA_PAGO_LABELS = {
    "01": "Efectivo",
    "02": "Cheque nominativo",
    "03": "Transferencia electrónica",
    "04": "Tarjeta de crédito",
    "28": "Tarjeta de débito",
    "99": "Por definir",
}

METODO_PAGO_LABELS = {
    "PUE": "Pago en una sola exhibición",
    "PPD": "Pago en parcialidades o diferido",
}

USO_CFDI_LABELS = {
    "G01": "Adquisición de mercancías",
    "G02": "Devoluciones, descuentos o bonificaciones",
    "G03": "Gastos en general",
    "I01": "Construcciones",
    "I02": "Mobiliario y equipo de oficina",
    "I03": "Equipo de transporte",
    "I04": "Equipo de cómputo",
    "I08": "Otra maquinaria y equipo",
    "S01": "Sin efectos fiscales",
    "CP01": "Pagos",
}

REGIMEN_FISCAL_LABELS = {
    "601": "General de Ley Personas Morales",
    "603": "Personas Morales con Fines no Lucrativos",
    "605": "Sueldos y Salarios",
    "606": "Arrendamiento",
    "612": "Personas Físicas con Actividades Empresariales",
    "616": "Sin obligaciones fiscales",
    "621": "Incorporación Fiscal",
    "625": "Régimen de las Actividades Empresariales (Plataformas)",
    "626": "Régimen Simplificado de Confianza",
}

IMPUESTO_LABELS = {"001": "ISR", "002": "IVA", "003": "IEPS"}

MESES = (
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
)


def _label(labels: dict, value: Optional[str]) -> str:
    if not value:
        return "N/A"
    return labels.get(value, value)


def _money(value: Optional[float]) -> str:
    return f"{float(value or 0):,.2f}"


def _fecha_larga(fecha: str) -> str:
    """2026-10-19T10:30:00 → 19 de octubre de 2026, 10:30"""
    try:
        dt = datetime.strptime(fecha[:19], "%Y-%m-%dT%H:%M:%S")
    except ValueError:
        return fecha
    return f"{dt.day} de {MESES[dt.month - 1]} de {dt.year}, {dt:%H:%M}"


def _esc(value: Optional[str]) -> str:
    return html.escape(value or "", quote=True)


def _hex_to_rgb(color: str) -> tuple[int, int, int]:
    color = color.lstrip("#")
    return int(color[0:2], 16), int(color[2:4], 16), int(color[4:6], 16)


def qr_png(data: str, box_size: int = 4) -> bytes:
    qr = qrcode.QRCode(version=1, box_size=box_size, border=1)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def _qr_string(comprobante: Comprobante, timbre: Optional[TimbreFiscalDigital]) -> str:
    if not timbre or not comprobante.sello:
        return ""
    return signature_service.generate_qr_string(
        timbre.uuid,
        comprobante.emisor.rfc,
        comprobante.receptor.rfc,
        comprobante.total,
        comprobante.sello,
    )


# ─────────────────────────────────────────────────────────────
# PDF RENDERER (fpdf2)
# ─────────────────────────────────────────────────────────────

class CfdiPdfRenderer:
    """Draws the representación impresa of one CFDI."""

    def __init__(self, options: PdfOptions):
        self.options = options
        self.c = options.comprobante
        self.timbre = options.timbre
        self.primary_color = _hex_to_rgb(options.primary_color)
        self.secondary_color = _hex_to_rgb(options.secondary_color)

    def generate(self) -> bytes:
        pdf = FPDF(orientation="P", unit="mm", format="Letter")
        pdf.set_auto_page_break(auto=True, margin=20)
        pdf.add_page()

        self._header(pdf)
        self._parties(pdf)
        self._details(pdf)
        self._conceptos_table(pdf)
        self._totals(pdf)
        self._timbre_section(pdf)
        self._notes(pdf)
        self._footer(pdf)

        return bytes(pdf.output())

    def _header(self, pdf: FPDF):
        r, g, b = self.primary_color
        logo_w = 0
        if self.options.logo:
            pdf.image(io.BytesIO(base64.b64decode(self.options.logo)), x=10, y=10, h=14)
            logo_w = 40

        pdf.set_xy(10 + logo_w, 12)
        pdf.set_font("Helvetica", "B", 11)
        pdf.set_text_color(40, 40, 40)
        pdf.cell(100 - logo_w, 6, self.c.emisor.nombre)

        pdf.set_xy(110, 10)
        pdf.set_font("Helvetica", "B", 14)
        pdf.set_text_color(r, g, b)
        pdf.cell(96, 7, _label(TIPO_COMPROBANTE_LABELS, self.c.tipo_de_comprobante), align="R")
        pdf.set_xy(110, 17)
        pdf.set_font("Helvetica", "B", 11)
        pdf.set_text_color(40, 40, 40)
        pdf.cell(96, 6, self.c.serie_folio, align="R")
        pdf.set_xy(110, 23)
        pdf.set_font("Helvetica", "", 8)
        pdf.cell(96, 5, f"Fecha: {_fecha_larga(self.c.fecha)}", align="R")

        pdf.set_draw_color(r, g, b)
        pdf.set_line_width(0.6)
        pdf.line(10, 30, 206, 30)
        pdf.set_y(33)

    def _section_title(self, pdf: FPDF, title: str):
        r, g, b = self.primary_color
        pdf.set_fill_color(*self.secondary_color)
        pdf.set_font("Helvetica", "B", 9)
        pdf.set_text_color(r, g, b)
        pdf.cell(196, 6, f"  {title}", fill=True, new_x="LMARGIN", new_y="NEXT")
        pdf.set_text_color(40, 40, 40)

    def _field_row(self, pdf: FPDF, pairs: list[tuple[str, str]], label_w: float = 32):
        col_w = 196 / len(pairs)
        y = pdf.get_y()
        for i, (label, value) in enumerate(pairs):
            pdf.set_xy(10 + i * col_w, y)
            pdf.set_font("Helvetica", "B", 8)
            pdf.cell(label_w, 5, label)
            pdf.set_font("Helvetica", "", 8)
            pdf.cell(col_w - label_w, 5, value or "N/A")
        pdf.ln(5)

    def _parties(self, pdf: FPDF):
        e, rc = self.c.emisor, self.c.receptor
        self._section_title(pdf, "EMISOR")
        self._field_row(pdf, [("Nombre:", e.nombre), ("RFC:", e.rfc)])
        self._field_row(pdf, [
            ("Régimen Fiscal:", _label(REGIMEN_FISCAL_LABELS, e.regimen_fiscal)),
            ("Lugar de Expedición:", self.c.lugar_expedicion),
        ])
        pdf.ln(1)
        self._section_title(pdf, "RECEPTOR")
        self._field_row(pdf, [("Nombre:", rc.nombre), ("RFC:", rc.rfc)])
        self._field_row(pdf, [
            ("Régimen Fiscal:", _label(REGIMEN_FISCAL_LABELS, rc.regimen_fiscal_receptor)),
            ("Domicilio Fiscal:", rc.domicilio_fiscal_receptor),
        ])
        self._field_row(pdf, [("Uso CFDI:", _label(USO_CFDI_LABELS, rc.uso_cfdi))])
        pdf.ln(1)

    def _details(self, pdf: FPDF):
        tipo_cambio = f"{self.c.tipo_cambio:.4f}" if self.c.tipo_cambio else "N/A"
        self._field_row(pdf, [
            ("Moneda:", self.c.moneda),
            ("Tipo de Cambio:", tipo_cambio),
        ], label_w=28)
        self._field_row(pdf, [
            ("Forma de Pago:", _label(FORMA_PAGO_LABELS, self.c.forma_pago)),
            ("Método de Pago:", _label(METODO_PAGO_LABELS, self.c.metodo_pago)),
        ], label_w=28)
        pdf.ln(2)

    def _conceptos_table(self, pdf: FPDF):
        col_widths = [26, 76, 18, 24, 26, 26]
        headers = ["Clave", "Descripción", "Cantidad", "Unidad", "P. Unitario", "Importe"]
        aligns = ["L", "L", "C", "L", "R", "R"]

        pdf.set_font("Helvetica", "B", 7)
        pdf.set_fill_color(*self.primary_color)
        pdf.set_text_color(255, 255, 255)
        for width, header in zip(col_widths, headers):
            pdf.cell(width, 6, header, border=1, fill=True, align="C")
        pdf.ln()

        pdf.set_text_color(40, 40, 40)
        pdf.set_font("Helvetica", "", 7)
        fill = False
        for concepto in self.c.conceptos:
            pdf.set_fill_color(*((250, 250, 250) if fill else (255, 255, 255)))
            desc = concepto.descripcion
            if pdf.get_string_width(desc) > col_widths[1] - 2:
                desc = desc[:55] + "..."
            unidad = concepto.clave_unidad + (f" ({concepto.unidad})" if concepto.unidad else "")
            values = [
                concepto.clave_prod_serv,
                desc,
                f"{concepto.cantidad:.2f}",
                unidad,
                f"${_money(concepto.valor_unitario)}",
                f"${_money(concepto.importe)}",
            ]
            for width, value, align in zip(col_widths, values, aligns):
                pdf.cell(width, 5, value, border=1, fill=True, align=align)
            pdf.ln()
            fill = not fill
        pdf.ln(2)

    def _totals(self, pdf: FPDF):
        rows = [("Subtotal:", f"${_money(self.c.sub_total)}")]
        if self.c.descuento:
            rows.append(("Descuento:", f"-${_money(self.c.descuento)}"))
        if self.c.impuestos:
            for t in self.c.impuestos.traslados:
                rows.append((f"IVA ({(t.tasa_o_cuota or 0) * 100:.0f}%):", f"${_money(t.importe)}"))
            for ret in self.c.impuestos.retenciones:
                rows.append((f"Retención {_label(IMPUESTO_LABELS, ret.impuesto)}:", f"-${_money(ret.importe)}"))
        rows.append(("Total:", f"${_money(self.c.total)} {self.c.moneda}"))

        for i, (label, value) in enumerate(rows):
            is_total = i == len(rows) - 1
            pdf.set_x(120)
            if is_total:
                pdf.set_font("Helvetica", "B", 10)
                pdf.set_fill_color(*self.primary_color)
                pdf.set_text_color(255, 255, 255)
            else:
                pdf.set_font("Helvetica", "", 8)
                pdf.set_fill_color(*self.secondary_color)
                pdf.set_text_color(40, 40, 40)
            pdf.cell(46, 6, label, border=1, fill=True, align="R")
            pdf.cell(40, 6, value, border=1, fill=True, align="R")
            pdf.ln()
        pdf.set_text_color(40, 40, 40)
        pdf.ln(3)

    def _timbre_section(self, pdf: FPDF):
        if not self.timbre:
            return
        self._section_title(pdf, "Timbre Fiscal Digital")

        qr_size = 30
        y = pdf.get_y() + 2
        if y + qr_size + 10 > 260:
            pdf.add_page()
            y = pdf.get_y()

        text_x = 10
        qr_data = _qr_string(self.c, self.timbre)
        if self.options.show_qr and qr_data:
            pdf.image(io.BytesIO(qr_png(qr_data)), x=10, y=y, w=qr_size, h=qr_size)
            text_x = 10 + qr_size + 5

        for i, (label, value) in enumerate([
            ("UUID:", self.timbre.uuid),
            ("Fecha Timbrado:", self.timbre.fecha_timbrado),
            ("No. Certificado SAT:", self.timbre.no_certificado_sat),
            ("RFC Proveedor:", self.timbre.rfc_prov_certif),
        ]):
            pdf.set_xy(text_x, y + i * 6)
            pdf.set_font("Helvetica", "B", 8)
            pdf.cell(34, 5, label)
            pdf.set_font("Helvetica", "", 8)
            pdf.cell(110, 5, value)
        pdf.set_y(y + qr_size + 3)

        seals = []
        if self.options.cadena_original:
            seals.append(("Cadena Original del Complemento de Certificación Digital del SAT:", self.options.cadena_original))
        seals.append(("Sello Digital del CFDI:", self.c.sello or ""))
        seals.append(("Sello del SAT:", self.timbre.sello_sat))
        for label, value in seals:
            pdf.set_font("Helvetica", "B", 7)
            pdf.cell(196, 4, label, new_x="LMARGIN", new_y="NEXT")
            pdf.set_font("Courier", "", 6)
            pdf.multi_cell(196, 3, value, new_x="LMARGIN", new_y="NEXT")
            pdf.ln(1)

    def _notes(self, pdf: FPDF):
        if not self.options.notes:
            return
        pdf.ln(2)
        pdf.set_fill_color(255, 243, 205)
        pdf.set_font("Helvetica", "", 8)
        pdf.multi_cell(196, 5, f"Notas: {self.options.notes}", fill=True, new_x="LMARGIN", new_y="NEXT")

    def _footer(self, pdf: FPDF):
        pdf.ln(4)
        pdf.set_font("Helvetica", "I", 7)
        pdf.set_text_color(102, 102, 102)
        pdf.cell(196, 4, "Este documento es una representación impresa de un CFDI", align="C",
                 new_x="LMARGIN", new_y="NEXT")
        pdf.cell(196, 4, f"Verificar en: {SAT_VERIFY_HOME}", align="C", new_x="LMARGIN", new_y="NEXT")


# ─────────────────────────────────────────────────────────────
# SERVICE
# ─────────────────────────────────────────────────────────────

class PdfService:
    """
    Usage:
        result = pdf_service.generate_pdf(PdfOptions(comprobante=c, timbre=t))
        html = pdf_service.generate_html(options)
    """

    def generate_pdf(self, options: PdfOptions) -> PdfGenerationResult:
        logger.debug(f"Generating PDF for CFDI {options.comprobante.serie_folio}")
        try:
            pdf = CfdiPdfRenderer(options).generate()
        except Exception as e:
            logger.exception(f"PDF generation failed: {e}")
            return PdfGenerationResult(success=False, error=str(e) or "PDF generation failed")
        return PdfGenerationResult(success=True, pdf=pdf)

    def generate_html(self, options: PdfOptions) -> str:
        c = options.comprobante
        timbre = options.timbre
        primary = options.primary_color
        secondary = options.secondary_color

        logo = (
            f'<img src="data:image/png;base64,{options.logo}" class="logo" alt="Logo">'
            if options.logo else ""
        )

        rows = "".join(
            f"""
        <tr>
          <td>{_esc(con.clave_prod_serv)}</td>
          <td>{_esc(con.descripcion)}</td>
          <td class="text-center">{con.cantidad:.2f}</td>
          <td>{_esc(con.clave_unidad)} {f'({_esc(con.unidad)})' if con.unidad else ''}</td>
          <td class="text-right">${_money(con.valor_unitario)}</td>
          <td class="text-right">${_money(con.importe)}</td>
        </tr>"""
            for con in c.conceptos
        )

        totals = [f"""
      <tr>
        <td>Subtotal:</td>
        <td class="text-right">${_money(c.sub_total)}</td>
      </tr>"""]
        if c.descuento:
            totals.append(f"""
      <tr>
        <td>Descuento:</td>
        <td class="text-right">-${_money(c.descuento)}</td>
      </tr>""")
        if c.impuestos:
            for t in c.impuestos.traslados:
                totals.append(f"""
      <tr>
        <td>IVA ({(t.tasa_o_cuota or 0) * 100:.0f}%):</td>
        <td class="text-right">${_money(t.importe)}</td>
      </tr>""")
            for ret in c.impuestos.retenciones:
                totals.append(f"""
      <tr>
        <td>Retención {_label(IMPUESTO_LABELS, ret.impuesto)}:</td>
        <td class="text-right">-${_money(ret.importe)}</td>
      </tr>""")

        tipo_cambio = f"{c.tipo_cambio:.4f}" if c.tipo_cambio else "N/A"

        return f"""<!DOCTYPE html>
<html lang="es">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>CFDI {_esc(c.serie_folio)}</title>
  <style>
    * {{ box-sizing: border-box; margin: 0; padding: 0; }}
    body {{ font-family: 'Helvetica Neue', Arial, sans-serif; font-size: 10pt; line-height: 1.4; color: #333; padding: 15mm; }}
    .header {{ display: flex; justify-content: space-between; margin-bottom: 15px; padding-bottom: 15px; border-bottom: 2px solid {primary}; }}
    .logo {{ max-width: 150px; max-height: 60px; }}
    .document-type {{ text-align: right; }}
    .document-type h1 {{ color: {primary}; font-size: 16pt; margin-bottom: 5px; }}
    .document-type .folio {{ font-size: 12pt; font-weight: bold; }}
    .parties {{ display: flex; gap: 20px; margin-bottom: 15px; }}
    .party {{ flex: 1; padding: 10px; background: {secondary}; border-radius: 4px; }}
    .party h3 {{ color: {primary}; font-size: 9pt; text-transform: uppercase; margin-bottom: 8px; border-bottom: 1px solid #ddd; padding-bottom: 5px; }}
    .party p {{ margin-bottom: 3px; font-size: 9pt; }}
    .name {{ font-weight: bold; font-size: 10pt; }}
    .details-grid {{ display: grid; grid-template-columns: repeat(4, 1fr); gap: 10px; margin-bottom: 15px; padding: 10px; background: {secondary}; border-radius: 4px; }}
    .detail-item {{ text-align: center; }}
    .detail-item label {{ display: block; font-size: 7pt; color: #666; text-transform: uppercase; }}
    .detail-item span {{ display: block; font-weight: bold; font-size: 9pt; }}
    table {{ width: 100%; border-collapse: collapse; margin-bottom: 15px; }}
    th {{ background: {primary}; color: white; padding: 8px; font-size: 8pt; text-transform: uppercase; text-align: left; }}
    td {{ padding: 8px; border-bottom: 1px solid #eee; font-size: 9pt; }}
    tr:nth-child(even) {{ background: #fafafa; }}
    .text-right {{ text-align: right; }}
    .text-center {{ text-align: center; }}
    .totals {{ display: flex; justify-content: flex-end; margin-bottom: 15px; }}
    .totals-table {{ width: 250px; }}
    .totals-table td {{ padding: 5px 10px; }}
    .totals-table .total-row {{ background: {primary}; color: white; font-weight: bold; font-size: 11pt; }}
    .fiscal-stamp {{ margin-top: 20px; padding: 15px; background: {secondary}; border-radius: 4px; font-size: 8pt; }}
    .fiscal-stamp h3 {{ color: {primary}; margin-bottom: 10px; font-size: 9pt; }}
    .qr-section {{ display: flex; gap: 15px; margin-top: 10px; }}
    .qr-code {{ width: 100px; height: 100px; background: white; padding: 5px; border: 1px solid #ddd; }}
    .stamp-details {{ flex: 1; }}
    .stamp-details p {{ margin-bottom: 5px; word-break: break-all; }}
    .stamp-details label {{ font-weight: bold; color: #666; }}
    .seal-string {{ font-family: monospace; font-size: 6pt; word-break: break-all; padding: 5px; background: white; border: 1px solid #ddd; margin-top: 10px; }}
    .notes {{ margin-top: 15px; padding: 10px; background: #fff3cd; border-radius: 4px; font-size: 9pt; }}
    .footer {{ margin-top: 20px; text-align: center; font-size: 7pt; color: #666; }}
    @media print {{ body {{ padding: 10mm; }} }}
  </style>
</head>
<body>
  <div class="header">
    <div class="logo-container">
      {logo}
      <p class="name">{_esc(c.emisor.nombre)}</p>
    </div>
    <div class="document-type">
      <h1>{_label(TIPO_COMPROBANTE_LABELS, c.tipo_de_comprobante)}</h1>
      <p class="folio">{_esc(c.serie_folio)}</p>
      <p>Fecha: {_fecha_larga(c.fecha)}</p>
    </div>
  </div>

  <div class="parties">
    <div class="party">
      <h3>Emisor</h3>
      <p class="name">{_esc(c.emisor.nombre)}</p>
      <p>RFC: {_esc(c.emisor.rfc)}</p>
      <p>Régimen Fiscal: {_esc(_label(REGIMEN_FISCAL_LABELS, c.emisor.regimen_fiscal))}</p>
      <p>Lugar de Expedición: {_esc(c.lugar_expedicion)}</p>
    </div>
    <div class="party">
      <h3>Receptor</h3>
      <p class="name">{_esc(c.receptor.nombre)}</p>
      <p>RFC: {_esc(c.receptor.rfc)}</p>
      <p>Régimen Fiscal: {_esc(_label(REGIMEN_FISCAL_LABELS, c.receptor.regimen_fiscal_receptor))}</p>
      <p>Domicilio Fiscal: {_esc(c.receptor.domicilio_fiscal_receptor)}</p>
      <p>Uso CFDI: {_esc(_label(USO_CFDI_LABELS, c.receptor.uso_cfdi))}</p>
    </div>
  </div>

  <div class="details-grid">
    <div class="detail-item"><label>Moneda</label><span>{_esc(c.moneda)}</span></div>
    <div class="detail-item"><label>Tipo de Cambio</label><span>{tipo_cambio}</span></div>
    <div class="detail-item"><label>Forma de Pago</label><span>{_esc(_label(FORMA_PAGO_LABELS, c.forma_pago))}</span></div>
    <div class="detail-item"><label>Método de Pago</label><span>{_esc(_label(METODO_PAGO_LABELS, c.metodo_pago))}</span></div>
  </div>

  <table>
    <thead>
      <tr>
        <th style="width: 15%">Clave</th>
        <th style="width: 35%">Descripción</th>
        <th class="text-center" style="width: 10%">Cantidad</th>
        <th style="width: 10%">Unidad</th>
        <th class="text-right" style="width: 15%">P. Unitario</th>
        <th class="text-right" style="width: 15%">Importe</th>
      </tr>
    </thead>
    <tbody>{rows}
    </tbody>
  </table>

  <div class="totals">
    <table class="totals-table">{"".join(totals)}
      <tr class="total-row">
        <td>Total:</td>
        <td class="text-right">${_money(c.total)} {_esc(c.moneda)}</td>
      </tr>
    </table>
  </div>
{self._timbre_html(options)}{self._notes_html(options)}
  <div class="footer">
    <p>Este documento es una representación impresa de un CFDI</p>
    <p>Verificar en: {SAT_VERIFY_HOME}</p>
  </div>
</body>
</html>"""

    @staticmethod
    def _timbre_html(options: PdfOptions) -> str:
        timbre = options.timbre
        if not timbre:
            return ""
        c = options.comprobante

        qr = ""
        qr_data = _qr_string(c, timbre)
        if options.show_qr and qr_data:
            encoded = base64.b64encode(qr_png(qr_data, box_size=3)).decode("ascii")
            qr = f'<img src="data:image/png;base64,{encoded}" alt="QR Code" style="width: 90px; height: 90px;">'

        cadena = ""
        if options.cadena_original:
            cadena = f"""
      <div class="seal-string">
        <label>Cadena Original del Complemento de Certificación Digital del SAT:</label>
        <p>{_esc(options.cadena_original)}</p>
      </div>"""

        return f"""
  <div class="fiscal-stamp">
    <h3>Timbre Fiscal Digital</h3>
    <div class="qr-section">
      <div class="qr-code">{qr}</div>
      <div class="stamp-details">
        <p><label>UUID:</label> {_esc(timbre.uuid)}</p>
        <p><label>Fecha Timbrado:</label> {_esc(timbre.fecha_timbrado)}</p>
        <p><label>No. Certificado SAT:</label> {_esc(timbre.no_certificado_sat)}</p>
        <p><label>RFC Proveedor:</label> {_esc(timbre.rfc_prov_certif)}</p>
      </div>
    </div>{cadena}
    <div class="seal-string">
      <label>Sello Digital del CFDI:</label>
      <p>{_esc(c.sello)}</p>
    </div>
    <div class="seal-string">
      <label>Sello del SAT:</label>
      <p>{_esc(timbre.sello_sat)}</p>
    </div>
  </div>
"""

    @staticmethod
    def _notes_html(options: PdfOptions) -> str:
        if not options.notes:
            return ""
        return f"""
  <div class="notes">
    <strong>Notas:</strong> {_esc(options.notes)}
  </div>
"""


# Singleton instance
pdf_service = PdfService()
