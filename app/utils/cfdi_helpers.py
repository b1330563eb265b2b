"""
B2B-INTEGRATIONS — CFDI Utilities
Formatting and format-validation helpers shared by the CFDI modules.
"""

import re
import xml.etree.ElementTree as ET
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

RFC_PATTERN = r"[A-Z&Ñ]{3,4}\d{6}[A-Z\d]{3}"
RFC_PERSONA_MORAL = re.compile(r"^[A-ZÑ&]{3}\d{6}[A-Z\d]{3}$")
RFC_PERSONA_FISICA = re.compile(r"^[A-ZÑ&]{4}\d{6}[A-Z\d]{3}$")
RFC_GENERICOS = ("XAXX010101000", "XEXX010101000")


def code(value: Any) -> str:
    """SAT code for a catalogue value (enum member or plain string)."""
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def format_amount(value: float) -> str:
    """Amounts are always emitted with 2 decimals."""
    return f"{value:.2f}"


def format_quantity(value: float) -> str:
    """Cantidad: at least 2 decimals, up to the 6 SAT allows."""
    text = f"{value:.6f}".rstrip("0")
    whole, _, decimals = text.partition(".")
    return f"{whole}.{decimals.ljust(2, '0')}"


def format_rate(value: float) -> str:
    """TasaOCuota is always emitted with 6 decimals."""
    return f"{value:.6f}"


def format_qr_total(total: float) -> str:
    """Total for QR / SAT consulta: 6 decimals, zero-padded to 17 chars."""
    return f"{total:.6f}".zfill(17)


def escape_xml(text: str) -> str:
    if not text:
        return ""
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def validate_rfc(rfc: str) -> bool:
    """
    RFC format validation.
    - Persona moral: 3 letters + 6 digits + 3 homoclave
    - Persona física: 4 letters + 6 digits + 3 homoclave
    - Genéricos: XAXX010101000 (público en general), XEXX010101000 (extranjero)
    """
    if not rfc:
        return False
    return bool(
        RFC_PERSONA_MORAL.match(rfc)
        or RFC_PERSONA_FISICA.match(rfc)
        or rfc in RFC_GENERICOS
    )


def is_persona_fisica(rfc: str) -> bool:
    return len(rfc) == 13


def validate_postal_code(cp: str) -> bool:
    return bool(cp) and bool(re.fullmatch(r"\d{5}", cp))


def validate_cfdi_fecha(fecha: str) -> bool:
    """Fecha must be YYYY-MM-DDTHH:MM:SS and a real calendar date."""
    if not fecha or not re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}", fecha):
        return False
    try:
        datetime.strptime(fecha, "%Y-%m-%dT%H:%M:%S")
    except ValueError:
        return False
    return True


def current_mx_datetime() -> str:
    """
    Current date-time in Mexico City (UTC-6, no DST since 2022),
    formatted as CFDI Fecha: YYYY-MM-DDTHH:MM:SS
    """
    mx_time = datetime.now(timezone.utc) - timedelta(hours=6)
    return mx_time.strftime("%Y-%m-%dT%H:%M:%S")


def local_name(tag: str) -> str:
    """Strip the {namespace} prefix ElementTree puts on tags."""
    return tag.rsplit("}", 1)[-1] if "}" in tag else tag


def parse_xml(text: str) -> Optional[ET.Element]:
    """Parse a PAC / SAT payload; None when it is not well-formed XML."""
    try:
        return ET.fromstring(text.encode("utf-8"))
    except ET.ParseError:
        return None


def find_local(root: ET.Element, name: str) -> Optional[ET.Element]:
    """First element whose local name matches, case-insensitive."""
    wanted = name.lower()
    for el in root.iter():
        if local_name(el.tag).lower() == wanted:
            return el
    return None
