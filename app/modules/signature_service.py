"""
B2B-INTEGRATIONS — CFDI Module 2: SignatureService
Handles CSD (Certificado de Sello Digital) parsing and CFDI sealing.

Flow:
1. Tenant hands over the .cer + .key (base64 DER) + password (per request, not persisted)
2. We parse the certificate for NoCertificado, RFC and validity window
3. We decrypt the PKCS#8 private key in memory
4. The cadena original is signed with RSA-SHA256 (PKCS#1 v1.5) → Sello (base64)

SAT Sealing Specification:
- NoCertificado: certificate serial number in decimal, zero-padded to 20 digits
- Certificado: the .cer DER encoded as base64
- RFC of the certificate (OID 2.5.4.45) must equal Emisor/Rfc
- Private key is processed ONLY in memory, never written to disk
"""

import base64
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.x509.oid import NameOID

from app.core.config import SAT_QR_VERIFY_URL
from app.modules.xml_generator import xml_generator
from app.schemas.cfdi import CertificateInfo, Comprobante, CsdCertificate, SealResult
from app.utils.cfdi_helpers import RFC_PATTERN, format_qr_total

logger = logging.getLogger(__name__)

TEST_CSD_PASSWORD = "test123"
SIGNATURE_PROBE = "test-signature-validation"


class SignatureError(Exception):
    """Raised when certificate parsing or sealing fails."""
    def __init__(self, message: str, code: str = "SIGNATURE_ERROR"):
        self.message = message
        self.code = code
        super().__init__(self.message)


def _attr_text(value) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


class SignatureService:
    """
    CSD certificate handling and CFDI sealing.

    Usage:
        svc = SignatureService()
        info = svc.parse_certificate(cer_bytes)
        sealed, cadena = svc.apply_signature(comprobante, csd)
    """

    # ═════════════════════════════════════════════════════════
    # CERTIFICATE / KEY PARSING
    # ═════════════════════════════════════════════════════════

    def _load_certificate(self, data: bytes) -> x509.Certificate:
        try:
            if data.lstrip().startswith(b"-----BEGIN"):
                return x509.load_pem_x509_certificate(data)
            return x509.load_der_x509_certificate(data)
        except ValueError as e:
            raise SignatureError(
                f"Failed to parse CSD certificate: {e}",
                code="CSD_INVALID_CERTIFICATE",
            ) from e

    def parse_certificate(self, data: bytes) -> CertificateInfo:
        """
        Parse a CSD certificate (.cer, DER or PEM).

        Raises:
            SignatureError: CSD_INVALID_CERTIFICATE if the bytes are not a certificate
        """
        logger.debug("Parsing CSD certificate")
        cert = self._load_certificate(data)

        serial = cert.serial_number
        valid_from = cert.not_valid_before_utc
        valid_to = cert.not_valid_after_utc
        now = datetime.now(timezone.utc)

        cn = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        nombre = _attr_text(cn[0].value) if cn else ""

        return CertificateInfo(
            serial_number=format(serial, "X"),
            no_certificado=str(serial).zfill(20),
            rfc=self._extract_rfc(cert),
            nombre=nombre,
            valid_from=valid_from,
            valid_to=valid_to,
            is_valid=valid_from <= now <= valid_to,
            certificado_base64=base64.b64encode(
                cert.public_bytes(serialization.Encoding.DER)
            ).decode("ascii"),
        )

    @staticmethod
    def _extract_rfc(cert: x509.Certificate) -> str:
        """
        SAT certificates carry "RFC / CURP" in x500UniqueIdentifier.
        Fall back to OU, serialNumber, then anything RFC-shaped.
        """
        for oid in (NameOID.X500_UNIQUE_IDENTIFIER, NameOID.ORGANIZATIONAL_UNIT_NAME, NameOID.SERIAL_NUMBER):
            for attr in cert.subject.get_attributes_for_oid(oid):
                match = re.search(RFC_PATTERN, _attr_text(attr.value))
                if match:
                    return match.group(0)
        match = re.search(RFC_PATTERN, cert.subject.rfc4514_string())
        return match.group(0) if match else ""

    def parse_private_key(self, data: bytes, password: str) -> RSAPrivateKey:
        """
        Load the CSD private key (.key). SAT ships encrypted PKCS#8 DER;
        unencrypted DER and PEM are accepted too.

        Raises:
            SignatureError: CSD_INVALID_KEY on wrong password or bad format
        """
        logger.debug("Parsing private key")
        pwd = password.encode("utf-8") if password else None
        loader = (
            serialization.load_pem_private_key
            if data.lstrip().startswith(b"-----BEGIN")
            else serialization.load_der_private_key
        )
        try:
            try:
                key = loader(data, password=pwd)
            except TypeError:
                # Key is not encrypted but a password was supplied (or vice versa)
                key = loader(data, password=None)
        except (ValueError, TypeError) as e:
            raise SignatureError(
                f"Failed to parse private key: {e}",
                code="CSD_INVALID_KEY",
            ) from e

        if not isinstance(key, RSAPrivateKey):
            raise SignatureError(
                "Failed to parse private key: CSD keys must be RSA",
                code="CSD_INVALID_KEY",
            )
        return key

    def validate_csd_pair(self, certificate: bytes, key: bytes, password: str) -> dict:
        """Check that the .cer is current and belongs to the .key."""
        try:
            info = self.parse_certificate(certificate)
            private_key = self.parse_private_key(key, password)
        except SignatureError as e:
            return {"valid": False, "error": e.message}

        if not info.is_valid:
            return {
                "valid": False,
                "error": (
                    f"Certificate expired. Valid from {info.valid_from.isoformat()} "
                    f"to {info.valid_to.isoformat()}"
                ),
            }

        signature = private_key.sign(SIGNATURE_PROBE.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
        public_key = self._load_certificate(certificate).public_key()
        try:
            public_key.verify(signature, SIGNATURE_PROBE.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
        except InvalidSignature:
            return {"valid": False, "error": "Certificate and private key do not match"}

        return {"valid": True, "error": None}

    # ═════════════════════════════════════════════════════════
    # SEALING
    # ═════════════════════════════════════════════════════════

    def seal_comprobante(self, comprobante: Comprobante, csd: CsdCertificate) -> SealResult:
        """
        Compute the Sello of a comprobante.

        Raises:
            SignatureError: CSD_EXPIRED, CSD_RFC_MISMATCH, CSD_INVALID_*
        """
        logger.debug(f"Sealing CFDI {comprobante.serie_folio}")

        info = self.parse_certificate(base64.b64decode(csd.certificado))
        if not info.is_valid:
            raise SignatureError("CSD certificate has expired", code="CSD_EXPIRED")

        if info.rfc != comprobante.emisor.rfc:
            raise SignatureError(
                f"Certificate RFC ({info.rfc}) does not match issuer RFC ({comprobante.emisor.rfc})",
                code="CSD_RFC_MISMATCH",
            )

        private_key = self.parse_private_key(base64.b64decode(csd.private_key), csd.password)
        cadena_original = xml_generator.generate_cadena_original(comprobante)

        signature = private_key.sign(cadena_original.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
        return SealResult(
            sello=base64.b64encode(signature).decode("ascii"),
            cadena_original=cadena_original,
        )

    def apply_signature(self, comprobante: Comprobante, csd: CsdCertificate) -> tuple[Comprobante, str]:
        """
        Return a sealed copy of the comprobante plus the cadena original.
        The input model is not modified.
        """
        info = self.parse_certificate(base64.b64decode(csd.certificado))

        signed = comprobante.model_copy(deep=True)
        signed.no_certificado = info.no_certificado
        signed.certificado = info.certificado_base64

        seal = self.seal_comprobante(signed, csd)
        signed.sello = seal.sello

        logger.info(f"CFDI {signed.serie_folio} sealed with certificate {info.no_certificado}")
        return signed, seal.cadena_original

    def verify_signature(self, certificado: str, sello: str, cadena_original: str) -> bool:
        try:
            cert = self._load_certificate(base64.b64decode(certificado))
            cert.public_key().verify(
                base64.b64decode(sello),
                cadena_original.encode("utf-8"),
                padding.PKCS1v15(),
                hashes.SHA256(),
            )
            return True
        except (SignatureError, InvalidSignature, ValueError) as e:
            logger.warning(f"Signature verification failed: {e}")
            return False

    # ═════════════════════════════════════════════════════════
    # QR / TEST CSD
    # ═════════════════════════════════════════════════════════

    def generate_qr_string(
        self,
        uuid: str,
        rfc_emisor: str,
        rfc_receptor: str,
        total: float,
        sello: str,
    ) -> str:
        """SAT verification URL printed as QR on the representación impresa."""
        return (
            f"{SAT_QR_VERIFY_URL}?"
            f"id={uuid}&re={rfc_emisor}&rr={rfc_receptor}"
            f"&tt={format_qr_total(total)}&fe={sello[-8:]}"
        )

    def generate_test_csd(self, rfc: str, nombre: str, valid_days: int = 365) -> CsdCertificate:
        """
        Self-signed CSD for sandbox runs. SAT will never accept it.
        """
        logger.warning("Generating test CSD - DO NOT USE IN PRODUCTION")

        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        now = datetime.now(timezone.utc)
        subject = x509.Name([
            x509.NameAttribute(NameOID.COMMON_NAME, nombre),
            x509.NameAttribute(NameOID.X500_UNIQUE_IDENTIFIER, rfc),
            x509.NameAttribute(NameOID.COUNTRY_NAME, "MX"),
        ])
        # Millisecond timestamp keeps the serial inside 20 decimal digits
        serial = int(now.timestamp() * 1000)
        valid_to = now + timedelta(days=valid_days)

        cert = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(subject)
            .public_key(key.public_key())
            .serial_number(serial)
            .not_valid_before(now - timedelta(days=1))
            .not_valid_after(valid_to)
            .sign(key, hashes.SHA256())
        )

        key_der = key.private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.BestAvailableEncryption(TEST_CSD_PASSWORD.encode("utf-8")),
        )

        return CsdCertificate(
            no_certificado=str(serial).zfill(20),
            certificado=base64.b64encode(cert.public_bytes(serialization.Encoding.DER)).decode("ascii"),
            private_key=base64.b64encode(key_der).decode("ascii"),
            password=TEST_CSD_PASSWORD,
            rfc_emisor=rfc,
            valid_to=valid_to,
        )


# Singleton instance
signature_service = SignatureService()
