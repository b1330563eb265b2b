"""
B2B-INTEGRATIONS — CFDI Module 6: DocumentService
Lifecycle of a CFDI document: validate → seal → stamp → (PDF) → (SAT) → cancel.

Flow:
1. validate_structure() — reject before anything is recorded
2. Record the document as DRAFT
3. Seal with the tenant CSD → SEALED
4. Timbrado at the PAC, TFD extracted, UUID indexed → STAMPED
5. Optional PDF, optional SAT Consulta (Vigente → VALID)

Documents are kept in memory, keyed by document_id with a UUID index.
Every status change is appended to status_history and broadcast to the
registered callbacks.
"""

import base64
import logging
import uuid as uuid_lib
from datetime import datetime, timezone
from typing import Callable, Optional

from app.modules.pac_service import PacService, pac_service
from app.modules.pdf_service import PdfService, pdf_service
from app.modules.sat_validation import SatValidationService, sat_validation
from app.modules.signature_service import SignatureError, SignatureService, signature_service
from app.modules.xml_generator import XmlGenerator, xml_generator
from app.schemas.cfdi import (
    CancellationInfo,
    CancelRequest,
    CfdiDocument,
    CfdiStatus,
    Comprobante,
    CreateDocumentOptions,
    DocumentProcessingResult,
    MotivoCancelacion,
    PdfOptions,
    SatValidationRequest,
    StampRequest,
    StatusChangeCallback,
    StatusChangeEvent,
    StatusHistoryEntry,
)

logger = logging.getLogger(__name__)


class DocumentService:
    """
    Usage:
        result = await document_service.create_and_stamp(comprobante, options)
        await document_service.cancel_document(result.document.timbre.uuid, MotivoCancelacion.NO_SE_LLEVO_OPERACION)
    """

    def __init__(
        self,
        xml: Optional[XmlGenerator] = None,
        signature: Optional[SignatureService] = None,
        pac: Optional[PacService] = None,
        sat: Optional[SatValidationService] = None,
        pdf: Optional[PdfService] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.xml = xml or xml_generator
        self.signature = signature or signature_service
        self.pac = pac or pac_service
        self.sat = sat or sat_validation
        self.pdf = pdf or pdf_service
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self._documents: dict[str, CfdiDocument] = {}
        self._uuid_index: dict[str, str] = {}
        self._callbacks: list[StatusChangeCallback] = []

    # ═════════════════════════════════════════════════════════
    # CREATE / STAMP
    # ═════════════════════════════════════════════════════════

    async def create_and_stamp(
        self,
        comprobante: Comprobante,
        options: CreateDocumentOptions,
    ) -> DocumentProcessingResult:
        logger.info(f"Creating CFDI document for {options.tenant_id}")

        validation = self.sat.validate_structure(comprobante)
        if not validation.valid:
            return DocumentProcessingResult(
                success=False,
                validation_result=validation,
                error=f"Validation failed with {len(validation.errors)} errors",
            )

        document = self._create_document(comprobante, options.tenant_id)
        doc_id = document.document_id

        try:
            try:
                signed, cadena = self.signature.apply_signature(comprobante, options.csd)
            except SignatureError as e:
                logger.warning(f"Sealing failed for {doc_id}: [{e.code}] {e.message}")
                self._update_status(doc_id, CfdiStatus.DRAFT, e.message)
                return DocumentProcessingResult(success=False, document=document, error=e.message)

            document.comprobante = signed
            document.cadena_original = cadena
            document.sealed_xml = self.xml.generate_cfdi(signed)
            self._update_status(doc_id, CfdiStatus.SEALED, "Document sealed successfully")

            stamp = await self.pac.stamp(StampRequest(xml=document.sealed_xml), options.pac_config)
            if not stamp.success:
                self._update_status(doc_id, CfdiStatus.DRAFT, stamp.error_message)
                return DocumentProcessingResult(success=False, document=document, error=stamp.error_message)

            document.stamped_xml = stamp.xml
            document.timbre = self.pac.extract_timbre(stamp.xml) if stamp.xml else None

            if document.timbre:
                self._uuid_index[document.timbre.uuid] = doc_id
                document.qr_string = self.signature.generate_qr_string(
                    document.timbre.uuid,
                    comprobante.emisor.rfc,
                    comprobante.receptor.rfc,
                    comprobante.total,
                    signed.sello or "",
                )

            uuid_text = document.timbre.uuid if document.timbre else None
            self._update_status(doc_id, CfdiStatus.STAMPED, f"Stamped with UUID: {uuid_text}")

            if options.generate_pdf and document.timbre:
                pdf = self.pdf.generate_pdf(PdfOptions(
                    comprobante=signed,
                    timbre=document.timbre,
                    cadena_original=cadena,
                    logo=options.pdf_logo,
                ))
                if pdf.success and pdf.pdf:
                    document.pdf = base64.b64encode(pdf.pdf).decode("ascii")
                else:
                    logger.warning(f"PDF not generated for {doc_id}: {pdf.error}")

            if options.validate_with_sat and document.timbre:
                sat = await self.sat.validate_with_sat(SatValidationRequest(
                    uuid=document.timbre.uuid,
                    rfc_emisor=comprobante.emisor.rfc,
                    rfc_receptor=comprobante.receptor.rfc,
                    total=comprobante.total,
                ))
                if sat.valid and sat.estado == "Vigente":
                    self._update_status(doc_id, CfdiStatus.VALID, "Validated with SAT")

            logger.info(f"CFDI {doc_id} stamped: {uuid_text}")
            return DocumentProcessingResult(success=True, document=document, validation_result=validation)

        except Exception as e:
            logger.exception(f"Document processing failed for {doc_id}: {e}")
            message = str(e) or "Processing failed"
            self._update_status(doc_id, CfdiStatus.DRAFT, message)
            return DocumentProcessingResult(success=False, document=document, error=message)

    # ═════════════════════════════════════════════════════════
    # CANCELLATION
    # ═════════════════════════════════════════════════════════

    async def cancel_document(
        self,
        document_id_or_uuid: str,
        motivo: MotivoCancelacion,
        folio_sustitucion: Optional[str] = None,
    ) -> DocumentProcessingResult:
        document = self._documents.get(document_id_or_uuid) or self.get_document_by_uuid(document_id_or_uuid)
        if not document:
            return DocumentProcessingResult(success=False, error="Document not found")

        if not document.timbre:
            return DocumentProcessingResult(success=False, document=document, error="Document has not been stamped")

        if document.status == CfdiStatus.CANCELLED:
            return DocumentProcessingResult(success=False, document=document, error="Document is already cancelled")

        motivo = MotivoCancelacion(motivo)
        if motivo == MotivoCancelacion.ERRORES_CON_RELACION and not folio_sustitucion:
            return DocumentProcessingResult(
                success=False,
                document=document,
                error="folio_sustitucion is required when motivo is 01",
            )

        logger.info(f"Cancelling CFDI {document.timbre.uuid} with motivo {motivo.value}")

        document.cancellation = CancellationInfo(
            motivo=motivo,
            folio_sustitucion=folio_sustitucion,
            requested_at=self.clock(),
        )
        self._update_status(document.document_id, CfdiStatus.CANCELLATION_PENDING, "Cancellation requested")

        result = await self.pac.cancel(CancelRequest(
            uuid=document.timbre.uuid,
            rfc_emisor=document.comprobante.emisor.rfc,
            rfc_receptor=document.comprobante.receptor.rfc,
            total=document.comprobante.total,
            motivo=motivo,
            folio_sustitucion=folio_sustitucion,
        ))

        if not result.success:
            self._update_status(document.document_id, CfdiStatus.CANCELLATION_REJECTED, result.error_message)
            return DocumentProcessingResult(success=False, document=document, error=result.error_message)

        document.cancellation.processed_at = self.clock()
        document.cancellation.acuse = result.acuse

        if result.status == "cancelled":
            self._update_status(document.document_id, CfdiStatus.CANCELLED, "Cancellation completed")
        elif result.status == "pending":
            self._update_status(document.document_id, CfdiStatus.CANCELLATION_PENDING, "Awaiting receiver acceptance")
        else:
            self._update_status(document.document_id, CfdiStatus.CANCELLATION_REJECTED, "Cancellation rejected")

        return DocumentProcessingResult(success=True, document=document)

    # ═════════════════════════════════════════════════════════
    # LOOKUPS
    # ═════════════════════════════════════════════════════════

    def get_document(self, document_id: str) -> Optional[CfdiDocument]:
        return self._documents.get(document_id)

    def get_document_by_uuid(self, uuid: str) -> Optional[CfdiDocument]:
        document_id = self._uuid_index.get(uuid) or self._uuid_index.get(uuid.upper())
        if not document_id:
            return None
        return self._documents.get(document_id)

    def get_documents_by_tenant(self, tenant_id: str) -> list[CfdiDocument]:
        return [d for d in self._documents.values() if d.tenant_id == tenant_id]

    def get_documents_by_status(self, status: CfdiStatus, tenant_id: Optional[str] = None) -> list[CfdiDocument]:
        return [
            d for d in self._documents.values()
            if d.status == status and (not tenant_id or d.tenant_id == tenant_id)
        ]

    def get_statistics(self, tenant_id: Optional[str] = None) -> dict:
        docs = self.get_documents_by_tenant(tenant_id) if tenant_id else list(self._documents.values())
        by_status = {status.value: 0 for status in CfdiStatus}
        for doc in docs:
            by_status[doc.status.value] += 1
        return {"total": len(docs), "by_status": by_status}

    async def refresh_status(self, document_id: str) -> Optional[CfdiDocument]:
        """Re-check a stamped document against SAT Consulta."""
        document = self._documents.get(document_id)
        if not document or not document.timbre:
            return None

        sat = await self.sat.validate_with_sat(SatValidationRequest(
            uuid=document.timbre.uuid,
            rfc_emisor=document.comprobante.emisor.rfc,
            rfc_receptor=document.comprobante.receptor.rfc,
            total=document.comprobante.total,
        ))

        if sat.estado == "Vigente" and document.status != CfdiStatus.VALID:
            self._update_status(document_id, CfdiStatus.VALID, "Validated with SAT")
        elif sat.estado == "Cancelado" and document.status != CfdiStatus.CANCELLED:
            self._update_status(document_id, CfdiStatus.CANCELLED, "Cancelled per SAT")

        return document

    def on_status_change(self, callback: StatusChangeCallback) -> None:
        self._callbacks.append(callback)

    # ─────────────────────────────────────────────────────────
    # Internal
    # ─────────────────────────────────────────────────────────

    def _create_document(self, comprobante: Comprobante, tenant_id: str) -> CfdiDocument:
        now = self.clock()
        document = CfdiDocument(
            document_id=str(uuid_lib.uuid4()),
            tenant_id=tenant_id,
            status=CfdiStatus.DRAFT,
            comprobante=comprobante,
            created_at=now,
            updated_at=now,
            status_history=[StatusHistoryEntry(status=CfdiStatus.DRAFT, timestamp=now, message="Document created")],
        )
        self._documents[document.document_id] = document
        return document

    def _update_status(self, document_id: str, status: CfdiStatus, message: Optional[str] = None) -> None:
        document = self._documents.get(document_id)
        if not document:
            return

        now = self.clock()
        previous = document.status
        document.status = status
        document.updated_at = now
        document.status_history.append(StatusHistoryEntry(status=status, timestamp=now, message=message))

        event = StatusChangeEvent(
            document_id=document_id,
            status=status,
            previous_status=previous,
            message=message,
            timestamp=now,
        )
        for callback in self._callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Status change callback error: {e}")


# Singleton instance
document_service = DocumentService()
