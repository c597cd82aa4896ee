"""PDF rendering and storage for the documents an application accumulates.

* recommendation form: rendered when the City Engineer forwards the file for payment
* challan: rendered when the payment is recorded
* certificate: rendered when the City Engineer applies the final signature
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from io import BytesIO
from typing import Iterable
from xml.sax.saxutils import escape

from reportlab.graphics.barcode.qr import QrCodeWidget
from reportlab.graphics.shapes import Drawing
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from permitflow.core.settings import settings
from permitflow.models.application_document import DOCUMENT_KINDS, ApplicationDocument
from permitflow.models.approval_entry import ApprovalEntry
from permitflow.models.permit_application import PermitApplication
from permitflow.services.stages import Stage, stage_label
from permitflow.services.storage import KeyGenerator, StorageAdapter, get_storage_adapter

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"

# external names accepted by the download broker
KIND_ALIASES = {
    "certificate": "certificate",
    "recommendationform": "recommendation_form",
    "recommendation-form": "recommendation_form",
    "recommendation_form": "recommendation_form",
    "challan": "challan",
}


@dataclass(frozen=True)
class DocumentPayload:
    content: bytes
    file_name: str
    content_type: str


def normalize_kind(kind: str) -> str | None:
    return KIND_ALIASES.get((kind or "").strip().lower())


def _format_timestamp(value: datetime | None) -> str:
    return value.strftime("%d %b %Y %H:%M UTC") if value else "-"


def _format_amount(amount: int | None) -> str:
    return f"{amount:,}" if amount is not None else "-"


def _table(data: list[list[str]], col_widths: list[int]) -> Table:
    table = Table(data, repeatRows=1, hAlign="LEFT", colWidths=col_widths)
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.grey),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.whitesmoke),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.whitesmoke, colors.white]),
    ]))
    return table


def certificate_qr_payload(application: PermitApplication) -> str:
    issued = application.certificate_issued_at
    issued_on = issued.strftime("%d/%m/%Y") if issued else "-"
    return f"{application.certificate_number}|{application.applicant_name}|{issued_on}"


def _qr_code(payload: str, size: float = 90) -> Drawing:
    widget = QrCodeWidget(payload)
    x1, y1, x2, y2 = widget.getBounds()
    drawing = Drawing(size, size, transform=[size / (x2 - x1), 0, 0, size / (y2 - y1), 0, 0])
    drawing.add(widget)
    return drawing


def _build_pdf(title: str, subtitle: str, sections: list) -> bytes:
    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4, leftMargin=36, rightMargin=36, topMargin=36, bottomMargin=36)
    styles = getSampleStyleSheet()
    story = [
        Paragraph(f"<b>{escape(settings.issuing_authority)}</b>", styles["Heading2"]),
        Paragraph(f"<b>{escape(title)}</b>", styles["Title"]),
        Paragraph(escape(subtitle), styles["Heading3"]),
        Spacer(1, 12),
    ]
    for section in sections:
        if isinstance(section, str):
            story.append(Paragraph(section, styles["BodyText"]))
        else:
            story.append(section)
        story.append(Spacer(1, 10))
    doc.build(story)
    return buffer.getvalue()


def _applicant_rows(application: PermitApplication) -> list[list[str]]:
    return [
        ["Field", "Value"],
        ["Application number", application.application_number],
        ["Applicant", application.applicant_name],
        ["Position", application.position_type],
        ["Building type", application.building_type or "-"],
        ["E-mail", application.applicant_email],
    ]


def _chain_rows(entries: Iterable[ApprovalEntry]) -> list[list[str]]:
    rows = [["Stage", "Officer", "Role", "Signed at"]]
    for entry in entries:
        rows.append([
            stage_label(entry.stage),
            entry.actor_name,
            entry.actor_role,
            _format_timestamp(entry.signed_at),
        ])
    return rows


def render_recommendation_form(application: PermitApplication, entries: list[ApprovalEntry]) -> bytes:
    return _build_pdf(
        "Recommendation Form",
        f"Recommended for registration as {application.position_type}",
        [
            _table(_applicant_rows(application), [150, 330]),
            "The application has been scrutinised and is recommended by the officers below.",
            _table(_chain_rows(entries), [170, 120, 100, 90]),
        ],
    )


def render_challan(application: PermitApplication) -> bytes:
    return _build_pdf(
        "Payment Challan",
        f"Registration fee for application {application.application_number}",
        [
            _table(
                [
                    ["Field", "Value"],
                    ["Application number", application.application_number],
                    ["Applicant", application.applicant_name],
                    ["Amount", _format_amount(application.payment_amount)],
                    ["Payment reference", application.payment_reference or "-"],
                    ["Paid at", _format_timestamp(application.paid_at)],
                ],
                [150, 330],
            ),
        ],
    )


def render_certificate(application: PermitApplication, entries: list[ApprovalEntry]) -> bytes:
    signatories = [
        entry for entry in entries
        if entry.stage in (Stage.EXECUTIVE_ENGINEER_SIGN_PENDING, Stage.CITY_ENGINEER_SIGN_PENDING)
    ]
    valid_until = application.certificate_valid_until
    return _build_pdf(
        "Certificate of Registration",
        f"Certificate issued {_format_timestamp(application.certificate_issued_at)}",
        [
            _qr_code(certificate_qr_payload(application)),
            _table(
                [
                    ["Certificate number", application.certificate_number or "-"],
                    ["Valid until", valid_until.strftime("%d/%m/%Y") if valid_until else "-"],
                ],
                [150, 330],
            ),
            f"This certifies that <b>{escape(application.applicant_name)}</b> is registered as "
            f"<b>{escape(application.position_type)}</b> under application "
            f"<b>{escape(application.application_number)}</b>.",
            _table(_chain_rows(signatories), [170, 120, 100, 90]),
        ],
    )


async def load_chain(db: AsyncSession, application: PermitApplication) -> list[ApprovalEntry]:
    stmt = (
        select(ApprovalEntry)
        .where(
            ApprovalEntry.application_id == application.id,
            ApprovalEntry.cycle == application.chain_cycle,
        )
        .order_by(ApprovalEntry.stage.asc())
    )
    return list((await db.execute(stmt)).scalars().all())


async def get_document(db: AsyncSession, application_id, kind: str) -> ApplicationDocument | None:
    stmt = select(ApplicationDocument).where(
        ApplicationDocument.application_id == application_id,
        ApplicationDocument.kind == kind,
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def store_document(
    db: AsyncSession,
    application: PermitApplication,
    kind: str,
    content: bytes,
    *,
    adapter: StorageAdapter | None = None,
) -> ApplicationDocument:
    if kind not in DOCUMENT_KINDS:
        raise ValueError(f"Unknown document kind: {kind}")
    adapter = adapter or get_storage_adapter()
    file_name = KeyGenerator.document_file_name(application.application_number, kind)
    object_key = KeyGenerator.generate_document_key(application.id, kind, file_name)
    adapter.write_object(object_key, content, PDF_CONTENT_TYPE)

    document = await get_document(db, application.id, kind)
    if document is None:
        document = ApplicationDocument(application_id=application.id, kind=kind)
    document.file_name = file_name
    document.storage_provider = adapter.provider
    document.storage_key = object_key
    document.content_type = PDF_CONTENT_TYPE
    document.size_bytes = len(content)
    db.add(document)
    logger.info(
        "Stored %s (%s bytes)",
        kind,
        len(content),
        extra={"application_id": str(application.id)},
    )
    return document


def read_document(document: ApplicationDocument, *, adapter: StorageAdapter | None = None) -> DocumentPayload:
    adapter = adapter or get_storage_adapter(document.storage_provider)
    content = adapter.read_object(document.storage_key)
    return DocumentPayload(
        content=content,
        file_name=document.file_name,
        content_type=document.content_type or PDF_CONTENT_TYPE,
    )
