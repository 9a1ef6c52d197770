from __future__ import annotations

import io
import logging
from datetime import date, datetime, timedelta
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
from sqlalchemy import select

from . import config
from .auth_models import UserRole
from .db import db_session, utcnow
from .errors import NotFoundError, PermissionDeniedError
from .models import Appointment, Employee
from .scheduling import to_local

logger = logging.getLogger(__name__)


def invoice_number(appointment_id: str) -> str:
    return f"INV-{appointment_id[-8:].upper()}"


def check_appointment_access(appointment_id: str, user_id: str, role: UserRole) -> None:
    """Owner, the assigned employee's login, or an admin."""
    with db_session() as s:
        app = s.get(Appointment, appointment_id)
        if not app:
            raise NotFoundError("Appointment not found")
        if role == UserRole.ADMIN or app.client_id == user_id:
            return
        employee_user = s.execute(select(Employee.user_id).where(Employee.id == app.employee_id)).scalar_one_or_none()
        if employee_user and employee_user == user_id:
            return
    raise PermissionDeniedError("Forbidden")


def build_invoice(appointment_id: str, today: date | None = None) -> dict:
    today = today or to_local(utcnow(), config.TIMEZONE).date()

    with db_session() as s:
        app = s.get(Appointment, appointment_id)
        if not app:
            raise NotFoundError("Appointment not found")

        service = app.service
        lines = [{"description": service.title, "price": service.price, "duration": service.duration}]
        addons = [{"name": aa.addon.name, "price": aa.addon.price, "duration": aa.addon.duration} for aa in app.addons]
        lines += [{"description": f"+ {a['name']}", "price": a["price"], "duration": a["duration"]} for a in addons]

        return {
            "appointment_id": app.id,
            "invoice_number": invoice_number(app.id),
            "issue_date": today.isoformat(),
            "due_date": (today + timedelta(days=config.INVOICE_DUE_DAYS)).isoformat(),
            "client": {"name": app.client.name or "Unknown", "email": app.client.email},
            "service": {"title": service.title, "price": service.price, "duration": service.duration},
            "employee": {"name": app.employee.name},
            "appointment_date": to_local(app.start_at, config.TIMEZONE).isoformat(),
            "addons": addons,
            "lines": lines,
            "total_price": app.total_price if app.total_price is not None else service.price,
            "status": app.status.value,
        }


# =========================
# PDF
# =========================
def _money(value: float) -> str:
    return f"{config.CURRENCY_SYMBOL}{value:.2f}"


def render_invoice_pdf(invoice: dict) -> bytes:
    """A4 invoice built from `build_invoice` data."""
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=20 * mm,
        rightMargin=20 * mm,
        topMargin=20 * mm,
        bottomMargin=20 * mm,
        title=f"Invoice {invoice['invoice_number']}",
    )

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle("InvoiceTitle", parent=styles["Heading1"], fontSize=22, spaceAfter=12)
    heading_style = ParagraphStyle("InvoiceHeading", parent=styles["Heading3"], spaceBefore=12, spaceAfter=6)
    footer_style = ParagraphStyle("InvoiceFooter", parent=styles["Normal"], fontSize=9, textColor=colors.grey)

    issue = date.fromisoformat(invoice["issue_date"]).strftime("%d/%m/%Y")
    due = date.fromisoformat(invoice["due_date"]).strftime("%d/%m/%Y")
    when = datetime.fromisoformat(invoice["appointment_date"]).strftime("%d/%m/%Y %H:%M")

    # plain strings in table cells: names are never parsed as markup
    info = Table(
        [
            ["Invoice #:", invoice["invoice_number"]],
            ["Issue Date:", issue],
            ["Due Date:", due],
            ["Bill To:", invoice["client"]["name"]],
            ["", invoice["client"]["email"]],
            ["Service:", invoice["service"]["title"]],
            ["Stylist:", invoice["employee"]["name"]],
            ["Date:", when],
        ],
        colWidths=[35 * mm, 120 * mm],
    )
    info.setStyle(
        TableStyle(
            [
                ("FONT", (0, 0), (0, -1), "Helvetica-Bold", 10),
                ("FONT", (1, 0), (1, -1), "Helvetica", 10),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
            ]
        )
    )

    rows = [["Description", "Duration", "Price"]]
    rows += [[line["description"], f"{line['duration']} min", _money(line["price"])] for line in invoice["lines"]]
    rows.append(["", "Total", _money(invoice["total_price"])])

    lines = Table(rows, colWidths=[95 * mm, 30 * mm, 30 * mm], repeatRows=1)
    lines.setStyle(
        TableStyle(
            [
                ("FONT", (0, 0), (-1, 0), "Helvetica-Bold", 10),
                ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
                ("FONT", (0, 1), (-1, -2), "Helvetica", 10),
                ("FONT", (0, -1), (-1, -1), "Helvetica-Bold", 11),
                ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
                ("LINEABOVE", (0, -1), (-1, -1), 0.75, colors.black),
                ("GRID", (0, 0), (-1, -2), 0.25, colors.grey),
            ]
        )
    )

    story = [
        Paragraph("INVOICE", title_style),
        info,
        Paragraph("Details", heading_style),
        lines,
        Spacer(1, 8 * mm),
        Paragraph(f"Status: {invoice['status'].upper()}", styles["Normal"]),
        Spacer(1, 12 * mm),
        Paragraph(f"Thank you for choosing {escape(config.BUSINESS_NAME)}!", footer_style),
    ]
    if config.CONTACT_EMAIL:
        story.append(Paragraph(f"For any questions, please contact us at {escape(config.CONTACT_EMAIL)}", footer_style))

    doc.build(story)
    pdf = buffer.getvalue()
    buffer.close()

    logger.info("Invoice %s rendered (%d bytes)", invoice["invoice_number"], len(pdf))
    return pdf
