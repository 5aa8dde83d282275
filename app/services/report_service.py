import calendar
import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from io import BytesIO
from typing import Any, Dict, List

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.exceptions import ValidationError
from app.models.appointment import Appointment, AppointmentStatus
from app.models.user import User, Role

logger = logging.getLogger(__name__)

PERIODS = {
    "day": "Daily report",
    "week": "Weekly report",
    "month": "Monthly report",
    "year": "Yearly report",
}


def period_start(period: str, now: datetime = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    if period == "day":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "week":
        return now - timedelta(weeks=1)
    if period == "month":
        return now - timedelta(days=30)
    if period == "year":
        return now - timedelta(days=365)
    raise ValidationError(f"Invalid period: {period}. Use one of: {', '.join(PERIODS)}")


class ReportService:
    @staticmethod
    def get_statistics(db: Session, period: str = "month") -> Dict[str, Any]:
        since = period_start(period)

        row = (
            db.query(
                func.count(Appointment.id).label("total"),
                func.count(Appointment.id)
                    .filter(Appointment.status == AppointmentStatus.PENDING.value)
                    .label("pending"),
                func.count(Appointment.id)
                    .filter(Appointment.status == AppointmentStatus.APPROVED.value)
                    .label("approved"),
                func.count(Appointment.id)
                    .filter(Appointment.status == AppointmentStatus.CANCELLED.value)
                    .label("cancelled"),
            )
            .filter(Appointment.created_at >= since)
            .one()
        )

        users = (
            db.query(
                func.count(User.id).label("total"),
                func.count(User.id).filter(User.role == Role.REGULAR.value).label("regular_users"),
                func.count(User.id).filter(User.role == Role.STAFF.value).label("staff_users"),
                func.count(User.id).filter(User.role == Role.ADMIN.value).label("admin_users"),
            )
            .filter(User.is_active == True)
            .one()
        )

        # Day-of-week grouping differs per database, so it is done here
        dates = db.query(Appointment.appointment_date).filter(Appointment.created_at >= since).all()
        by_weekday = Counter(d.weekday() for (d,) in dates if d is not None)
        weekly = [
            {"day_name": calendar.day_name[i], "count": by_weekday[i]}
            for i in range(7) if by_weekday[i]
        ]

        return {
            "period": period,
            "appointments": {
                "total": row.total,
                "pending": row.pending,
                "approved": row.approved,
                "cancelled": row.cancelled,
            },
            "users": {
                "total": users.total,
                "regular_users": users.regular_users,
                "staff_users": users.staff_users,
                "admin_users": users.admin_users,
            },
            "weekly_distribution": weekly,
        }

    @staticmethod
    def get_recent_appointments(db: Session, period: str = "month", limit: int = 20) -> List[Dict[str, Any]]:
        since = period_start(period)
        rows = (
            db.query(Appointment, User.name)
            .outerjoin(User, User.id == Appointment.user_id)
            .filter(Appointment.created_at >= since)
            .order_by(Appointment.created_at.desc(), Appointment.id.desc())
            .limit(limit)
            .all()
        )
        return [
            {
                "id": a.id,
                "name": " ".join(p for p in (a.first_name, a.last_name) if p),
                "user_name": user_name,
                "hospital": a.hospital,
                "appointment_date": a.appointment_date.strftime("%d/%m/%Y") if a.appointment_date else "-",
                "appointment_time": a.appointment_time,
                "status": a.status,
            }
            for a, user_name in rows
        ]

    @staticmethod
    def generate_report_pdf(db: Session, period: str = "month") -> bytes:
        stats = ReportService.get_statistics(db, period)
        recent = ReportService.get_recent_appointments(db, period)
        now = datetime.now(timezone.utc)

        buffer = BytesIO()
        doc = SimpleDocTemplate(buffer, pagesize=A4, topMargin=0.6*inch, bottomMargin=0.6*inch,
                                leftMargin=0.75*inch, rightMargin=0.75*inch)
        styles = getSampleStyleSheet()
        story = []

        primary_color = colors.HexColor('#0c4a6e')
        header_bg = colors.HexColor('#e0f2fe')
        bs = styles['BodyText']
        section_header = ParagraphStyle('SectionHeader', parent=styles['Heading2'], fontSize=14,
                                        textColor=primary_color, spaceBefore=12, spaceAfter=6)
        td = ParagraphStyle('TD', parent=bs, fontSize=9)

        table_style = TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), header_bg),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('GRID', (0, 0), (-1, -1), 0.25, colors.HexColor('#e2e8f0')),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
            ('PADDING', (0, 0), (-1, -1), 5),
        ])

        story.append(Paragraph('Hospital Shuttle Booking Report', styles['Title']))
        story.append(Paragraph(PERIODS[period], bs))
        story.append(Paragraph(f"Generated: {now.strftime('%d/%m/%Y %H:%M')} UTC", bs))
        story.append(Spacer(1, 0.2 * inch))

        story.append(Paragraph('Bookings', section_header))
        a = stats["appointments"]
        bookings = Table([
            ['Total', 'Pending', 'Approved', 'Cancelled'],
            [a["total"], a["pending"], a["approved"], a["cancelled"]],
        ], colWidths=[1.5*inch]*4)
        bookings.setStyle(table_style)
        story.append(bookings)

        story.append(Paragraph('Active users', section_header))
        u = stats["users"]
        users = Table([
            ['Total', 'Riders', 'Staff', 'Admins'],
            [u["total"], u["regular_users"], u["staff_users"], u["admin_users"]],
        ], colWidths=[1.5*inch]*4)
        users.setStyle(table_style)
        story.append(users)

        story.append(Paragraph(f'Latest bookings ({len(recent)})', section_header))
        rows = [['ID', 'Name', 'Hospital', 'Date', 'Status']]
        for r in recent:
            rows.append([
                r["id"],
                Paragraph(r["name"] or '-', td),
                Paragraph(r["hospital"] or '-', td),
                r["appointment_date"],
                r["status"],
            ])
        latest = Table(rows, colWidths=[0.5*inch, 2.0*inch, 2.2*inch, 1.0*inch, 1.0*inch], repeatRows=1)
        latest.setStyle(table_style)
        story.append(latest)

        doc.build(story)
        pdf = buffer.getvalue()
        buffer.close()
        logger.info("Generated %s report PDF (%s bytes)", period, len(pdf))
        return pdf
