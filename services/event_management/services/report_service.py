"""Servicio de reportes de asistencia por evento"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, case, and_
from typing import Dict, List
from io import BytesIO
import logging

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.colors import HexColor
from reportlab.pdfgen import canvas

from app.core.config import settings
from shared.cache.redis_client import cache_get, cache_set
from shared.database.models import Event, Guest, ScanRecord, User

logger = logging.getLogger(__name__)


def report_cache_key(event_id) -> str:
    return f"events:report:{event_id}"


def _pct(part: int, total: int) -> float:
    if not total:
        return 0.0
    return round(part * 100.0 / total, 1)


class ReportService:
    """Agregados de check-in: reporte del evento, log de check-ins y dashboard"""

    @staticmethod
    async def guest_counts(db: AsyncSession, event_ids: List) -> Dict:
        """
        Total de invitados y escaneados por evento

        Returns:
            {event_id: {"total": int, "scanned": int}}
        """
        if not event_ids:
            return {}
        stmt = (
            select(
                Guest.event_id,
                func.count(Guest.id),
                func.coalesce(func.sum(case((Guest.consumed_scans > 0, 1), else_=0)), 0)
            )
            .where(Guest.event_id.in_(event_ids))
            .group_by(Guest.event_id)
        )
        result = await db.execute(stmt)
        return {
            row[0]: {"total": int(row[1]), "scanned": int(row[2])}
            for row in result.all()
        }

    @staticmethod
    async def get_event_report(db: AsyncSession, event: Event, use_cache: bool = True) -> Dict:
        """
        Reporte de asistencia del evento (lo consume ReportsScreen)

        Cache: Redis por REPORT_CACHE_TTL, invalidado en cada escaneo aceptado
        """
        cache_key = report_cache_key(event.id)
        if use_cache:
            cached = await cache_get(cache_key)
            if cached:
                return cached

        is_single = Guest.type == "single"
        is_double = Guest.type == "double"
        stmt = select(
            func.count(Guest.id),
            func.coalesce(func.sum(case((is_single, 1), else_=0)), 0),
            func.coalesce(func.sum(case((is_double, 1), else_=0)), 0),
            func.coalesce(func.sum(case((and_(is_single, Guest.consumed_scans >= 1), 1), else_=0)), 0),
            func.coalesce(func.sum(case((and_(is_double, Guest.consumed_scans >= 2), 1), else_=0)), 0),
            func.coalesce(func.sum(case((and_(is_double, Guest.consumed_scans == 1), 1), else_=0)), 0),
            func.coalesce(func.sum(Guest.consumed_scans), 0),
        ).where(Guest.event_id == event.id)
        row = (await db.execute(stmt)).one()

        total_invited, single_invites, double_invites = int(row[0]), int(row[1]), int(row[2])
        single_checked_in, double_checked_in, double_partial = int(row[3]), int(row[4]), int(row[5])
        total_scans = int(row[6])
        total_checked_in = single_checked_in + double_checked_in + double_partial
        total_allowed = single_invites + 2 * double_invites

        report = {
            "eventId": str(event.id),
            "eventName": event.name,
            "date": event.event_date.isoformat() if event.event_date else None,
            "location": event.location,
            "status": event_status(event),
            "totalInvited": total_invited,
            "totalCheckedIn": total_checked_in,
            "attendanceRate": _pct(total_checked_in, total_invited),
            "singleInvites": single_invites,
            "doubleInvites": double_invites,
            "singleCheckedIn": single_checked_in,
            "doubleCheckedIn": double_checked_in,
            "doublePartial": double_partial,
            "totalScans": total_scans,
            "totalAllowedScans": total_allowed,
        }

        if use_cache:
            await cache_set(cache_key, report, expire=settings.REPORT_CACHE_TTL)
        return report

    @staticmethod
    async def get_checkin_logs(db: AsyncSession, event_id) -> List[Dict]:
        """
        Estado de check-in por invitado con su último escaneo

        Compatible con: EventLogsScreen (remainednumberofscans)
        """
        last_scan = (
            select(
                ScanRecord.guest_id.label("guest_id"),
                func.max(ScanRecord.scanned_at).label("last_scanned_at")
            )
            .where(ScanRecord.event_id == event_id)
            .group_by(ScanRecord.guest_id)
            .subquery()
        )
        stmt = (
            select(Guest, last_scan.c.last_scanned_at)
            .outerjoin(last_scan, last_scan.c.guest_id == Guest.id)
            .where(Guest.event_id == event_id)
            .order_by(Guest.last_name.asc(), Guest.first_name.asc())
        )
        result = await db.execute(stmt)

        operators = await ReportService._last_operators(db, event_id)
        logs = []
        for guest, last_scanned_at in result.all():
            logs.append({
                "guestId": str(guest.id),
                "name": guest.full_name,
                "phone": guest.phone,
                "type": guest.type,
                "totalScans": guest.total_allowed_scans,
                "consumedScans": guest.consumed_scans,
                "remainednumberofscans": guest.remaining_scans,
                "status": guest.status_label,
                "lastScannedAt": last_scanned_at.isoformat() if last_scanned_at else None,
                "lastScannedBy": operators.get(guest.id),
            })
        return logs

    @staticmethod
    async def _last_operators(db: AsyncSession, event_id) -> Dict:
        """Email del operador del último escaneo de cada invitado"""
        stmt = (
            select(ScanRecord.guest_id, User.email)
            .join(User, User.id == ScanRecord.scanned_by_user_id)
            .where(ScanRecord.event_id == event_id)
            .order_by(ScanRecord.scanned_at.asc())
        )
        result = await db.execute(stmt)
        # El último gana por el orden ascendente
        return {guest_id: email for guest_id, email in result.all()}

    @staticmethod
    async def get_dashboard_stats(db: AsyncSession) -> Dict:
        """Totales globales para el dashboard"""
        total_events = (await db.execute(select(func.count(Event.id)))).scalar() or 0
        active_events = (await db.execute(
            select(func.count(Event.id)).where(
                Event.active.is_(True),
                Event.cancelled.is_(False),
                Event.completed.is_(False)
            )
        )).scalar() or 0
        total_guests = (await db.execute(select(func.count(Guest.id)))).scalar() or 0
        checked_in = (await db.execute(
            select(func.count(Guest.id)).where(Guest.consumed_scans > 0)
        )).scalar() or 0
        total_scans = (await db.execute(select(func.count(ScanRecord.id)))).scalar() or 0

        return {
            "totalEvents": total_events,
            "activeEvents": active_events,
            "totalGuests": total_guests,
            "checkedInGuests": checked_in,
            "totalScans": total_scans,
            "checkInRate": _pct(checked_in, total_guests),
        }

    @staticmethod
    def render_report_pdf(report: Dict) -> BytesIO:
        """
        Genera el PDF del reporte usando ReportLab
        """
        buffer = BytesIO()
        c = canvas.Canvas(buffer, pagesize=A4)
        width, height = A4

        primary_color = HexColor("#2563eb")
        secondary_color = HexColor("#1f2937")
        text_color = HexColor("#6b7280")

        c.setFillColor(primary_color)
        c.setFont("Helvetica-Bold", 22)
        c.drawCentredString(width / 2, height - 30 * mm, f"{report.get('eventName') or 'Event'} - Event Report")

        c.setStrokeColor(HexColor("#e5e7eb"))
        c.setLineWidth(2)
        c.line(30 * mm, height - 38 * mm, width - 30 * mm, height - 38 * mm)

        rows = [
            ("Date", report.get("date") or "-"),
            ("Location", report.get("location") or "-"),
            ("Status", report.get("status") or "-"),
            ("Total invited", report.get("totalInvited", 0)),
            ("Total checked in", report.get("totalCheckedIn", 0)),
            ("Attendance rate", f"{report.get('attendanceRate', 0)}%"),
            ("Single invites", report.get("singleInvites", 0)),
            ("Double invites", report.get("doubleInvites", 0)),
            ("Single checked in", report.get("singleCheckedIn", 0)),
            ("Double checked in", report.get("doubleCheckedIn", 0)),
            ("Double partial", report.get("doublePartial", 0)),
            ("Scans used / allowed", f"{report.get('totalScans', 0)} / {report.get('totalAllowedScans', 0)}"),
        ]

        y_pos = height - 55 * mm
        for label, value in rows:
            c.setFillColor(text_color)
            c.setFont("Helvetica", 11)
            c.drawString(35 * mm, y_pos, f"{label}:")
            c.setFillColor(secondary_color)
            c.setFont("Helvetica-Bold", 12)
            c.drawString(95 * mm, y_pos, str(value))
            y_pos -= 10 * mm

        c.showPage()
        c.save()
        buffer.seek(0)
        return buffer


def event_status(event: Event) -> str:
    if event.cancelled:
        return "cancelled"
    if event.completed:
        return "completed"
    return "active" if event.active else "inactive"
