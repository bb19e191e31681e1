"""Excel export of public bookings using pandas."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import pandas as pd
from openpyxl.utils import get_column_letter

from database.schemas import Booking, BookingStatus
from utils.helpers import format_datetime
from utils.logger import logger


def bookings_dataframe(bookings: list[Booking]) -> pd.DataFrame:
    """One row per booking, times rendered in the configured zone."""
    rows = []
    for booking in sorted(bookings, key=lambda b: b.start_date):
        duration_hours = (booking.end_date - booking.start_date).total_seconds() / 3600
        rows.append({
            "Equipment": booking.equipment_name,
            "Equipment ID": booking.equipment_id,
            "Booked by": booking.user_display_name,
            "User ID": booking.user_id,
            "Start": format_datetime(booking.start_date, "report"),
            "End": format_datetime(booking.end_date, "report"),
            "Duration (h)": round(duration_hours, 2),
            "Status": booking.status.value,
            "Booked at": format_datetime(booking.booked_at, "report"),
            "Cancelled at": format_datetime(booking.cancelled_at, "report") if booking.cancelled_at else "",
        })
    return pd.DataFrame(rows)


def generate_bookings_report(
    bookings: list[Booking],
    reports_dir: Path = Path("reports/files"),
    now: Optional[datetime] = None,
) -> Optional[Path]:
    """
    Write an Excel workbook with a bookings sheet and a summary sheet.

    Returns the file path, or None when there is nothing to export or writing fails.
    """
    if not bookings:
        logger.info("No bookings found for report")
        return None

    try:
        now = now or datetime.now(timezone.utc)
        df = bookings_dataframe(bookings)

        reports_dir.mkdir(parents=True, exist_ok=True)
        file_path = reports_dir / f"bookings_{now.strftime('%Y%m%d_%H%M%S')}.xlsx"

        with pd.ExcelWriter(file_path, engine="openpyxl") as writer:
            df.to_excel(writer, index=False, sheet_name="Bookings")

            worksheet = writer.sheets["Bookings"]
            # Auto column width, capped at 50 characters
            for idx, col in enumerate(df.columns, start=1):
                max_length = max(df[col].astype(str).apply(len).max(), len(col)) + 2
                worksheet.column_dimensions[get_column_letter(idx)].width = min(max_length, 50)

            booked = [b for b in bookings if b.status == BookingStatus.BOOKED]
            df_summary = pd.DataFrame({
                "Metric": [
                    "Total bookings",
                    "Booked",
                    "Cancelled",
                    "Booked hours",
                    "Unique users",
                    "Unique equipment",
                ],
                "Value": [
                    len(bookings),
                    len(booked),
                    len(bookings) - len(booked),
                    round(sum((b.end_date - b.start_date).total_seconds() for b in booked) / 3600, 2),
                    len({b.user_id for b in bookings}),
                    len({b.equipment_id for b in bookings}),
                ],
            })
            df_summary.to_excel(writer, index=False, sheet_name="Summary")

            summary_sheet = writer.sheets["Summary"]
            summary_sheet.column_dimensions["A"].width = 25
            summary_sheet.column_dimensions["B"].width = 15

        logger.info(f"Generated report: {file_path.name}, {len(bookings)} bookings")
        return file_path

    except (OSError, ValueError) as e:
        logger.error(f"Error generating report: {e}", exc_info=True)
        return None
