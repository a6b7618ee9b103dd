"""
utils.py
Validation, dates, membership status, exports, sample data.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta
from urllib.parse import quote

import pandas as pd

import db
from errors import ValidationError
from models import DOCUMENT_TYPES, EXPIRING_WINDOW_DAYS


def today_iso(today: date | None = None) -> str:
    return format_iso(today or date.today())


def parse_iso(d: str) -> date:
    """
    Parse 'YYYY-MM-DD' into a plain calendar date.
    No time component or timezone is involved, so the day can never shift.
    """
    if isinstance(d, datetime):
        return d.date()
    if isinstance(d, date):
        return d
    return date.fromisoformat(d)


def format_iso(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}-{d.day:02d}"


def add_months(start: date, months: int) -> date:
    """
    Add months while keeping day in valid range (e.g., Jan 31 + 1 month => Feb 28/29).
    This is the only month arithmetic in the project: enrollment and renewal both use it.
    """
    y = start.year + (start.month - 1 + months) // 12
    m = (start.month - 1 + months) % 12 + 1
    last_day = calendar.monthrange(y, m)[1]
    return date(y, m, min(start.day, last_day))


def calc_end_date(start_date_iso: str, duration_months: int) -> str:
    validate_duration(duration_months)
    return format_iso(add_months(parse_iso(start_date_iso), duration_months))


# ---------- Membership status ----------

def days_until(end_date, today: date | None = None) -> int:
    # Both sides are calendar dates, so the difference is already a whole number of days.
    return (parse_iso(end_date) - parse_iso(today or date.today())).days


def classify_status(end_date, today: date | None = None) -> str:
    diff_days = days_until(end_date, today)
    if diff_days < 0:
        return "expired"
    if diff_days <= EXPIRING_WINDOW_DAYS:
        return "expiring"
    return "active"


def renewal_dates(duration_months: int, start_date: str | date | None = None,
                  today: date | None = None) -> tuple[str, str]:
    """
    New (start_date, end_date) for a renewal.
    The window restarts from the chosen start (today by default); the previous
    end_date is deliberately ignored, so renewals never stack.
    """
    validate_duration(duration_months)
    start = parse_iso(start_date or today or date.today())
    return format_iso(start), format_iso(add_months(start, duration_months))


# ---------- Validation ----------

def validate_duration(duration_months) -> None:
    if isinstance(duration_months, bool) or not isinstance(duration_months, int) or duration_months < 1:
        raise ValidationError("Duration must be a positive whole number of months.")


def validate_client_inputs(document_type: str, cedula: str, full_name: str, phone: str,
                           start_date: str, duration_months) -> list[str]:
    errors: list[str] = []
    if document_type not in DOCUMENT_TYPES:
        errors.append("Document type must be V or E.")
    if not str(cedula or "").strip():
        errors.append("ID number is required.")
    elif not str(cedula).strip().isdigit():
        errors.append("ID number must contain digits only.")
    if not str(full_name or "").strip():
        errors.append("Full name is required.")
    if not str(phone or "").strip():
        errors.append("Phone is required.")
    if not start_date:
        errors.append("Start date is required.")
    else:
        try:
            parse_iso(start_date)
        except (TypeError, ValueError):
            errors.append("Start date must be a valid ISO date (YYYY-MM-DD).")
    try:
        validate_duration(duration_months)
    except ValidationError as e:
        errors.extend(e.messages)
    return errors


# ---------- Reminders & exports ----------

def reminder_message(client, today: date | None = None) -> str:
    status = client.status(today)
    state = "has expired" if status == "expired" else "is about to expire"
    return (
        f"Hi {client.full_name}, your membership {state} "
        f"(end date {client.end_date.strftime('%d/%m/%Y')}). "
        "Please get in touch to renew your training plan. See you soon! 💪"
    )


def whatsapp_link(phone: str, text: str) -> str:
    digits = "".join(ch for ch in phone if ch.isdigit())
    return f"https://wa.me/{digits}?text={quote(text)}"


def clients_to_csv_bytes(clients, today: date | None = None) -> bytes:
    df = pd.DataFrame([c.as_row(today) for c in clients])
    return df.to_csv(index=False).encode("utf-8")


def insert_sample_data(trainer_id: int, today: date | None = None) -> None:
    """
    Insert 3 clients for the trainer: one active, one expiring, one expired.
    Identities are derived from the trainer id so repeated runs hit the unique constraint
    instead of duplicating people.
    """
    today = today or date.today()
    now = db.now_iso()

    c1_start = today - timedelta(days=10)
    c2_start = add_months(today + timedelta(days=2), -1)
    c3_start = today - timedelta(days=70)

    samples = [
        ("V", f"{trainer_id}0000001", "Ana Rodríguez", "+584141111111", c1_start, 3),
        ("V", f"{trainer_id}0000002", "Luis Pérez", "+584142222222", c2_start, 1),
        ("E", f"{trainer_id}0000003", "María Gómez", "+584143333333", c3_start, 2),
    ]
    for document_type, cedula, full_name, phone, start, months in samples:
        db.insert(
            "clients",
            {
                "trainer_id": trainer_id,
                "document_type": document_type,
                "cedula": cedula,
                "full_name": full_name,
                "phone": phone,
                "start_date": format_iso(start),
                "duration_months": months,
                "end_date": format_iso(add_months(start, months)),
                "created_at": now,
                "updated_at": now,
            },
        )
