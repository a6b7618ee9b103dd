"""
models.py
Lightweight domain helpers (constants, dataclasses).
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import date

# Days before end_date during which a membership counts as "expiring"
EXPIRING_WINDOW_DAYS = 3

# Renewal / enrollment durations offered by the UI (months)
DURATION_OPTIONS = [1, 2, 3, 4, 5, 6]

DOCUMENT_TYPES = {
    "V": "National ID",
    "E": "Foreign ID",
}

ROLES = ("trainer", "admin", "superuser")

STATUSES = ("active", "expiring", "expired")


@dataclass(frozen=True)
class User:
    id: int
    username: str
    role: str
    full_name: str | None = None

    @property
    def is_superuser(self) -> bool:
        return self.role == "superuser"


@dataclass(frozen=True)
class Client:
    id: int | None
    trainer_id: int
    document_type: str  # 'V' or 'E'
    cedula: str
    full_name: str
    phone: str
    start_date: date
    duration_months: int
    end_date: date
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row) -> "Client":
        return cls(
            id=row["id"],
            trainer_id=row["trainer_id"],
            document_type=row["document_type"],
            cedula=row["cedula"],
            full_name=row["full_name"],
            phone=row["phone"],
            start_date=date.fromisoformat(row["start_date"]),
            duration_months=int(row["duration_months"]),
            end_date=date.fromisoformat(row["end_date"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @property
    def identity(self) -> str:
        return f"{self.document_type}-{self.cedula}"

    def status(self, today: date | None = None) -> str:
        # Never stored: depends on the calendar, not on writes.
        from utils import classify_status

        return classify_status(self.end_date, today)

    def as_row(self, today: date | None = None) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "cedula": self.cedula,
            "full_name": self.full_name,
            "phone": self.phone,
            "start_date": self.start_date.isoformat(),
            "duration_months": self.duration_months,
            "end_date": self.end_date.isoformat(),
            "status": self.status(today),
        }


@dataclass(frozen=True)
class License:
    id: int | None
    license_key: str
    expiry_date: date
    status: str  # 'active' or 'expired'
    trainer_id: int | None
    client_name: str | None = None
    client_email: str | None = None

    @classmethod
    def from_row(cls, row) -> "License":
        return cls(
            id=row["id"],
            license_key=row["license_key"],
            expiry_date=date.fromisoformat(row["expiry_date"]),
            status=row["status"],
            trainer_id=row["trainer_id"],
            client_name=row["client_name"],
            client_email=row["client_email"],
        )
