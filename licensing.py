"""
licensing.py
License gate (who may use the app) and license-key redemption.
"""

from __future__ import annotations

import logging
from datetime import date

import db
from errors import LicenseError, RecordNotFoundError
from models import License, User
from utils import days_until, parse_iso

logger = logging.getLogger(__name__)

# Gate outcomes. Denial is a screen, not an error.
LOGIN_REQUIRED = "login_required"
LICENSE_EXPIRED = "license_expired"
ALLOWED = "allowed"


def evaluate_access(user: User | None, license: License | None, now=None) -> str:
    """
    Rules, in order:
    1. no user -> login
    2. superuser -> allowed, whatever the license says
    3. no license -> expired screen
    4. expiry_date reached (the expiry day itself is denied), or status 'expired' -> expired screen
    5. allowed
    """
    if user is None:
        return LOGIN_REQUIRED
    if user.is_superuser:
        return ALLOWED
    if license is None:
        logger.warning("Access denied for user %s: no license", user.username)
        return LICENSE_EXPIRED
    today = parse_iso(now or date.today())
    if license.expiry_date <= today or license.status == "expired":
        logger.warning("Access denied for user %s: license %s expired", user.username, license.license_key)
        return LICENSE_EXPIRED
    return ALLOWED


def can_access(user: User | None, license: License | None, now=None) -> bool:
    return evaluate_access(user, license, now) == ALLOWED


def days_remaining(license: License, today: date | None = None) -> int:
    return days_until(license.expiry_date, today)


def license_display_status(license: License, today: date | None = None) -> str:
    if license.status == "expired" or days_remaining(license, today) <= 0:
        return "expired"
    return "active"


def fetch_license(trainer_id: int, store=db) -> License | None:
    """The trainer's license with the latest expiry, or None."""
    rows = store.query("licenses", {"trainer_id": trainer_id}, [("expiry_date", "desc")])
    if not rows:
        logger.info("No license found for trainer %s", trainer_id)
        return None
    return License.from_row(rows[0])


def redeem_license(license_key: str, trainer_id: int, store=db) -> License:
    license_key = (license_key or "").strip()
    rows = store.query("licenses", {"license_key": license_key}) if license_key else []
    if not rows:
        raise LicenseError("Invalid license key.")

    found = License.from_row(rows[0])
    if found.trainer_id == trainer_id:
        return found
    if found.trainer_id is not None:
        raise LicenseError("This license is already assigned to another user.")

    # Only claims the key while it is still unassigned.
    try:
        row = store.update("licenses", found.id, {"trainer_id": trainer_id}, {"trainer_id": None})
    except RecordNotFoundError as e:
        raise LicenseError("This license is already assigned to another user.") from e
    logger.info("License %s assigned to trainer %s", license_key, trainer_id)
    return License.from_row(row)
