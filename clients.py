"""
clients.py
ClientRepository: a trainer's client list cached in memory over the record store.

Cache policy:
- successful writes are merged into the local list (insert at front / replace / remove)
- any store failure triggers one full re-fetch, then the error is re-raised
Status is never cached; it is derived from end_date whenever it is read.
"""

from __future__ import annotations

import logging
from datetime import date

import db
import utils
from errors import (
    DuplicateIdentityError,
    NotAuthenticatedError,
    StoreConflictError,
    StoreError,
    ValidationError,
)
from models import Client, STATUSES

logger = logging.getLogger(__name__)

IDENTITY_FIELDS = ("document_type", "cedula")
EDITABLE_FIELDS = ("document_type", "cedula", "full_name", "phone", "start_date", "duration_months")


class ClientRepository:
    def __init__(self, trainer_id: int | None, store=db, today=date.today):
        self.trainer_id = trainer_id
        self.store = store
        self._today = today
        self.clients: list[Client] = []
        self.error: str | None = None

    # ---------- reads ----------

    def today(self) -> date:
        return self._today()

    def _owner(self) -> dict:
        if self.trainer_id is None:
            raise NotAuthenticatedError("User not authenticated")
        return {"trainer_id": self.trainer_id}

    def fetch_clients(self) -> list[Client]:
        """
        Reload the trainer's clients from the store, newest first.
        On failure the cache is emptied and the message kept in `error`.
        """
        if self.trainer_id is None:
            return self.clients
        self.error = None
        try:
            rows = self.store.query("clients", self._owner(), [("created_at", "desc"), ("id", "desc")])
        except StoreError as e:
            logger.error("Error fetching clients for trainer %s: %s", self.trainer_id, e)
            self.error = str(e)
            self.clients = []
            return self.clients
        self.clients = [Client.from_row(r) for r in rows]
        return self.clients

    def get(self, client_id: int) -> Client | None:
        return next((c for c in self.clients if c.id == client_id), None)

    def status_of(self, client: Client) -> str:
        return client.status(self.today())

    def stats(self) -> dict:
        today = self.today()
        counts = {"total": len(self.clients)}
        for status in STATUSES:
            counts[status] = 0
        for c in self.clients:
            counts[c.status(today)] += 1
        return counts

    def search(self, term: str = "", status_filter: str = "all") -> list[Client]:
        today = self.today()
        term = (term or "").strip()
        result = []
        for c in self.clients:
            if term and not (
                term.lower() in c.full_name.lower() or term in c.cedula or term in c.phone
            ):
                continue
            if status_filter != "all" and c.status(today) != status_filter:
                continue
            result.append(c)
        return result

    # ---------- duplicate-identity guard ----------

    def check_duplicate_identity(self, document_type: str, cedula: str, exclude_id: int | None = None) -> None:
        """
        Fast pre-check against the store; the UNIQUE constraint on
        (trainer_id, document_type, cedula) remains the real guard.
        """
        filters = {**self._owner(), "document_type": document_type, "cedula": cedula}
        if exclude_id is not None:
            filters["id__ne"] = exclude_id
        existing = self.store.query("clients", filters)
        if existing:
            logger.warning(
                "Rejected duplicate identity %s-%s for trainer %s", document_type, cedula, self.trainer_id
            )
            raise DuplicateIdentityError(document_type, cedula, existing[0]["id"])

    # ---------- writes ----------

    def _resync(self, action: str, err: Exception) -> None:
        logger.error("Error %s client: %s", action, err)
        self.error = str(err)
        self.fetch_clients()
        # keep the write failure visible after the re-fetch cleared it
        self.error = self.error or str(err)

    def create_client(self, document_type: str, cedula: str, full_name: str, phone: str,
                      start_date: str, duration_months: int) -> Client:
        owner = self._owner()
        self.error = None
        cedula = str(cedula or "").strip()
        errors = utils.validate_client_inputs(document_type, cedula, full_name, phone, start_date, duration_months)
        if errors:
            raise ValidationError(errors)

        now = db.now_iso()
        record = {
            **owner,
            "document_type": document_type,
            "cedula": cedula,
            "full_name": str(full_name).strip(),
            "phone": str(phone).strip(),
            "start_date": utils.format_iso(utils.parse_iso(start_date)),
            "duration_months": duration_months,
            "end_date": utils.calc_end_date(start_date, duration_months),
            "created_at": now,
            "updated_at": now,
        }
        try:
            self.check_duplicate_identity(document_type, cedula)
            row = self.store.insert("clients", record)
        except StoreConflictError as e:
            self._resync("creating", e)
            raise DuplicateIdentityError(document_type, cedula) from e
        except StoreError as e:
            self._resync("creating", e)
            raise

        client = Client.from_row(row)
        self.clients = [client, *self.clients]
        logger.info("Client %s created for trainer %s", client.id, self.trainer_id)
        return client

    def _current(self, client_id: int) -> Client | None:
        current = self.get(client_id)
        if current is None:
            rows = self.store.query("clients", {**self._owner(), "id": client_id})
            current = Client.from_row(rows[0]) if rows else None
        return current

    def update_client(self, client_id: int, **changes) -> Client:
        owner = self._owner()
        self.error = None
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown client fields: {', '.join(sorted(unknown))}")
        if "cedula" in changes:
            changes["cedula"] = str(changes["cedula"] or "").strip()

        try:
            current = self._current(client_id)
            if current is None:
                raise ValidationError(f"Client {client_id} not found.")

            merged = {
                "document_type": changes.get("document_type", current.document_type),
                "cedula": changes.get("cedula", current.cedula),
                "full_name": changes.get("full_name", current.full_name),
                "phone": changes.get("phone", current.phone),
                "start_date": changes.get("start_date", current.start_date.isoformat()),
                "duration_months": changes.get("duration_months", current.duration_months),
            }
            errors = utils.validate_client_inputs(**merged)
            if errors:
                raise ValidationError(errors)

            patch = {k: merged[k] for k in changes}
            if "full_name" in patch:
                patch["full_name"] = str(patch["full_name"]).strip()
            if "phone" in patch:
                patch["phone"] = str(patch["phone"]).strip()
            if any(k in changes for k in IDENTITY_FIELDS):
                self.check_duplicate_identity(merged["document_type"], merged["cedula"], exclude_id=client_id)
            if "start_date" in changes or "duration_months" in changes:
                patch["start_date"] = utils.format_iso(utils.parse_iso(merged["start_date"]))
                patch["end_date"] = utils.calc_end_date(merged["start_date"], merged["duration_months"])
            patch["updated_at"] = db.now_iso()

            row = self.store.update("clients", client_id, patch, owner)
        except StoreConflictError as e:
            self._resync("updating", e)
            raise DuplicateIdentityError(merged["document_type"], merged["cedula"]) from e
        except StoreError as e:
            self._resync("updating", e)
            raise

        client = Client.from_row(row)
        self.clients = [client if c.id == client_id else c for c in self.clients]
        logger.info("Client %s updated", client_id)
        return client

    def delete_client(self, client_id: int) -> None:
        owner = self._owner()
        self.error = None
        try:
            self.store.delete("clients", client_id, owner)
        except StoreError as e:
            self._resync("deleting", e)
            raise
        self.clients = [c for c in self.clients if c.id != client_id]
        logger.info("Client %s deleted", client_id)

    def renew_client(self, client_id: int, duration_months: int, start_date: str | None = None) -> Client:
        """
        Restart the membership window: start = start_date or today,
        end = start + duration_months. The old end_date plays no part.
        """
        owner = self._owner()
        self.error = None
        if start_date:
            try:
                utils.parse_iso(start_date)
            except (TypeError, ValueError) as e:
                raise ValidationError("Start date must be a valid ISO date (YYYY-MM-DD).") from e
        new_start, new_end = utils.renewal_dates(duration_months, start_date, self.today())

        patch = {
            "start_date": new_start,
            "end_date": new_end,
            "duration_months": duration_months,
            "updated_at": db.now_iso(),
        }
        try:
            row = self.store.update("clients", client_id, patch, owner)
        except StoreError as e:
            self._resync("renewing", e)
            raise

        client = Client.from_row(row)
        self.clients = [client if c.id == client_id else c for c in self.clients]
        logger.info("Client %s renewed until %s", client_id, new_end)
        return client

    def clear_state(self) -> None:
        self.clients = []
        self.error = None
