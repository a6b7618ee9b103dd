"""
errors.py
Exception types raised by the membership engine and the record store.
"""

from __future__ import annotations


class GymCoachError(Exception):
    pass


class ValidationError(GymCoachError):
    """
    Input rejected before any store mutation. `messages` holds one line per problem.
    """

    def __init__(self, messages: list[str] | str):
        if isinstance(messages, str):
            messages = [messages]
        self.messages = list(messages)
        super().__init__("; ".join(self.messages))


class DuplicateIdentityError(ValidationError):
    def __init__(self, document_type: str, cedula: str, existing_id: int | None = None):
        self.document_type = document_type
        self.cedula = cedula
        self.existing_id = existing_id
        super().__init__(f"A client with ID {document_type}-{cedula} already exists.")


class NotAuthenticatedError(GymCoachError):
    pass


class StoreError(GymCoachError):
    pass


class StoreConflictError(StoreError):
    pass


class RecordNotFoundError(StoreError):
    pass


class LicenseError(GymCoachError):
    pass
