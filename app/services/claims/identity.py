"""Caller identity as seen by the claims service."""

from dataclasses import dataclass


class UserRole:
    PATIENT = "patient"
    PRACTITIONER = "practitioner"
    BILLING = "billing"
    ADMIN = "admin"

    ALL = [PATIENT, PRACTITIONER, BILLING, ADMIN]

    # May record payer outcomes and run batch scrubs
    STAFF = {BILLING, ADMIN}


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: str

    @property
    def is_patient(self) -> bool:
        return self.role == UserRole.PATIENT

    @property
    def is_practitioner(self) -> bool:
        return self.role == UserRole.PRACTITIONER

    @property
    def is_staff(self) -> bool:
        return self.role in UserRole.STAFF
