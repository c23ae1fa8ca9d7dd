"""
Shared data types for the medical records chain indexer.

Centralized dataclasses and enums for the projected entities.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RegistrationStatus(Enum):
    PENDING_HOSPITAL = "pending_hospital"
    VERIFYING = "verifying"  # set by the admin API before the chain tx is sent
    APPROVED = "approved"
    REVOKED = "revoked"


class HospitalStatus(Enum):
    ACTIVE = "active"
    REVOKING = "revoking"  # set by the admin API before the chain tx is sent
    REVOKED = "revoked"


class ProfessionalStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REVOKED = "revoked"


class SubscriptionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"


# ---------------------------------------------------------------------------
# Projected entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RegistrationRequest:
    request_id: int
    hospital_name: str
    requester_address: str
    status: RegistrationStatus


@dataclass(frozen=True)
class Hospital:
    hospital_id: int
    name: str
    admin_address: str
    is_verified: bool
    status: HospitalStatus


@dataclass(frozen=True)
class User:
    address: str  # lower-cased
    name: str | None
    role: str
    hospital_id: int | None
    professional_status: ProfessionalStatus | None
    is_verified: bool
    public_key: str | None = None
    requested_hospital_id: int | None = None


@dataclass(frozen=True)
class Record:
    record_id: int
    owner: str
    title: str
    ipfs_hash: str
    category: str
    is_verified: bool
    uploaded_by: str
    timestamp: datetime


@dataclass(frozen=True)
class AccessRequest:
    request_id: int
    record_ids: list[int]
    professional_address: str
    patient_address: str
    status: str


@dataclass(frozen=True)
class AccessGrant:
    record_id: int
    professional_address: str
    patient_address: str
    expiration_timestamp: datetime
    rewrapped_key: str
    created_at: datetime


# ---------------------------------------------------------------------------
# Store change notifications (consumed by the live-update relay)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StoreMutation:
    collection: str
    key: tuple
    operation: str  # "upsert" | "update" | "delete"
    count: int = 1
