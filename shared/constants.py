"""
Shared constants for the medical records chain indexer.

Role codes, status vocabularies, collection names, and default values used
across all modules.
"""

# ---------------------------------------------------------------------------
# On-chain role codes (MedicalRecords.Role enum)
# ---------------------------------------------------------------------------

ROLE_CODE_TO_NAME: dict[int, str] = {
    1: "Doctor",
    7: "LabTechnician",
}
UNASSIGNED_ROLE_NAME = "Unassigned Professional"

ROLE_PATIENT = "Patient"
ROLE_HOSPITAL_ADMIN = "HospitalAdmin"

HOSPITAL_ADMIN_NAME_TEMPLATE = "Admin for {hospital_name}"

# ---------------------------------------------------------------------------
# Store collections
# ---------------------------------------------------------------------------

COLLECTION_REGISTRATION_REQUESTS = "registration_requests"
COLLECTION_HOSPITALS = "hospitals"
COLLECTION_USERS = "users"
COLLECTION_RECORDS = "records"
COLLECTION_ACCESS_REQUESTS = "access_requests"
COLLECTION_ACCESS_GRANTS = "access_grants"

ACCESS_REQUEST_PENDING = "pending"

# ---------------------------------------------------------------------------
# Defaults (overridable via config/*.json and environment)
# ---------------------------------------------------------------------------

DEFAULT_CHAIN_ID = 80002  # Polygon Amoy
DEFAULT_RECONNECT_DELAY_SECONDS = 5.0
DEFAULT_DISPATCH_QUEUE_SIZE = 1000
DEFAULT_DISPATCH_WORKERS = 4
CONTRACT_ABI_NAME = "medical_records"
