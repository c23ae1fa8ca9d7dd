"""
Projection handlers for MedicalRecords contract events.

One handler per EventKind. Each handler normalizes the decoded event
(integers, epoch-second timestamps, lower-cased addresses), optionally reads
current chain state through the ContractReader, and applies an idempotent
mutation to the ProjectionStore keyed by business identity.

``handle()`` is the failure boundary: any exception from a handler is logged
with the originating transaction hash and the event is dropped. Cancellation
is never swallowed.

Usage:
    handlers = ProjectionHandlers(store, reader)
    await handlers.handle(event)
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from chain.events import ChainEvent, EventKind
from indexer_logging.logger_manager import setup_module_logger
from shared.constants import (
    ACCESS_REQUEST_PENDING,
    HOSPITAL_ADMIN_NAME_TEMPLATE,
    ROLE_CODE_TO_NAME,
    ROLE_HOSPITAL_ADMIN,
    ROLE_PATIENT,
    UNASSIGNED_ROLE_NAME,
)
from shared.types import (
    HospitalStatus,
    ProfessionalStatus,
    RegistrationStatus,
)

if TYPE_CHECKING:
    from chain.contract_reader import ContractReader
    from core.projection_store import ProjectionStore

Handler = Callable[[ChainEvent], Awaitable[None]]


class DispatchTableError(RuntimeError):
    """Raised when the handler table does not cover every EventKind."""


# ---------------------------------------------------------------------------
# Normalization helpers
# ---------------------------------------------------------------------------


def to_int(value: Any) -> int:
    """Chain integers (int, numeric string, hex string) to a native int."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.lower().startswith("0x"):
        return int(value, 16)
    return int(value)


def to_datetime(epoch_seconds: Any) -> datetime:
    return datetime.fromtimestamp(to_int(epoch_seconds), tz=timezone.utc)


def to_address(value: Any) -> str:
    return str(value).lower()


def role_name(code: Any) -> str:
    """Map an on-chain role code to its name; unknown codes degrade to a sentinel."""
    try:
        return ROLE_CODE_TO_NAME.get(to_int(code), UNASSIGNED_ROLE_NAME)
    except (TypeError, ValueError):
        return UNASSIGNED_ROLE_NAME


def _text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return str(value)


def _log_context(event: ChainEvent) -> dict[str, Any]:
    return {
        "tx_hash": event.tx_hash,
        "event_name": event.name,
        "block_number": event.block_number,
    }


class ProjectionHandlers:
    """
    Event-kind to store-mutation projection.

    The store and reader are injected so tests can substitute fakes.
    """

    def __init__(self, store: ProjectionStore, reader: ContractReader) -> None:
        self._store = store
        self._reader = reader
        self._logger = setup_module_logger(
            "projection_handlers", "projection_handlers.log", module_folder="Projection_Logs"
        )

        self._handlers: dict[EventKind, Handler] = {
            EventKind.REGISTRATION_REQUESTED: self._on_registration_requested,
            EventKind.HOSPITAL_VERIFIED: self._on_hospital_verified,
            EventKind.HOSPITAL_REVOKED: self._on_hospital_revoked,
            EventKind.ROLE_ASSIGNED: self._on_role_assigned,
            EventKind.ROLE_REVOKED: self._on_role_revoked,
            EventKind.PUBLIC_KEY_SAVED: self._on_public_key_saved,
            EventKind.RECORD_ADDED: self._on_record_added,
            EventKind.PROFESSIONAL_ACCESS_REQUESTED: self._on_professional_access_requested,
            EventKind.ACCESS_GRANTED: self._on_access_granted,
            EventKind.ACCESS_REVOKED: self._on_access_revoked,
        }
        missing = set(EventKind) - set(self._handlers)
        if missing:
            raise DispatchTableError(
                "No projection handler for: " + ", ".join(sorted(k.value for k in missing))
            )

    @property
    def kinds(self) -> frozenset[EventKind]:
        return frozenset(self._handlers)

    async def handle(self, event: ChainEvent) -> bool:
        """
        Apply one event. Returns True if the handler completed, False if the
        event was dropped because the handler raised.
        """
        handler = self._handlers[event.kind]
        try:
            await handler(event)
        except Exception as e:
            self._logger.error(
                "Error processing %s: %s",
                event.name,
                e,
                extra={**_log_context(event), "error": str(e)},
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Hospital onboarding
    # ------------------------------------------------------------------

    async def _on_registration_requested(self, event: ChainEvent) -> None:
        request_id = to_int(event.args["requestId"])
        hospital_name = event.args["hospitalName"]
        self._logger.info("[Event] RegistrationRequested: ID %d for %s", request_id, hospital_name)

        await self._store.upsert_registration_request(
            request_id,
            hospital_name,
            to_address(event.args["requester"]),
            RegistrationStatus.PENDING_HOSPITAL,
        )

    async def _on_hospital_verified(self, event: ChainEvent) -> None:
        hospital_id = to_int(event.args["hospitalId"])
        admin_address = to_address(event.args["admin"])
        self._logger.info(
            "[Event] HospitalVerified: ID %d for admin %s", hospital_id, admin_address
        )

        request = await self._store.set_registration_status(
            hospital_id,
            RegistrationStatus.APPROVED,
            expected=RegistrationStatus.VERIFYING,
        )
        if request is None:
            self._logger.warning(
                "No VERIFYING registration request for ID %d; ignoring verification",
                hospital_id,
                extra=_log_context(event),
            )
            return

        await self._store.upsert_hospital(
            hospital_id,
            request.hospital_name,
            admin_address,
            is_verified=True,
            status=HospitalStatus.ACTIVE,
        )
        await self._store.upsert_user(
            admin_address,
            name=HOSPITAL_ADMIN_NAME_TEMPLATE.format(hospital_name=request.hospital_name),
            role=ROLE_HOSPITAL_ADMIN,
            professional_status=ProfessionalStatus.APPROVED,
            is_verified=True,
            hospital_id=hospital_id,
        )

    async def _on_hospital_revoked(self, event: ChainEvent) -> None:
        hospital_id = to_int(event.args["hospitalId"])
        self._logger.info("[Event] HospitalRevoked: ID %d", hospital_id)

        moved = await self._store.set_hospital_status(
            hospital_id,
            HospitalStatus.REVOKED,
            is_verified=False,
            expected=HospitalStatus.REVOKING,
        )
        if not moved:
            self._logger.warning(
                "Hospital %d was not in REVOKING state; cascading staff revocation anyway",
                hospital_id,
                extra=_log_context(event),
            )

        revoked = await self._store.revoke_hospital_staff(hospital_id)
        if revoked:
            self._logger.info(
                "[Cascading Revoke] Revoked %d professionals for Hospital ID %d",
                revoked,
                hospital_id,
            )

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def _on_role_assigned(self, event: ChainEvent) -> None:
        user = to_address(event.args["user"])
        name = role_name(event.args["role"])
        hospital_id = to_int(event.args["hospitalId"])
        self._logger.info(
            "[Event] RoleAssigned: %s to %s for Hospital ID %d", name, user, hospital_id
        )

        updated = await self._store.update_user(
            user,
            role=name,
            hospital_id=hospital_id,
            professional_status=ProfessionalStatus.APPROVED,
            is_verified=True,
        )
        if not updated:
            self._warn_unknown_user(event, user)

    async def _on_role_revoked(self, event: ChainEvent) -> None:
        user = to_address(event.args["user"])
        self._logger.info("[Event] RoleRevoked from %s", user)

        updated = await self._store.update_user(
            user,
            role=ROLE_PATIENT,
            professional_status=ProfessionalStatus.REVOKED,
            is_verified=False,
            hospital_id=None,
            requested_hospital_id=None,
        )
        if not updated:
            self._warn_unknown_user(event, user)

    async def _on_public_key_saved(self, event: ChainEvent) -> None:
        user = to_address(event.args["user"])
        self._logger.info("[Event] PublicKeySaved: for user %s", user)

        public_key = await self._reader.get_public_key(user)
        if not public_key:
            self._logger.info("No on-chain public key for %s; nothing to store", user)
            return

        updated = await self._store.update_user(user, public_key=public_key)
        if not updated:
            self._warn_unknown_user(event, user)

    def _warn_unknown_user(self, event: ChainEvent, user: str) -> None:
        self._logger.warning(
            "%s for unknown user %s; no user record updated",
            event.name,
            user,
            extra=_log_context(event),
        )

    # ------------------------------------------------------------------
    # Records and access control
    # ------------------------------------------------------------------

    async def _on_record_added(self, event: ChainEvent) -> None:
        args = event.args
        record_id = to_int(args["recordId"])
        owner = to_address(args["owner"])
        self._logger.info("[Event] RecordAdded: ID %d for owner %s", record_id, owner)

        await self._store.upsert_record(
            record_id,
            owner=owner,
            title=args["title"],
            ipfs_hash=args["ipfsHash"],
            category=args["category"],
            is_verified=bool(args["isVerified"]),
            uploaded_by=to_address(args["verifiedBy"]),
            timestamp=to_datetime(args["timestamp"]),
        )

    async def _on_professional_access_requested(self, event: ChainEvent) -> None:
        args = event.args
        request_id = to_int(args["requestId"])
        professional = to_address(args["professional"])
        patient = to_address(args["patient"])
        self._logger.info(
            "[Event] ProfessionalAccessRequested: ID %d from %s to %s",
            request_id,
            professional,
            patient,
        )

        await self._store.upsert_access_request(
            request_id,
            [to_int(r) for r in args["recordIds"]],
            professional,
            patient,
            ACCESS_REQUEST_PENDING,
        )

    async def _on_access_granted(self, event: ChainEvent) -> None:
        args = event.args
        block_timestamp = await event.get_block_timestamp()
        if block_timestamp is None:
            self._logger.warning(
                "Could not fetch block for AccessGranted; dropping event",
                extra=_log_context(event),
            )
            return

        record_id = to_int(args["recordId"])
        grantee = to_address(args["grantee"])
        self._logger.info(
            "[Event] AccessGranted: Record ID %d to grantee %s", record_id, grantee
        )

        await self._store.upsert_access_grant(
            record_id,
            professional_address=grantee,
            patient_address=to_address(args["owner"]),
            expiration_timestamp=to_datetime(args["expiration"]),
            rewrapped_key=_text(args["encryptedDek"]),
            created_at=to_datetime(block_timestamp),
        )

    async def _on_access_revoked(self, event: ChainEvent) -> None:
        args = event.args
        professional = to_address(args["professional"])
        record_ids = [to_int(r) for r in args["recordIds"]]
        self._logger.info(
            "[Event] AccessRevoked: Professional %s from records %s", professional, record_ids
        )

        deleted = await self._store.delete_access_grants(professional, record_ids)
        self._logger.debug("Deleted %d access grants for %s", deleted, professional)
