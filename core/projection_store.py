"""
Off-chain projection store for the medical records chain indexer.

SQLite-backed, one table per projected entity, every row keyed by its
natural business key. All writes are single statements (upsert / targeted
update / delete) so each mutation is atomic with respect to other in-flight
handlers; no application-level locking is used.

The store is a derived cache of on-chain state. Successful mutations are
announced to registered listeners (the live-update relay) as StoreMutation
values.

Usage:
    from core.projection_store import ProjectionStore

    store = ProjectionStore("data/projection.db")
    await store.upsert_registration_request(7, "Acme Clinic", "0xaaa...", RegistrationStatus.PENDING_HOSPITAL)
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from indexer_logging.logger_manager import setup_module_logger
from shared.constants import (
    COLLECTION_ACCESS_GRANTS,
    COLLECTION_ACCESS_REQUESTS,
    COLLECTION_HOSPITALS,
    COLLECTION_RECORDS,
    COLLECTION_REGISTRATION_REQUESTS,
    COLLECTION_USERS,
)
from shared.types import (
    AccessGrant,
    AccessRequest,
    Hospital,
    HospitalStatus,
    ProfessionalStatus,
    Record,
    RegistrationRequest,
    RegistrationStatus,
    StoreMutation,
    User,
)

MutationListener = Callable[[StoreMutation], None]

# Column names accepted by update_user(); maps to the User dataclass fields.
_USER_COLUMNS = (
    "name",
    "role",
    "hospital_id",
    "requested_hospital_id",
    "professional_status",
    "is_verified",
    "public_key",
)


class ProjectionStoreError(Exception):
    """Raised when a store write fails."""


class ProjectionStore:
    """
    SQLite-backed projection of MedicalRecords contract state.

    Collections: registration_requests, hospitals, users, records,
    access_requests, access_grants.
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._db_path = db_path
        self._db = sqlite3.connect(db_path)
        self._db.row_factory = sqlite3.Row
        self._create_tables()

        self._listeners: list[MutationListener] = []
        self._logger = setup_module_logger(
            "projection_store", "projection_store.log", module_folder="Store_Logs"
        )

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _create_tables(self) -> None:
        """Create SQLite tables if they don't exist."""
        self._db.executescript("""
            CREATE TABLE IF NOT EXISTS registration_requests (
                request_id INTEGER PRIMARY KEY,
                hospital_name TEXT NOT NULL,
                requester_address TEXT NOT NULL,
                status TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS hospitals (
                hospital_id INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                admin_address TEXT NOT NULL,
                is_verified BOOLEAN NOT NULL,
                status TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS users (
                address TEXT PRIMARY KEY,
                name TEXT,
                role TEXT NOT NULL,
                hospital_id INTEGER,
                requested_hospital_id INTEGER,
                professional_status TEXT,
                is_verified BOOLEAN NOT NULL DEFAULT 0,
                public_key TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_users_hospital ON users(hospital_id);

            CREATE TABLE IF NOT EXISTS records (
                record_id INTEGER PRIMARY KEY,
                owner TEXT NOT NULL,
                title TEXT NOT NULL,
                ipfs_hash TEXT NOT NULL,
                category TEXT NOT NULL,
                is_verified BOOLEAN NOT NULL,
                uploaded_by TEXT NOT NULL,
                timestamp TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS access_requests (
                request_id INTEGER PRIMARY KEY,
                record_ids TEXT NOT NULL,
                professional_address TEXT NOT NULL,
                patient_address TEXT NOT NULL,
                status TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS access_grants (
                record_id INTEGER NOT NULL,
                professional_address TEXT NOT NULL,
                patient_address TEXT NOT NULL,
                expiration_timestamp TEXT NOT NULL,
                rewrapped_key TEXT NOT NULL,
                created_at TEXT NOT NULL,
                PRIMARY KEY (record_id, professional_address)
            );
        """)
        self._db.commit()

    def close(self) -> None:
        self._db.close()

    # ------------------------------------------------------------------
    # Mutation listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: MutationListener) -> None:
        """Register a callback invoked after every successful mutation."""
        self._listeners.append(listener)

    def _notify(self, mutation: StoreMutation) -> None:
        for listener in self._listeners:
            try:
                listener(mutation)
            except Exception as e:
                self._logger.error(
                    "Mutation listener failed for %s %s: %s",
                    mutation.collection,
                    mutation.key,
                    e,
                    extra={"collection": mutation.collection, "error": str(e)},
                )

    def _write(self, sql: str, params: tuple) -> int:
        """Execute one write statement and commit. Returns affected row count."""
        try:
            cursor = self._db.execute(sql, params)
            self._db.commit()
        except (sqlite3.Error, OverflowError) as e:
            self._db.rollback()
            raise ProjectionStoreError(f"store write failed: {e}") from e
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Registration requests
    # ------------------------------------------------------------------

    async def upsert_registration_request(
        self,
        request_id: int,
        hospital_name: str,
        requester_address: str,
        status: RegistrationStatus,
    ) -> None:
        self._write(
            """INSERT INTO registration_requests
               (request_id, hospital_name, requester_address, status)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(request_id) DO UPDATE SET
                   hospital_name = excluded.hospital_name,
                   requester_address = excluded.requester_address,
                   status = excluded.status""",
            (request_id, hospital_name, requester_address.lower(), status.value),
        )
        self._notify(StoreMutation(COLLECTION_REGISTRATION_REQUESTS, (request_id,), "upsert"))

    async def set_registration_status(
        self,
        request_id: int,
        status: RegistrationStatus,
        expected: RegistrationStatus | None = None,
    ) -> RegistrationRequest | None:
        """
        Move a request to ``status``, optionally only from ``expected``.

        Returns the updated request, or None when no request matched.
        """
        if expected is None:
            count = self._write(
                "UPDATE registration_requests SET status = ? WHERE request_id = ?",
                (status.value, request_id),
            )
        else:
            count = self._write(
                "UPDATE registration_requests SET status = ? WHERE request_id = ? AND status = ?",
                (status.value, request_id, expected.value),
            )
        if count == 0:
            return None
        self._notify(StoreMutation(COLLECTION_REGISTRATION_REQUESTS, (request_id,), "update"))
        return await self.get_registration_request(request_id)

    async def get_registration_request(self, request_id: int) -> RegistrationRequest | None:
        row = self._db.execute(
            "SELECT * FROM registration_requests WHERE request_id = ?", (request_id,)
        ).fetchone()
        if row is None:
            return None
        return RegistrationRequest(
            request_id=row["request_id"],
            hospital_name=row["hospital_name"],
            requester_address=row["requester_address"],
            status=RegistrationStatus(row["status"]),
        )

    # ------------------------------------------------------------------
    # Hospitals
    # ------------------------------------------------------------------

    async def upsert_hospital(
        self,
        hospital_id: int,
        name: str,
        admin_address: str,
        is_verified: bool,
        status: HospitalStatus,
    ) -> None:
        self._write(
            """INSERT INTO hospitals (hospital_id, name, admin_address, is_verified, status)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(hospital_id) DO UPDATE SET
                   name = excluded.name,
                   admin_address = excluded.admin_address,
                   is_verified = excluded.is_verified,
                   status = excluded.status""",
            (hospital_id, name, admin_address.lower(), is_verified, status.value),
        )
        self._notify(StoreMutation(COLLECTION_HOSPITALS, (hospital_id,), "upsert"))

    async def set_hospital_status(
        self,
        hospital_id: int,
        status: HospitalStatus,
        is_verified: bool,
        expected: HospitalStatus | None = None,
    ) -> bool:
        """Update a hospital's status, optionally only from ``expected``. Returns True if matched."""
        if expected is None:
            count = self._write(
                "UPDATE hospitals SET status = ?, is_verified = ? WHERE hospital_id = ?",
                (status.value, is_verified, hospital_id),
            )
        else:
            count = self._write(
                """UPDATE hospitals SET status = ?, is_verified = ?
                   WHERE hospital_id = ? AND status = ?""",
                (status.value, is_verified, hospital_id, expected.value),
            )
        if count:
            self._notify(StoreMutation(COLLECTION_HOSPITALS, (hospital_id,), "update"))
        return count > 0

    async def get_hospital(self, hospital_id: int) -> Hospital | None:
        row = self._db.execute(
            "SELECT * FROM hospitals WHERE hospital_id = ?", (hospital_id,)
        ).fetchone()
        if row is None:
            return None
        return Hospital(
            hospital_id=row["hospital_id"],
            name=row["name"],
            admin_address=row["admin_address"],
            is_verified=bool(row["is_verified"]),
            status=HospitalStatus(row["status"]),
        )

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def upsert_user(self, address: str, **fields: Any) -> None:
        """
        Insert or update a user by lower-cased address, setting only ``fields``.

        Columns not named in ``fields`` keep their stored value on conflict.
        """
        columns = _user_columns(fields)
        if "role" not in columns:
            raise ValueError("upsert_user requires a role")
        names = ["address", *columns]
        values = [address.lower(), *(columns[c] for c in columns)]
        updates = ", ".join(f"{c} = excluded.{c}" for c in columns)
        self._write(
            f"""INSERT INTO users ({", ".join(names)})
                VALUES ({", ".join("?" for _ in names)})
                ON CONFLICT(address) DO UPDATE SET {updates}""",
            tuple(values),
        )
        self._notify(StoreMutation(COLLECTION_USERS, (address.lower(),), "upsert"))

    async def update_user(self, address: str, **fields: Any) -> bool:
        """
        Targeted update of an existing user; never inserts.

        A field passed as None is cleared. Returns True if the user exists.
        """
        columns = _user_columns(fields)
        if not columns:
            return False
        assignments = ", ".join(f"{c} = ?" for c in columns)
        count = self._write(
            f"UPDATE users SET {assignments} WHERE address = ?",
            (*columns.values(), address.lower()),
        )
        if count:
            self._notify(StoreMutation(COLLECTION_USERS, (address.lower(),), "update"))
        return count > 0

    async def revoke_hospital_staff(self, hospital_id: int) -> int:
        """Set every user of a hospital to revoked/unverified. Returns the number of users matched."""
        count = self._write(
            "UPDATE users SET professional_status = ?, is_verified = 0 WHERE hospital_id = ?",
            (ProfessionalStatus.REVOKED.value, hospital_id),
        )
        if count:
            self._notify(
                StoreMutation(COLLECTION_USERS, ("hospital_id", hospital_id), "update", count=count)
            )
        return count

    async def get_user(self, address: str) -> User | None:
        row = self._db.execute(
            "SELECT * FROM users WHERE address = ?", (address.lower(),)
        ).fetchone()
        return _row_to_user(row) if row is not None else None

    async def list_users_by_hospital(self, hospital_id: int) -> list[User]:
        rows = self._db.execute(
            "SELECT * FROM users WHERE hospital_id = ? ORDER BY address", (hospital_id,)
        ).fetchall()
        return [_row_to_user(r) for r in rows]

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def upsert_record(
        self,
        record_id: int,
        owner: str,
        title: str,
        ipfs_hash: str,
        category: str,
        is_verified: bool,
        uploaded_by: str,
        timestamp: datetime,
    ) -> None:
        self._write(
            """INSERT INTO records
               (record_id, owner, title, ipfs_hash, category, is_verified, uploaded_by, timestamp)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(record_id) DO UPDATE SET
                   owner = excluded.owner,
                   title = excluded.title,
                   ipfs_hash = excluded.ipfs_hash,
                   category = excluded.category,
                   is_verified = excluded.is_verified,
                   uploaded_by = excluded.uploaded_by,
                   timestamp = excluded.timestamp""",
            (
                record_id,
                owner.lower(),
                title,
                ipfs_hash,
                category,
                is_verified,
                uploaded_by.lower(),
                timestamp.isoformat(),
            ),
        )
        self._notify(StoreMutation(COLLECTION_RECORDS, (record_id,), "upsert"))

    async def get_record(self, record_id: int) -> Record | None:
        row = self._db.execute(
            "SELECT * FROM records WHERE record_id = ?", (record_id,)
        ).fetchone()
        if row is None:
            return None
        return Record(
            record_id=row["record_id"],
            owner=row["owner"],
            title=row["title"],
            ipfs_hash=row["ipfs_hash"],
            category=row["category"],
            is_verified=bool(row["is_verified"]),
            uploaded_by=row["uploaded_by"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
        )

    # ------------------------------------------------------------------
    # Access requests
    # ------------------------------------------------------------------

    async def upsert_access_request(
        self,
        request_id: int,
        record_ids: list[int],
        professional_address: str,
        patient_address: str,
        status: str,
    ) -> None:
        self._write(
            """INSERT INTO access_requests
               (request_id, record_ids, professional_address, patient_address, status)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(request_id) DO UPDATE SET
                   record_ids = excluded.record_ids,
                   professional_address = excluded.professional_address,
                   patient_address = excluded.patient_address,
                   status = excluded.status""",
            (
                request_id,
                json.dumps(record_ids),
                professional_address.lower(),
                patient_address.lower(),
                status,
            ),
        )
        self._notify(StoreMutation(COLLECTION_ACCESS_REQUESTS, (request_id,), "upsert"))

    async def get_access_request(self, request_id: int) -> AccessRequest | None:
        row = self._db.execute(
            "SELECT * FROM access_requests WHERE request_id = ?", (request_id,)
        ).fetchone()
        if row is None:
            return None
        return AccessRequest(
            request_id=row["request_id"],
            record_ids=json.loads(row["record_ids"]),
            professional_address=row["professional_address"],
            patient_address=row["patient_address"],
            status=row["status"],
        )

    # ------------------------------------------------------------------
    # Access grants
    # ------------------------------------------------------------------

    async def upsert_access_grant(
        self,
        record_id: int,
        professional_address: str,
        patient_address: str,
        expiration_timestamp: datetime,
        rewrapped_key: str,
        created_at: datetime,
    ) -> None:
        """At most one grant per (record_id, professional_address); a new grant overwrites."""
        professional = professional_address.lower()
        self._write(
            """INSERT INTO access_grants
               (record_id, professional_address, patient_address,
                expiration_timestamp, rewrapped_key, created_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(record_id, professional_address) DO UPDATE SET
                   patient_address = excluded.patient_address,
                   expiration_timestamp = excluded.expiration_timestamp,
                   rewrapped_key = excluded.rewrapped_key,
                   created_at = excluded.created_at""",
            (
                record_id,
                professional,
                patient_address.lower(),
                expiration_timestamp.isoformat(),
                rewrapped_key,
                created_at.isoformat(),
            ),
        )
        self._notify(StoreMutation(COLLECTION_ACCESS_GRANTS, (record_id, professional), "upsert"))

    async def delete_access_grants(self, professional_address: str, record_ids: list[int]) -> int:
        """Delete the professional's grants on the given records. Returns rows deleted."""
        if not record_ids:
            return 0
        professional = professional_address.lower()
        placeholders = ", ".join("?" for _ in record_ids)
        count = self._write(
            f"""DELETE FROM access_grants
                WHERE professional_address = ? AND record_id IN ({placeholders})""",
            (professional, *record_ids),
        )
        if count:
            self._notify(
                StoreMutation(
                    COLLECTION_ACCESS_GRANTS,
                    ("professional_address", professional),
                    "delete",
                    count=count,
                )
            )
        return count

    async def get_access_grant(
        self, record_id: int, professional_address: str
    ) -> AccessGrant | None:
        row = self._db.execute(
            "SELECT * FROM access_grants WHERE record_id = ? AND professional_address = ?",
            (record_id, professional_address.lower()),
        ).fetchone()
        return _row_to_grant(row) if row is not None else None

    async def list_access_grants(self, professional_address: str | None = None) -> list[AccessGrant]:
        if professional_address is None:
            rows = self._db.execute(
                "SELECT * FROM access_grants ORDER BY record_id, professional_address"
            ).fetchall()
        else:
            rows = self._db.execute(
                "SELECT * FROM access_grants WHERE professional_address = ? ORDER BY record_id",
                (professional_address.lower(),),
            ).fetchall()
        return [_row_to_grant(r) for r in rows]


# ---------------------------------------------------------------------------
# Row helpers
# ---------------------------------------------------------------------------


def _user_columns(fields: dict[str, Any]) -> dict[str, Any]:
    unknown = set(fields) - set(_USER_COLUMNS)
    if unknown:
        raise ValueError(f"Unknown user fields: {sorted(unknown)}")
    columns = {}
    for name in _USER_COLUMNS:
        if name not in fields:
            continue
        value = fields[name]
        if isinstance(value, ProfessionalStatus):
            value = value.value
        columns[name] = value
    return columns


def _row_to_user(row: sqlite3.Row) -> User:
    status = row["professional_status"]
    return User(
        address=row["address"],
        name=row["name"],
        role=row["role"],
        hospital_id=row["hospital_id"],
        professional_status=ProfessionalStatus(status) if status else None,
        is_verified=bool(row["is_verified"]),
        public_key=row["public_key"],
        requested_hospital_id=row["requested_hospital_id"],
    )


def _row_to_grant(row: sqlite3.Row) -> AccessGrant:
    return AccessGrant(
        record_id=row["record_id"],
        professional_address=row["professional_address"],
        patient_address=row["patient_address"],
        expiration_timestamp=datetime.fromisoformat(row["expiration_timestamp"]),
        rewrapped_key=row["rewrapped_key"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )
