"""
Shipment Service Data Repository

Data access layer - PostgreSQL (asyncpg, Async)
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import asyncpg

from core.config_manager import ConfigManager
from core.postgres_client import PostgresClientWrapper
from .models import (
    CLOSED_SHIPMENT_STATUSES, Package, PackageStatus, Pallet, Shipment, ShipmentDirection, ShipmentStatus
)
from .protocols import DuplicateShipmentCodeError

logger = logging.getLogger(__name__)


SCHEMA_SQL = '''
CREATE SCHEMA IF NOT EXISTS shipments;

CREATE SEQUENCE IF NOT EXISTS shipments.shipment_number_seq;

CREATE TABLE IF NOT EXISTS shipments.shipments (
    id TEXT PRIMARY KEY,
    shipment_code TEXT NOT NULL UNIQUE,
    shipment_number INTEGER NOT NULL,
    from_organisation_id TEXT NOT NULL,
    to_organisation_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'draft',
    submitted_at TIMESTAMPTZ,
    reviewed_at TIMESTAMPTZ,
    reviewed_by TEXT,
    rejection_reason TEXT,
    completed_at TIMESTAMPTZ,
    transport_cost_eur NUMERIC(12, 2) CHECK (transport_cost_eur >= 0),
    shipment_date DATE,
    notes TEXT,
    package_counter INTEGER NOT NULL DEFAULT 0,
    version INTEGER NOT NULL DEFAULT 1,
    created_by TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CHECK (from_organisation_id <> to_organisation_id)
);

CREATE TABLE IF NOT EXISTS shipments.shipment_pallets (
    id TEXT PRIMARY KEY,
    shipment_id TEXT NOT NULL REFERENCES shipments.shipments(id) ON DELETE CASCADE,
    pallet_number INTEGER NOT NULL,
    notes TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (shipment_id, pallet_number)
);

CREATE TABLE IF NOT EXISTS shipments.inventory_packages (
    id TEXT PRIMARY KEY,
    package_number TEXT,
    package_sequence INTEGER,
    organisation_id TEXT NOT NULL,
    shipment_id TEXT REFERENCES shipments.shipments(id) ON DELETE SET NULL,
    pallet_id TEXT REFERENCES shipments.shipment_pallets(id) ON DELETE SET NULL,
    status TEXT NOT NULL DEFAULT 'available',
    product_name_id TEXT,
    wood_species_id TEXT,
    humidity_id TEXT,
    type_id TEXT,
    processing_id TEXT,
    fsc_id TEXT,
    quality_id TEXT,
    thickness TEXT,
    width TEXT,
    length TEXT,
    pieces TEXT,
    volume_m3 NUMERIC,
    volume_is_calculated BOOLEAN NOT NULL DEFAULT FALSE,
    notes TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

ALTER TABLE shipments.inventory_packages ALTER COLUMN volume_m3 TYPE NUMERIC;

CREATE INDEX IF NOT EXISTS idx_inventory_packages_shipment ON shipments.inventory_packages(shipment_id);
CREATE INDEX IF NOT EXISTS idx_inventory_packages_owner ON shipments.inventory_packages(organisation_id, status);
CREATE INDEX IF NOT EXISTS idx_shipments_pair ON shipments.shipments(from_organisation_id, to_organisation_id);

CREATE TABLE IF NOT EXISTS shipments.production_inputs (
    id TEXT PRIMARY KEY,
    package_id TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
'''

# Columns a status transition may set alongside the status itself
_TRANSITION_COLUMNS = {
    "submitted_at", "reviewed_at", "reviewed_by", "rejection_reason", "completed_at",
}
_DRAFT_COLUMNS = {"transport_cost_eur", "shipment_date", "notes"}
_PACKAGE_COLUMNS = [
    "package_number", "package_sequence", "organisation_id", "shipment_id", "pallet_id", "status",
    "product_name_id", "wood_species_id", "humidity_id", "type_id", "processing_id", "fsc_id",
    "quality_id", "thickness", "width", "length", "pieces", "volume_m3", "volume_is_calculated",
    "notes",
]
_PACKAGE_UPDATABLE = set(_PACKAGE_COLUMNS) - {"organisation_id", "shipment_id", "package_sequence"}


class ShipmentRepository:
    """Shipment service data repository - PostgreSQL (Async)"""

    supports_transactions = True

    def __init__(self, config: Optional[ConfigManager] = None, db: Optional[PostgresClientWrapper] = None):
        if config is None:
            config = ConfigManager("shipment_service")

        self.db = db or PostgresClientWrapper(service_name="shipment_service", config=config)
        self.schema = "shipments"
        self.shipments_table = "shipments"
        self.pallets_table = "shipment_pallets"
        self.packages_table = "inventory_packages"
        self.production_inputs_table = "production_inputs"
        self.number_sequence = "shipment_number_seq"

    async def initialize(self):
        """Connect and make sure the schema exists"""
        await self.db.connect()
        await self.db.execute_script(SCHEMA_SQL)
        logger.info("Shipment repository initialized with PostgreSQL")

    async def close(self):
        """Close database connection"""
        await self.db.close()
        logger.info("Shipment repository database connection closed")

    @property
    def _shipments(self) -> str:
        return f"{self.schema}.{self.shipments_table}"

    @property
    def _pallets(self) -> str:
        return f"{self.schema}.{self.pallets_table}"

    @property
    def _packages(self) -> str:
        return f"{self.schema}.{self.packages_table}"

    # ====================
    # Shipments
    # ====================

    async def last_shipment_sequence(self, from_org_id: str, to_org_id: str) -> int:
        """Highest numeric code suffix used by an ordered organization pair, 0 when none"""
        try:
            query = f'''
                SELECT COALESCE(MAX(substring(shipment_code FROM '-([0-9]+)$')::int), 0) AS last_sequence
                FROM {self._shipments}
                WHERE from_organisation_id = $1 AND to_organisation_id = $2
            '''
            row = await self.db.query_row(query, [from_org_id, to_org_id])
            return int(row["last_sequence"]) if row else 0
        except Exception as e:
            logger.error(f"Error reading last shipment sequence {from_org_id}->{to_org_id}: {e}", exc_info=True)
            raise

    async def next_shipment_number(self) -> int:
        """Draw the next global shipment number"""
        try:
            row = await self.db.query_row(f"SELECT nextval('{self.schema}.{self.number_sequence}') AS value")
            return int(row["value"])
        except Exception as e:
            logger.error(f"Error drawing shipment number: {e}", exc_info=True)
            raise

    async def create_shipment(self, shipment_data: Dict[str, Any]) -> Shipment:
        """Insert a shipment; raises DuplicateShipmentCodeError on code collision"""
        now = datetime.now(timezone.utc)
        query = f'''
            INSERT INTO {self._shipments} (
                id, shipment_code, shipment_number, from_organisation_id, to_organisation_id,
                status, transport_cost_eur, shipment_date, notes, created_by, created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $11)
            RETURNING *
        '''
        params = [
            shipment_data.get("id") or str(uuid.uuid4()),
            shipment_data["shipment_code"],
            shipment_data["shipment_number"],
            shipment_data["from_organisation_id"],
            shipment_data["to_organisation_id"],
            ShipmentStatus.DRAFT.value,
            shipment_data.get("transport_cost_eur"),
            shipment_data.get("shipment_date"),
            shipment_data.get("notes"),
            shipment_data.get("created_by"),
            now,
        ]
        try:
            row = await self.db.query_row(query, params)
        except asyncpg.exceptions.UniqueViolationError as e:
            raise DuplicateShipmentCodeError(
                f"Shipment code already exists: {shipment_data['shipment_code']}",
                shipment_code=shipment_data["shipment_code"],
            ) from e
        except Exception as e:
            logger.error(f"Error creating shipment: {e}", exc_info=True)
            raise

        if not row:
            raise RuntimeError("Failed to create shipment")
        return self._row_to_shipment(row)

    async def get_shipment(self, shipment_id: str) -> Optional[Shipment]:
        """Get shipment by ID"""
        try:
            row = await self.db.query_row(f"SELECT * FROM {self._shipments} WHERE id = $1", [shipment_id])
            return self._row_to_shipment(row) if row else None
        except Exception as e:
            logger.error(f"Error getting shipment {shipment_id}: {e}", exc_info=True)
            raise

    async def list_shipments(
        self,
        organisation_id: str,
        direction: ShipmentDirection = ShipmentDirection.ALL,
        status: Optional[ShipmentStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Shipment]:
        """List shipments where the organization is sender and/or receiver"""
        try:
            if direction == ShipmentDirection.OUTGOING:
                conditions = ["from_organisation_id = $1"]
            elif direction == ShipmentDirection.INCOMING:
                conditions = ["to_organisation_id = $1"]
            else:
                conditions = ["(from_organisation_id = $1 OR to_organisation_id = $1)"]
            params: List[Any] = [organisation_id]

            if status:
                params.append(status.value)
                conditions.append(f"status = ${len(params)}")

            params.extend([limit, offset])
            query = f'''
                SELECT * FROM {self._shipments}
                WHERE {" AND ".join(conditions)}
                ORDER BY created_at DESC
                LIMIT ${len(params) - 1} OFFSET ${len(params)}
            '''
            rows = await self.db.query(query, params)
            return [self._row_to_shipment(r) for r in rows]
        except Exception as e:
            logger.error(f"Error listing shipments for {organisation_id}: {e}", exc_info=True)
            raise

    async def update_shipment_status(
        self,
        shipment_id: str,
        expected_status: ShipmentStatus,
        new_status: ShipmentStatus,
        fields: Optional[Dict[str, Any]] = None,
    ) -> Optional[Shipment]:
        """Compare-and-swap on status; None when the shipment is no longer in expected_status"""
        try:
            return await self._update_status(None, shipment_id, expected_status, new_status, fields or {})
        except Exception as e:
            logger.error(f"Error updating shipment {shipment_id} status: {e}", exc_info=True)
            raise

    async def _update_status(
        self,
        conn: Optional[asyncpg.Connection],
        shipment_id: str,
        expected_status: ShipmentStatus,
        new_status: ShipmentStatus,
        fields: Dict[str, Any],
    ) -> Optional[Shipment]:
        unknown = set(fields) - _TRANSITION_COLUMNS
        if unknown:
            raise ValueError(f"Columns not settable on transition: {sorted(unknown)}")

        now = datetime.now(timezone.utc)
        params: List[Any] = [shipment_id, expected_status.value, new_status.value, now]
        assignments = ["status = $3", "updated_at = $4", "version = version + 1"]
        for column, value in fields.items():
            params.append(value)
            assignments.append(f"{column} = ${len(params)}")

        query = f'''
            UPDATE {self._shipments}
            SET {", ".join(assignments)}
            WHERE id = $1 AND status = $2
            RETURNING *
        '''
        row = await self.db.query_row(query, params, conn=conn)
        return self._row_to_shipment(row) if row else None

    async def update_draft_fields(self, shipment_id: str, fields: Dict[str, Any]) -> Optional[Shipment]:
        """Update editable columns of a shipment that is still a draft"""
        unknown = set(fields) - _DRAFT_COLUMNS
        if unknown:
            raise ValueError(f"Columns not editable on draft: {sorted(unknown)}")
        try:
            params: List[Any] = [shipment_id, ShipmentStatus.DRAFT.value, datetime.now(timezone.utc)]
            assignments = ["updated_at = $3"]
            for column, value in fields.items():
                params.append(value)
                assignments.append(f"{column} = ${len(params)}")
            query = f'''
                UPDATE {self._shipments}
                SET {", ".join(assignments)}
                WHERE id = $1 AND status = $2
                RETURNING *
            '''
            row = await self.db.query_row(query, params)
            return self._row_to_shipment(row) if row else None
        except Exception as e:
            logger.error(f"Error updating draft {shipment_id}: {e}", exc_info=True)
            raise

    async def delete_shipment(self, shipment_id: str, delete_packages: bool) -> bool:
        """Delete a draft shipment, unlinking or deleting its packages, in one transaction"""
        try:
            async with self.db.transaction() as conn:
                if delete_packages:
                    await self.db.execute(f"DELETE FROM {self._packages} WHERE shipment_id = $1", [shipment_id], conn=conn)
                else:
                    await self.db.execute(
                        f'''
                        UPDATE {self._packages}
                        SET shipment_id = NULL, pallet_id = NULL, package_sequence = NULL, updated_at = $2
                        WHERE shipment_id = $1
                        ''',
                        [shipment_id, datetime.now(timezone.utc)],
                        conn=conn,
                    )
                deleted = await self.db.execute(
                    f"DELETE FROM {self._shipments} WHERE id = $1 AND status = $2",
                    [shipment_id, ShipmentStatus.DRAFT.value],
                    conn=conn,
                )
                if deleted == 0:
                    # Status changed underneath us; undo the package changes
                    raise _Rollback()
            return True
        except _Rollback:
            return False
        except Exception as e:
            logger.error(f"Error deleting shipment {shipment_id}: {e}", exc_info=True)
            raise

    # ====================
    # Ownership Transfer
    # ====================

    async def transfer_package_ownership(self, shipment_id: str, to_org_id: str) -> int:
        """Set the owner of every package linked to the shipment in one statement"""
        try:
            return await self.db.execute(
                f"UPDATE {self._packages} SET organisation_id = $2, updated_at = $3 WHERE shipment_id = $1",
                [shipment_id, to_org_id, datetime.now(timezone.utc)],
            )
        except Exception as e:
            logger.error(f"Error transferring packages of {shipment_id} to {to_org_id}: {e}", exc_info=True)
            raise

    async def restore_package_owners(self, owners: Dict[str, str]) -> int:
        """Set each package (id -> owner) back to the given owner in one statement"""
        if not owners:
            return 0
        try:
            package_ids = list(owners.keys())
            return await self.db.execute(
                f'''
                UPDATE {self._packages} AS p
                SET organisation_id = v.owner, updated_at = $3
                FROM unnest($1::text[], $2::text[]) AS v(id, owner)
                WHERE p.id = v.id
                ''',
                [package_ids, [owners[i] for i in package_ids], datetime.now(timezone.utc)],
            )
        except Exception as e:
            logger.error(f"Error restoring package owners: {e}", exc_info=True)
            raise

    async def transfer_and_complete(
        self,
        shipment_id: str,
        to_org_id: str,
        fields: Dict[str, Any],
    ) -> Optional[Shipment]:
        """Transfer packages and complete the shipment atomically; None if it is no longer pending"""
        try:
            async with self.db.transaction() as conn:
                locked = await self.db.query_row(
                    f"SELECT status FROM {self._shipments} WHERE id = $1 FOR UPDATE",
                    [shipment_id],
                    conn=conn,
                )
                if not locked or locked["status"] != ShipmentStatus.PENDING.value:
                    return None

                moved = await self.db.execute(
                    f"UPDATE {self._packages} SET organisation_id = $2, updated_at = $3 WHERE shipment_id = $1",
                    [shipment_id, to_org_id, datetime.now(timezone.utc)],
                    conn=conn,
                )
                shipment = await self._update_status(
                    conn, shipment_id, ShipmentStatus.PENDING, ShipmentStatus.COMPLETED, fields
                )
                logger.debug(f"Transferred {moved} packages for shipment {shipment_id}")
                return shipment
        except Exception as e:
            logger.error(f"Error in transactional accept of {shipment_id}: {e}", exc_info=True)
            raise

    # ====================
    # Packages
    # ====================

    async def get_package(self, package_id: str) -> Optional[Package]:
        """Get package by ID"""
        try:
            row = await self.db.query_row(f"SELECT * FROM {self._packages} WHERE id = $1", [package_id])
            return self._row_to_package(row) if row else None
        except Exception as e:
            logger.error(f"Error getting package {package_id}: {e}", exc_info=True)
            raise

    async def get_packages(self, package_ids: List[str]) -> List[Package]:
        """Get packages by IDs"""
        if not package_ids:
            return []
        try:
            rows = await self.db.query(f"SELECT * FROM {self._packages} WHERE id = ANY($1::text[])", [package_ids])
            return [self._row_to_package(r) for r in rows]
        except Exception as e:
            logger.error(f"Error getting packages: {e}", exc_info=True)
            raise

    async def list_shipment_packages(self, shipment_id: str) -> List[Package]:
        """Packages linked to a shipment, ordered by sequence"""
        try:
            rows = await self.db.query(
                f"SELECT * FROM {self._packages} WHERE shipment_id = $1 ORDER BY package_sequence NULLS LAST, created_at",
                [shipment_id],
            )
            return [self._row_to_package(r) for r in rows]
        except Exception as e:
            logger.error(f"Error listing packages of {shipment_id}: {e}", exc_info=True)
            raise

    async def count_shipment_packages(self, shipment_id: str) -> int:
        try:
            row = await self.db.query_row(
                f"SELECT COUNT(*) AS count FROM {self._packages} WHERE shipment_id = $1", [shipment_id]
            )
            return int(row["count"]) if row else 0
        except Exception as e:
            logger.error(f"Error counting packages of {shipment_id}: {e}", exc_info=True)
            raise

    async def list_available_packages(self, organisation_id: str, exclude_shipment_id: Optional[str] = None) -> List[Package]:
        """Packages owned by the organization in status available or produced that no open shipment holds"""
        try:
            query = f'''
                SELECT p.* FROM {self._packages} p
                LEFT JOIN {self._shipments} s ON s.id = p.shipment_id
                WHERE p.organisation_id = $1
                  AND p.status = ANY($2::text[])
                  AND (p.shipment_id IS NULL OR s.id IS NULL OR s.status = ANY($4::text[]))
                  AND ($3::text IS NULL OR p.shipment_id IS DISTINCT FROM $3)
                ORDER BY p.created_at DESC
            '''
            statuses = [PackageStatus.AVAILABLE.value, PackageStatus.PRODUCED.value]
            closed = [s.value for s in CLOSED_SHIPMENT_STATUSES]
            rows = await self.db.query(query, [organisation_id, statuses, exclude_shipment_id, closed])
            return [self._row_to_package(r) for r in rows]
        except Exception as e:
            logger.error(f"Error listing available packages for {organisation_id}: {e}", exc_info=True)
            raise

    async def allocate_package_sequences(self, shipment_id: str, count: int) -> int:
        """Atomically reserve count sequence numbers; returns the first one"""
        try:
            row = await self.db.query_row(
                f'''
                UPDATE {self._shipments}
                SET package_counter = package_counter + $2
                WHERE id = $1
                RETURNING package_counter
                ''',
                [shipment_id, count],
            )
            if not row:
                raise RuntimeError(f"Shipment not found: {shipment_id}")
            return int(row["package_counter"]) - count + 1
        except Exception as e:
            logger.error(f"Error allocating package sequences for {shipment_id}: {e}", exc_info=True)
            raise

    async def link_packages(self, shipment_id: str, assignments: List[Tuple[str, int, str]]) -> int:
        """Link (package_id, sequence, package_number) triples to a shipment"""
        if not assignments:
            return 0
        try:
            now = datetime.now(timezone.utc)
            async with self.db.transaction() as conn:
                linked = 0
                for package_id, sequence, package_number in assignments:
                    linked += await self.db.execute(
                        f'''
                        UPDATE {self._packages}
                        SET shipment_id = $2, package_sequence = $3, package_number = $4, updated_at = $5
                        WHERE id = $1
                        ''',
                        [package_id, shipment_id, sequence, package_number, now],
                        conn=conn,
                    )
            return linked
        except Exception as e:
            logger.error(f"Error linking packages to {shipment_id}: {e}", exc_info=True)
            raise

    async def create_package(self, package_data: Dict[str, Any]) -> Package:
        """Insert a package"""
        try:
            now = datetime.now(timezone.utc)
            columns = ["id"] + _PACKAGE_COLUMNS + ["created_at", "updated_at"]
            values = [package_data.get("id") or str(uuid.uuid4())]
            for column in _PACKAGE_COLUMNS:
                value = package_data.get(column)
                if column == "status":
                    value = value or PackageStatus.AVAILABLE
                    if isinstance(value, PackageStatus):
                        value = value.value
                if column == "volume_is_calculated":
                    value = bool(value)
                values.append(value)
            values.extend([now, now])
            placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
            query = f'''
                INSERT INTO {self._packages} ({", ".join(columns)})
                VALUES ({placeholders})
                RETURNING *
            '''
            row = await self.db.query_row(query, values)
            if not row:
                raise RuntimeError("Failed to create package")
            return self._row_to_package(row)
        except Exception as e:
            logger.error(f"Error creating package: {e}", exc_info=True)
            raise

    async def update_package(self, package_id: str, fields: Dict[str, Any]) -> Optional[Package]:
        """Update package columns"""
        unknown = set(fields) - _PACKAGE_UPDATABLE
        if unknown:
            raise ValueError(f"Columns not updatable on package: {sorted(unknown)}")
        if not fields:
            return await self.get_package(package_id)
        try:
            params: List[Any] = [package_id, datetime.now(timezone.utc)]
            assignments = ["updated_at = $2"]
            for column, value in fields.items():
                if isinstance(value, PackageStatus):
                    value = value.value
                params.append(value)
                assignments.append(f"{column} = ${len(params)}")
            query = f'''
                UPDATE {self._packages}
                SET {", ".join(assignments)}
                WHERE id = $1
                RETURNING *
            '''
            row = await self.db.query_row(query, params)
            return self._row_to_package(row) if row else None
        except Exception as e:
            logger.error(f"Error updating package {package_id}: {e}", exc_info=True)
            raise

    async def delete_package(self, package_id: str) -> bool:
        """Hard delete a package"""
        try:
            deleted = await self.db.execute(f"DELETE FROM {self._packages} WHERE id = $1", [package_id])
            return deleted > 0
        except Exception as e:
            logger.error(f"Error deleting package {package_id}: {e}", exc_info=True)
            raise

    async def count_production_inputs(self, package_ids: List[str]) -> int:
        """Number of production inputs that reference any of the packages"""
        if not package_ids:
            return 0
        try:
            row = await self.db.query_row(
                f'''
                SELECT COUNT(*) AS count FROM {self.schema}.{self.production_inputs_table}
                WHERE package_id = ANY($1::text[])
                ''',
                [package_ids],
            )
            return int(row["count"]) if row else 0
        except Exception as e:
            logger.error(f"Error counting production inputs: {e}", exc_info=True)
            raise

    # ====================
    # Pallets
    # ====================

    async def create_pallet(self, shipment_id: str, notes: Optional[str] = None) -> Pallet:
        """Create pallet number max+1 under a per-shipment advisory lock"""
        try:
            async with self.db.transaction() as conn:
                await self.db.execute("SELECT pg_advisory_xact_lock(hashtext($1))", [shipment_id], conn=conn)
                row = await self.db.query_row(
                    f'''
                    INSERT INTO {self._pallets} (id, shipment_id, pallet_number, notes, created_at)
                    SELECT $1, $2, COALESCE(MAX(pallet_number), 0) + 1, $3, $4
                    FROM {self._pallets} WHERE shipment_id = $2
                    RETURNING *
                    ''',
                    [str(uuid.uuid4()), shipment_id, notes, datetime.now(timezone.utc)],
                    conn=conn,
                )
            if not row:
                raise RuntimeError("Failed to create pallet")
            return Pallet.model_validate(row)
        except Exception as e:
            logger.error(f"Error creating pallet for {shipment_id}: {e}", exc_info=True)
            raise

    async def get_pallet(self, pallet_id: str) -> Optional[Pallet]:
        try:
            row = await self.db.query_row(f"SELECT * FROM {self._pallets} WHERE id = $1", [pallet_id])
            return Pallet.model_validate(row) if row else None
        except Exception as e:
            logger.error(f"Error getting pallet {pallet_id}: {e}", exc_info=True)
            raise

    async def list_pallets(self, shipment_id: str) -> List[Pallet]:
        try:
            rows = await self.db.query(
                f"SELECT * FROM {self._pallets} WHERE shipment_id = $1 ORDER BY pallet_number", [shipment_id]
            )
            return [Pallet.model_validate(r) for r in rows]
        except Exception as e:
            logger.error(f"Error listing pallets of {shipment_id}: {e}", exc_info=True)
            raise

    async def delete_pallet(self, pallet_id: str) -> bool:
        """Delete a pallet; its packages become loose"""
        try:
            async with self.db.transaction() as conn:
                await self.db.execute(
                    f"UPDATE {self._packages} SET pallet_id = NULL, updated_at = $2 WHERE pallet_id = $1",
                    [pallet_id, datetime.now(timezone.utc)],
                    conn=conn,
                )
                deleted = await self.db.execute(f"DELETE FROM {self._pallets} WHERE id = $1", [pallet_id], conn=conn)
            return deleted > 0
        except Exception as e:
            logger.error(f"Error deleting pallet {pallet_id}: {e}", exc_info=True)
            raise

    async def assign_package_to_pallet(self, package_id: str, pallet_id: Optional[str]) -> bool:
        try:
            updated = await self.db.execute(
                f"UPDATE {self._packages} SET pallet_id = $2, updated_at = $3 WHERE id = $1",
                [package_id, pallet_id, datetime.now(timezone.utc)],
            )
            return updated > 0
        except Exception as e:
            logger.error(f"Error assigning package {package_id} to pallet {pallet_id}: {e}", exc_info=True)
            raise

    # ====================
    # Row Mapping
    # ====================

    def _row_to_shipment(self, row: Dict[str, Any]) -> Shipment:
        return Shipment.model_validate(row)

    def _row_to_package(self, row: Dict[str, Any]) -> Package:
        return Package.model_validate(row)


class _Rollback(Exception):
    """Raised inside a transaction block to roll it back without an error"""
