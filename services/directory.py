"""Read-mostly tenant, location, and occasion calendar records."""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path

from models import LocationProfile, TenantRecord


class DirectoryError(RuntimeError):
    """Raised when reference data cannot be read or written."""


class SqliteDirectory:
    """Tenants, their locations, and the local occasion calendar."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path

    def initialize(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS tenants (
                    tenant_id TEXT PRIMARY KEY,
                    plan TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS locations (
                    location_id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    business_name TEXT NOT NULL,
                    city TEXT,
                    state TEXT,
                    categories_json TEXT NOT NULL DEFAULT '[]',
                    is_active INTEGER NOT NULL DEFAULT 1,
                    FOREIGN KEY(tenant_id) REFERENCES tenants(tenant_id)
                )
                """
            )
            # annual_date is MM-DD; NULL marks an evergreen occasion.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS local_occasions (
                    occasion_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    annual_date TEXT
                )
                """
            )

    def upsert_tenant(self, tenant_id: str, plan: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO tenants(tenant_id, plan) VALUES (?, ?)
                ON CONFLICT(tenant_id) DO UPDATE SET plan = excluded.plan
                """,
                (tenant_id, plan.strip().lower()),
            )

    def upsert_location(
        self,
        *,
        tenant_id: str,
        location_id: str,
        business_name: str,
        city: str | None = None,
        state: str | None = None,
        categories: Iterable[str] = (),
        is_active: bool = True,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO locations(
                    location_id, tenant_id, business_name, city, state, categories_json, is_active
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(location_id) DO UPDATE SET
                    tenant_id = excluded.tenant_id,
                    business_name = excluded.business_name,
                    city = excluded.city,
                    state = excluded.state,
                    categories_json = excluded.categories_json,
                    is_active = excluded.is_active
                """,
                (
                    location_id,
                    tenant_id,
                    business_name,
                    city,
                    state,
                    json.dumps(list(categories)),
                    1 if is_active else 0,
                ),
            )

    def upsert_occasion(self, occasion_id: str, name: str, annual_date: str | None) -> None:
        if annual_date is not None:
            _validate_annual_date(annual_date)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO local_occasions(occasion_id, name, annual_date) VALUES (?, ?, ?)
                ON CONFLICT(occasion_id) DO UPDATE SET
                    name = excluded.name,
                    annual_date = excluded.annual_date
                """,
                (occasion_id, name, annual_date),
            )

    def list_tenants(self) -> list[TenantRecord]:
        """Return every tenant with its active location ids."""
        with self._connect() as conn:
            tenant_rows = conn.execute(
                "SELECT tenant_id, plan FROM tenants ORDER BY tenant_id ASC"
            ).fetchall()
            location_rows = conn.execute(
                """
                SELECT tenant_id, location_id FROM locations
                WHERE is_active = 1
                ORDER BY location_id ASC
                """
            ).fetchall()

        by_tenant: dict[str, list[str]] = {}
        for row in location_rows:
            by_tenant.setdefault(row["tenant_id"], []).append(row["location_id"])

        return [
            TenantRecord(
                tenant_id=row["tenant_id"],
                plan=row["plan"],
                location_ids=tuple(by_tenant.get(row["tenant_id"], [])),
            )
            for row in tenant_rows
        ]

    def get_location_profile(self, location_id: str) -> LocationProfile | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT location_id, business_name, city, state, categories_json
                FROM locations WHERE location_id = ?
                """,
                (location_id,),
            ).fetchone()
        if row is None:
            return None
        return LocationProfile(
            location_id=row["location_id"],
            business_name=row["business_name"],
            city=row["city"],
            state=row["state"],
            categories=tuple(json.loads(row["categories_json"] or "[]")),
        )

    def get_occasion_peak_dates(self, occasion_ids: Iterable[str]) -> dict[str, str | None]:
        """Map known occasion ids to their MM-DD date (None when evergreen)."""
        ids = sorted(set(occasion_ids))
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT occasion_id, annual_date FROM local_occasions
                WHERE occasion_id IN ({placeholders})
                """,
                ids,
            ).fetchall()
        return {row["occasion_id"]: row["annual_date"] for row in rows}

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, timeout=5.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()


def _validate_annual_date(value: str) -> None:
    parts = value.split("-")
    if len(parts) != 2 or not all(part.isdigit() for part in parts):
        raise DirectoryError(f"Occasion date must be MM-DD, got {value!r}")
    month, day = int(parts[0]), int(parts[1])
    if not 1 <= month <= 12 or not 1 <= day <= 31:
        raise DirectoryError(f"Occasion date out of range: {value!r}")
