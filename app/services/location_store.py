from __future__ import annotations

import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Iterator, List, Optional

from loguru import logger
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.core.location_config import UNKNOWN_USER_NAME
from app.models.location_share import LocationShare
from app.models.production import Production, UserProduction
from app.models.profile import Profile
from app.services import grid
from app.services.presence import as_utc


# ------------------------------------------------------------------
# Errors
# ------------------------------------------------------------------

class StoreError(Exception):
    pass


class StoreWriteError(StoreError):
    pass


class StoreReadError(StoreError):
    pass


# ------------------------------------------------------------------
# Records
# ------------------------------------------------------------------

@dataclass
class ShareRecord:
    user_id: str
    production_id: str
    latitude: Optional[float]
    longitude: Optional[float]
    grid_reference: Optional[str]
    is_sharing: bool
    last_updated: datetime
    id: Optional[str] = None

    @property
    def has_position(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["last_updated"] = self.last_updated.isoformat()
        return data


@dataclass
class TeamLocation(ShareRecord):
    # None when the profile row is missing or the join was unavailable
    full_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.full_name or UNKNOWN_USER_NAME


@dataclass
class ProductionMembership:
    production_id: str
    name: str
    status: str
    role: str


def _share_from_row(row: LocationShare) -> ShareRecord:
    return ShareRecord(
        id=row.id,
        user_id=row.user_id,
        production_id=row.production_id,
        latitude=row.latitude,
        longitude=row.longitude,
        grid_reference=row.grid_reference,
        is_sharing=bool(row.is_sharing),
        last_updated=as_utc(row.last_updated),
    )


# ------------------------------------------------------------------
# SQL store
# ------------------------------------------------------------------

class SqlLocationStore:
    """
    location_shares access over SQLAlchemy.

    Upserts are keyed by (user_id, production_id) and only applied when the
    incoming last_updated is not older than the stored one, so racing writes
    resolve to the later-timestamped row whatever order they land in.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        finally:
            db.close()

    @staticmethod
    def _insert_for(db: Session):
        dialect = db.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert
        if dialect == "sqlite":
            return sqlite_insert
        raise StoreWriteError(f"Upsert not supported for dialect: {dialect}")

    def _upsert(self, values: dict, update_columns: List[str]) -> ShareRecord:
        user_id = values["user_id"]
        production_id = values["production_id"]

        with self._session() as db:
            try:
                insert = self._insert_for(db)
                stmt = insert(LocationShare).values(id=str(uuid.uuid4()), **values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["user_id", "production_id"],
                    set_={col: stmt.excluded[col] for col in update_columns},
                    where=LocationShare.last_updated <= stmt.excluded.last_updated,
                )
                db.execute(stmt)
                db.commit()

                row = db.execute(
                    select(LocationShare).where(
                        LocationShare.user_id == user_id,
                        LocationShare.production_id == production_id,
                    )
                ).scalar_one()
                return _share_from_row(row)
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Location upsert failed | user={user_id} production={production_id} | error={e}")
                raise StoreWriteError("Failed to update location sharing") from e

    def upsert_position(
        self,
        user_id: str,
        production_id: str,
        latitude: float,
        longitude: float,
        at: datetime,
    ) -> ShareRecord:
        values = {
            "user_id": user_id,
            "production_id": production_id,
            "latitude": latitude,
            "longitude": longitude,
            "grid_reference": grid.encode(latitude, longitude),
            "is_sharing": True,
            "last_updated": at,
        }
        return self._upsert(
            values,
            ["latitude", "longitude", "grid_reference", "is_sharing", "last_updated"],
        )

    def upsert_sharing_off(self, user_id: str, production_id: str, at: datetime) -> ShareRecord:
        values = {
            "user_id": user_id,
            "production_id": production_id,
            "is_sharing": False,
            "last_updated": at,
        }
        # coordinates and grid reference stay as last written
        return self._upsert(values, ["is_sharing", "last_updated"])

    def get_share(self, user_id: str, production_id: str) -> Optional[ShareRecord]:
        with self._session() as db:
            try:
                row = db.execute(
                    select(LocationShare).where(
                        LocationShare.user_id == user_id,
                        LocationShare.production_id == production_id,
                    )
                ).scalar_one_or_none()
            except SQLAlchemyError as e:
                logger.error(f"Location share read failed | user={user_id} production={production_id} | error={e}")
                raise StoreReadError("Failed to load location share") from e

        return _share_from_row(row) if row else None

    def list_team(self, production_id: str, sharing_only: bool = False) -> List[TeamLocation]:
        stmt = (
            select(LocationShare, Profile.full_name)
            .outerjoin(Profile, Profile.id == LocationShare.user_id)
            .where(LocationShare.production_id == production_id)
            .order_by(LocationShare.last_updated.desc())
        )
        if sharing_only:
            stmt = stmt.where(LocationShare.is_sharing.is_(True))

        with self._session() as db:
            try:
                rows = db.execute(stmt).all()
            except SQLAlchemyError as e:
                logger.error(f"Team locations read failed | production={production_id} | error={e}")
                raise StoreReadError("Failed to load team locations") from e

        team = []
        for share, full_name in rows:
            record = _share_from_row(share)
            team.append(TeamLocation(**record.__dict__, full_name=full_name or None))
        return team

    def is_member(self, user_id: str, production_id: str) -> bool:
        with self._session() as db:
            try:
                row = db.execute(
                    select(UserProduction.id).where(
                        UserProduction.user_id == user_id,
                        UserProduction.production_id == production_id,
                    )
                ).first()
            except SQLAlchemyError as e:
                raise StoreReadError("Failed to check production membership") from e

        return row is not None

    def list_productions(self, user_id: str) -> List[ProductionMembership]:
        stmt = (
            select(Production, UserProduction.role)
            .join(UserProduction, UserProduction.production_id == Production.id)
            .where(UserProduction.user_id == user_id)
            .order_by(Production.name.asc())
        )

        with self._session() as db:
            try:
                rows = db.execute(stmt).all()
            except SQLAlchemyError as e:
                logger.error(f"Production list failed | user={user_id} | error={e}")
                raise StoreReadError("Failed to load productions") from e

        return [
            ProductionMembership(
                production_id=p.id,
                name=p.name,
                status=p.status,
                role=role,
            )
            for p, role in rows
        ]
