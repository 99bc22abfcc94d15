from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from loguru import logger
from postgrest.exceptions import APIError
from supabase import Client

from app.services import grid
from app.services.location_store import (
    ProductionMembership,
    ShareRecord,
    StoreReadError,
    StoreWriteError,
    TeamLocation,
)
from app.services.presence import as_utc

TABLE = "location_shares"

_REQUEST_ERRORS = (APIError, httpx.HTTPError)


def _parse_ts(value: Any) -> datetime:
    if isinstance(value, datetime):
        return as_utc(value)
    return as_utc(datetime.fromisoformat(str(value)))


def _share_from_dict(row: Dict[str, Any]) -> ShareRecord:
    return ShareRecord(
        id=row.get("id"),
        user_id=str(row["user_id"]),
        production_id=str(row["production_id"]),
        latitude=float(row["latitude"]) if row.get("latitude") is not None else None,
        longitude=float(row["longitude"]) if row.get("longitude") is not None else None,
        grid_reference=row.get("grid_reference"),
        is_sharing=bool(row.get("is_sharing")),
        last_updated=_parse_ts(row["last_updated"]),
    )


class SupabaseLocationStore:
    """
    location_shares access through the Supabase REST API.

    PostgREST upserts cannot carry a conditional update, so racing writes
    resolve in arrival order here; the change feed re-fetch treats whatever
    is stored as the current snapshot.
    """

    def __init__(self, client: Client):
        self._client = client

    def _upsert(self, row: Dict[str, Any]) -> ShareRecord:
        try:
            res = (
                self._client.table(TABLE)
                .upsert(row, on_conflict="user_id,production_id")
                .execute()
            )
        except _REQUEST_ERRORS as e:
            logger.error(f"Supabase upsert failed | user={row['user_id']} production={row['production_id']} | error={e}")
            raise StoreWriteError("Failed to update location sharing") from e

        if not res.data:
            raise StoreWriteError("Failed to update location sharing")
        return _share_from_dict(res.data[0])

    def upsert_position(
        self,
        user_id: str,
        production_id: str,
        latitude: float,
        longitude: float,
        at: datetime,
    ) -> ShareRecord:
        return self._upsert({
            "user_id": user_id,
            "production_id": production_id,
            "latitude": latitude,
            "longitude": longitude,
            "grid_reference": grid.encode(latitude, longitude),
            "is_sharing": True,
            "last_updated": at.isoformat(),
        })

    def upsert_sharing_off(self, user_id: str, production_id: str, at: datetime) -> ShareRecord:
        # omitted columns are left untouched on conflict
        return self._upsert({
            "user_id": user_id,
            "production_id": production_id,
            "is_sharing": False,
            "last_updated": at.isoformat(),
        })

    def get_share(self, user_id: str, production_id: str) -> Optional[ShareRecord]:
        try:
            res = (
                self._client.table(TABLE)
                .select("*")
                .eq("user_id", user_id)
                .eq("production_id", production_id)
                .limit(1)
                .execute()
            )
        except _REQUEST_ERRORS as e:
            raise StoreReadError("Failed to load location share") from e

        return _share_from_dict(res.data[0]) if res.data else None

    def _profile_names(self, user_ids: List[str]) -> Dict[str, str]:
        if not user_ids:
            return {}
        try:
            res = (
                self._client.table("profiles")
                .select("id, full_name")
                .in_("id", user_ids)
                .execute()
            )
        except _REQUEST_ERRORS as e:
            # names are optional; the team list still renders without them
            logger.warning(f"Profile lookup failed, names unavailable | error={e}")
            return {}

        return {str(p["id"]): p.get("full_name") for p in (res.data or [])}

    def list_team(self, production_id: str, sharing_only: bool = False) -> List[TeamLocation]:
        query = (
            self._client.table(TABLE)
            .select("*")
            .eq("production_id", production_id)
        )
        if sharing_only:
            query = query.eq("is_sharing", True)

        try:
            res = query.order("last_updated", desc=True).execute()
        except _REQUEST_ERRORS as e:
            logger.error(f"Supabase team read failed | production={production_id} | error={e}")
            raise StoreReadError("Failed to load team locations") from e

        shares = [_share_from_dict(r) for r in (res.data or [])]
        names = self._profile_names(sorted({s.user_id for s in shares}))

        return [
            TeamLocation(**s.__dict__, full_name=names.get(s.user_id) or None)
            for s in shares
        ]

    def is_member(self, user_id: str, production_id: str) -> bool:
        try:
            res = (
                self._client.table("user_productions")
                .select("id")
                .eq("user_id", user_id)
                .eq("production_id", production_id)
                .limit(1)
                .execute()
            )
        except _REQUEST_ERRORS as e:
            raise StoreReadError("Failed to check production membership") from e

        return bool(res.data)

    def list_productions(self, user_id: str) -> List[ProductionMembership]:
        try:
            res = (
                self._client.table("user_productions")
                .select("role, productions(id, name, status)")
                .eq("user_id", user_id)
                .execute()
            )
        except _REQUEST_ERRORS as e:
            raise StoreReadError("Failed to load productions") from e

        out = []
        for row in res.data or []:
            production = row.get("productions")
            if not production:
                continue
            out.append(
                ProductionMembership(
                    production_id=str(production["id"]),
                    name=production["name"],
                    status=production.get("status") or "active",
                    role=row.get("role") or "member",
                )
            )
        return sorted(out, key=lambda m: m.name)
