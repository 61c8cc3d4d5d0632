"""Database persistence for saved routes."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from ..config import settings
from ..db.supabase import get_supabase_client
from ..errors import InvalidConfiguration
from ..schemas.saved_routes import SavedRouteModel
from .route_store import RoutePlanStore

logger = logging.getLogger(__name__)


def _to_row(record: SavedRouteModel) -> dict[str, Any]:
    payload = record.model_dump(mode="json")
    return {
        "id": payload["id"],
        "route_name": payload["route_name"],
        "saved_at": payload["saved_at"],
        "share_token": payload["share_token"],
        "payload": payload["route"],
    }


def _from_row(row: dict[str, Any]) -> SavedRouteModel:
    return SavedRouteModel.model_validate(
        {
            "id": row["id"],
            "route_name": row["route_name"],
            "saved_at": row["saved_at"],
            "share_token": row.get("share_token"),
            "route": row["payload"],
        }
    )


class SupabaseRoutePlanStore(RoutePlanStore):
    """Saved routes in a Supabase table.

    Expected columns: ``id`` (text, primary key), ``route_name`` (text),
    ``saved_at`` (timestamptz), ``share_token`` (text, unique, nullable) and
    ``payload`` (jsonb).
    """

    def __init__(self, client: Any | None = None, *, table: str | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.client = client if client is not None else get_supabase_client()
        if self.client is None:
            raise InvalidConfiguration(
                "Supabase is not configured; set FIELDROUTE_SUPABASE_URL and FIELDROUTE_SUPABASE_KEY"
            )
        self.table = table or settings.saved_routes_table

    def _write(self, record: SavedRouteModel) -> None:
        self.client.table(self.table).upsert(_to_row(record)).execute()

    def _read(self, route_id: str) -> Optional[SavedRouteModel]:
        response = self.client.table(self.table).select("*").eq("id", route_id).limit(1).execute()
        rows = response.data or []
        return _from_row(rows[0]) if rows else None

    def _read_all(self) -> Iterable[SavedRouteModel]:
        response = self.client.table(self.table).select("*").order("saved_at").execute()
        records = []
        for row in response.data or []:
            try:
                records.append(_from_row(row))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping unreadable saved route row {row.get('id', 'unknown')}: {e}")
        return records

    def _remove(self, route_id: str) -> bool:
        response = self.client.table(self.table).delete().eq("id", route_id).execute()
        return bool(response.data)

    def _find_by_token(self, token: str) -> Optional[SavedRouteModel]:
        response = self.client.table(self.table).select("*").eq("share_token", token).limit(1).execute()
        rows = response.data or []
        return _from_row(rows[0]) if rows else None
