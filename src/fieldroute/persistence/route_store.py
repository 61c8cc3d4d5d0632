"""Saved route plan stores.

A saved route is a snapshot: the optimized route is serialised on save, so
later edits to the source jobs never show up in it. Each saved route can be
shared through an opaque token that lives in its own namespace; a route id is
never accepted where a token is expected.
"""

from __future__ import annotations

import logging
import secrets
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Optional

from ..errors import RouteNotFound
from ..schemas.saved_routes import SavedRouteModel
from ..services.outputs.routing_formatter import route_to_model, saved_route_from_model
from ..services.routing.models import OptimizedRoute, SavedRoute
from .filesystem import FileStorage

logger = logging.getLogger(__name__)

SHARE_TOKEN_BYTES = 24


def new_route_id() -> str:
    return f"route_{uuid.uuid4().hex}"


def default_route_name(saved_at: datetime) -> str:
    return f"Route {saved_at.date().isoformat()}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RoutePlanStore(ABC):
    """Contract for saved route persistence.

    Subclasses implement the raw record operations; this base class owns id and
    token generation, snapshotting and write serialisation.
    """

    def __init__(self, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._lock = threading.Lock()
        self._clock = clock

    @abstractmethod
    def _write(self, record: SavedRouteModel) -> None:
        raise NotImplementedError

    @abstractmethod
    def _read(self, route_id: str) -> Optional[SavedRouteModel]:
        raise NotImplementedError

    @abstractmethod
    def _read_all(self) -> Iterable[SavedRouteModel]:
        raise NotImplementedError

    @abstractmethod
    def _remove(self, route_id: str) -> bool:
        raise NotImplementedError

    def _find_by_token(self, token: str) -> Optional[SavedRouteModel]:
        for record in self._read_all():
            if record.share_token and secrets.compare_digest(record.share_token, token):
                return record
        return None

    def save(self, route: OptimizedRoute, name: str | None = None) -> SavedRoute:
        saved_at = self._clock()
        record = SavedRouteModel(
            id=new_route_id(),
            route_name=(name or "").strip() or default_route_name(saved_at),
            saved_at=saved_at,
            route=route_to_model(route),
        )
        with self._lock:
            self._write(record)
        logger.info(f"Saved route '{record.route_name}' as {record.id} ({len(route.route)} stops)")
        return saved_route_from_model(record)

    def load(self, route_id: str) -> SavedRoute | None:
        record = self._read(route_id)
        return saved_route_from_model(record) if record else None

    def list(self) -> list[SavedRoute]:
        records = sorted(self._read_all(), key=lambda record: (record.saved_at, record.id))
        return [saved_route_from_model(record) for record in records]

    def delete(self, route_id: str) -> bool:
        with self._lock:
            removed = self._remove(route_id)
        if removed:
            logger.info(f"Deleted saved route {route_id}")
        return removed

    def share(self, route_id: str) -> str:
        """Return the share token for a saved route, creating it on first use."""
        with self._lock:
            record = self._read(route_id)
            if record is None:
                raise RouteNotFound(route_id)
            if record.share_token:
                return record.share_token
            token = secrets.token_urlsafe(SHARE_TOKEN_BYTES)
            self._write(record.model_copy(update={"share_token": token}))
        logger.info(f"Created share token for saved route {route_id}")
        return token

    def resolve_token(self, token: str) -> SavedRoute | None:
        if not token:
            return None
        record = self._find_by_token(token)
        return saved_route_from_model(record) if record else None


class InMemoryRoutePlanStore(RoutePlanStore):
    """Process-local store; records are kept as serialised snapshots."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._records: dict[str, dict] = {}

    def _write(self, record: SavedRouteModel) -> None:
        self._records[record.id] = record.model_dump(mode="json")

    def _read(self, route_id: str) -> Optional[SavedRouteModel]:
        data = self._records.get(route_id)
        return SavedRouteModel.model_validate(data) if data is not None else None

    def _read_all(self) -> Iterable[SavedRouteModel]:
        return [SavedRouteModel.model_validate(data) for data in list(self._records.values())]

    def _remove(self, route_id: str) -> bool:
        return self._records.pop(route_id, None) is not None


class FileRoutePlanStore(RoutePlanStore):
    """One JSON document per saved route under ``<data_root>/saved_routes``."""

    def __init__(self, storage: FileStorage | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.storage = storage or FileStorage()

    def _path(self, route_id: str) -> Path:
        # ids are generated here, but lookups come from callers
        if not route_id or "/" in route_id or "\\" in route_id or route_id.startswith("."):
            raise ValueError(f"Invalid route id '{route_id}'")
        return self.storage.saved_routes_root / f"{route_id}.json"

    def _write(self, record: SavedRouteModel) -> None:
        self.storage.write_json(self._path(record.id), record.model_dump(mode="json"))

    def _read(self, route_id: str) -> Optional[SavedRouteModel]:
        try:
            path = self._path(route_id)
        except ValueError:
            return None
        data = self.storage.read_json(path)
        return SavedRouteModel.model_validate(data) if data is not None else None

    def _read_all(self) -> Iterable[SavedRouteModel]:
        return [SavedRouteModel.model_validate(data) for data in self.storage.iter_json(self.storage.saved_routes_root)]

    def _remove(self, route_id: str) -> bool:
        try:
            path = self._path(route_id)
        except ValueError:
            return False
        return self.storage.delete(path)
