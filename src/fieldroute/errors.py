"""Exception types raised by the planning engine."""

from __future__ import annotations


class FieldRouteError(Exception):
    """Base class for planning engine errors."""


class InvalidConfiguration(FieldRouteError, ValueError):
    """A configuration value is out of range. Raised before any computation starts."""


class InvalidInput(FieldRouteError, ValueError):
    """A job or technician record cannot be used by the operation it was passed to."""


class NoAvailableTechnicians(FieldRouteError):
    """Jobs remain but every technician is excluded or the roster is empty."""


class RouteNotFound(FieldRouteError, LookupError):
    def __init__(self, route_id: str) -> None:
        super().__init__(f"Saved route '{route_id}' not found.")
        self.route_id = route_id


class OptimizationCancelled(FieldRouteError):
    """Cancellation was requested before the run started any work."""
