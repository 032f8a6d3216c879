"""Alert payload normalization and the AlertSet of a reload cycle."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from alertsmith.errors import ErrorContext, InvocationError
from alertsmith.rendering import compile_alerts

TITLE_FIELD = "title"
EXTENSION_FIELD = "extension"


def _as_alert(item: Any) -> dict[str, Any] | None:
    if item is None:
        return None
    if isinstance(item, Mapping):
        return dict(item)
    return {TITLE_FIELD: str(item)}


def normalize_alerts(name: str, value: Any) -> list[dict[str, Any]]:
    """Turn an extension's raw result into a list of alert dicts.

    Accepted shapes:
    - None: no alerts
    - a string (or any scalar): one alert with that title
    - a list: one alert per item (mappings kept, scalars become titles)
    - a mapping with ``alerts``: the alerts value, which may itself be a
      mapping keyed by alert id (the id is kept as ``id``)
    - any other mapping: one alert, minus the ``db`` directive

    Every alert is tagged with the extension name.
    """
    if isinstance(value, Mapping):
        if "alerts" in value:
            alerts = value["alerts"]
            if isinstance(alerts, Mapping):
                items = [
                    {"id": key, **item} if isinstance(item, Mapping) else {"id": key, TITLE_FIELD: str(item)}
                    for key, item in alerts.items()
                ]
            else:
                items = alerts
        else:
            rest = {key: item for key, item in value.items() if key != "db"}
            items = [rest] if rest else []
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        items = [value]

    if items is None:
        return []
    if not isinstance(items, (list, tuple)):
        items = [items]

    normalized = []
    for item in items:
        alert = _as_alert(item)
        if alert is not None:
            alert.setdefault(EXTENSION_FIELD, name)
            normalized.append(alert)
    return normalized


def ensure_serializable(name: str, alerts: list[dict[str, Any]]) -> None:
    """Check that alerts survive the wire encoding of the ``update`` event.

    Raises:
        InvocationError: Naming the extension whose alerts cannot be encoded
    """
    try:
        json.dumps(alerts, default=str)
    except (TypeError, ValueError, RecursionError) as e:
        raise InvocationError(
            f"{name}: alerts are not JSON-serializable: {e}",
            context=ErrorContext(extension_name=name),
            cause=e,
        ) from e


@dataclass(frozen=True)
class AlertSet:
    """Rendered alerts of all extensions for one reload cycle.

    Attributes:
        alerts: Alerts in extension order, comments rendered to HTML
        cycle: Reload cycle that produced the set (0 before the first one)
        elapsed_ms: Time the cycle took, None for the startup set
        computed_at: When the set was produced
    """

    alerts: tuple[dict[str, Any], ...] = ()
    cycle: int = 0
    elapsed_ms: float | None = None
    computed_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def empty(cls) -> AlertSet:
        return cls()

    @classmethod
    def from_results(
        cls,
        results: list[tuple[str, Any]],
        cycle: int = 0,
        elapsed_ms: float | None = None,
    ) -> AlertSet:
        """Build a set from ``(extension name, raw value)`` pairs, in order.

        Raises:
            InvocationError: If an extension's alerts cannot be sent to viewers
        """
        alerts: list[dict[str, Any]] = []
        for name, value in results:
            compiled = compile_alerts(normalize_alerts(name, value))
            ensure_serializable(name, compiled)
            alerts.extend(compiled)
        return cls(alerts=tuple(alerts), cycle=cycle, elapsed_ms=elapsed_ms)

    def __len__(self) -> int:
        return len(self.alerts)

    def to_payload(self) -> dict[str, Any]:
        """Payload of the ``update`` event."""
        return {
            "alerts": list(self.alerts),
            "cycle": self.cycle,
            "elapsed_ms": self.elapsed_ms,
        }


class CurrentAlerts:
    """Holder of the one current AlertSet.

    Starts with an empty set; the hot-reload pipeline is the only writer
    and replaces the whole set at once.
    """

    def __init__(self, initial: AlertSet | None = None) -> None:
        self._current = initial or AlertSet.empty()

    def get(self) -> AlertSet:
        return self._current

    def replace(self, alert_set: AlertSet) -> None:
        self._current = alert_set
