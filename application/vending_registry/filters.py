from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional, Sequence

from .models import Category, DerivedView, FilterState, OperatingStatus, Record
from .registry import RegistrySync

log = logging.getLogger("vending-registry")

ViewListener = Callable[[DerivedView], None]


def matches(record: Record, filters: FilterState) -> bool:
    if filters.category is not None and record.category is not filters.category:
        return False
    if filters.status is not None and record.status is not filters.status:
        return False
    return True


def derive_view(snapshot: Sequence[Record], filters: FilterState) -> DerivedView:
    """Filtered records in snapshot order plus counts over the whole snapshot."""
    operating = maintenance = out_of_order = 0
    for rec in snapshot:
        if rec.status is OperatingStatus.OPERATING:
            operating += 1
        elif rec.status is OperatingStatus.MAINTENANCE:
            maintenance += 1
        elif rec.status is OperatingStatus.OUT_OF_ORDER:
            out_of_order += 1
    return DerivedView(
        records=tuple(r for r in snapshot if matches(r, filters)),
        total=len(snapshot),
        operating=operating,
        maintenance=maintenance,
        out_of_order=out_of_order,
    )


class FilterController:
    """Holds the active filters and re-derives the view on every change.

    Listens to a ``RegistrySync`` for snapshots; the view is rebuilt from
    scratch each time and published whole.
    """

    def __init__(self, registry: RegistrySync, filters: FilterState | None = None):
        self.registry = registry
        self._filters = filters or FilterState()
        self._lock = threading.Lock()
        self._listeners: List[ViewListener] = []
        self._view = derive_view(registry.snapshot, self._filters)
        self._detach = registry.add_observer(self._on_snapshot)

    @property
    def filters(self) -> FilterState:
        return self._filters

    @property
    def view(self) -> DerivedView:
        return self._view

    def add_listener(self, listener: ViewListener) -> None:
        self._listeners.append(listener)

    def set_category(self, category: Optional[Category]) -> DerivedView:
        return self.set_filters(FilterState(category=category, status=self._filters.status))

    def set_status(self, status: Optional[OperatingStatus]) -> DerivedView:
        return self.set_filters(FilterState(category=self._filters.category, status=status))

    def clear_filters(self) -> DerivedView:
        return self.set_filters(FilterState())

    def set_filters(self, filters: FilterState) -> DerivedView:
        with self._lock:
            self._filters = filters
            self._view = derive_view(self.registry.snapshot, filters)
            view = self._view
        self._publish(view)
        return view

    def detach(self) -> None:
        self._detach()

    def _on_snapshot(self, snapshot) -> None:
        with self._lock:
            self._view = derive_view(snapshot, self._filters)
            view = self._view
        self._publish(view)

    def _publish(self, view: DerivedView) -> None:
        for listener in list(self._listeners):
            listener(view)
