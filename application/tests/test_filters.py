from conftest import FakeStore, make_doc

from vending_registry.filters import FilterController, derive_view
from vending_registry.models import Category, FilterState, OperatingStatus, decode_documents
from vending_registry.registry import RegistrySync


def _snapshot():
    return decode_documents(
        [
            make_doc("a", category="food", status="operating"),
            make_doc("b", category="beverage", status="maintenance"),
            make_doc("c", category="food", status="out_of_order"),
            make_doc("d", category="food", status="operating"),
            make_doc("e", category="ice", status="operating"),
        ]
    )


def test_no_filters_keeps_everything_in_order() -> None:
    snap = _snapshot()
    view = derive_view(snap, FilterState())
    assert [r.id for r in view.records] == ["a", "b", "c", "d", "e"]
    assert (view.total, view.operating, view.maintenance, view.out_of_order) == (5, 3, 1, 1)


def test_counts_ignore_active_filters() -> None:
    snap = _snapshot()
    unfiltered = derive_view(snap, FilterState())
    filtered = derive_view(snap, FilterState(category=Category.FOOD, status=OperatingStatus.OPERATING))
    assert [r.id for r in filtered.records] == ["a", "d"]
    assert (filtered.total, filtered.operating, filtered.maintenance, filtered.out_of_order) == (
        unfiltered.total,
        unfiltered.operating,
        unfiltered.maintenance,
        unfiltered.out_of_order,
    )


def test_filtered_records_satisfy_both_filters() -> None:
    filters = FilterState(category=Category.FOOD, status=OperatingStatus.OUT_OF_ORDER)
    view = derive_view(_snapshot(), filters)
    assert [r.id for r in view.records] == ["c"]
    assert all(r.category is Category.FOOD and r.status is OperatingStatus.OUT_OF_ORDER for r in view.records)


def test_derive_view_is_pure() -> None:
    snap = _snapshot()
    before = tuple(snap)
    first = derive_view(snap, FilterState(status=OperatingStatus.OPERATING))
    second = derive_view(snap, FilterState(status=OperatingStatus.OPERATING))
    assert first == second
    assert tuple(snap) == before


def test_empty_snapshot() -> None:
    view = derive_view((), FilterState(category=Category.TOBACCO))
    assert view.records == ()
    assert view.total == 0


def test_controller_rederives_on_filter_change_and_push() -> None:
    store = FakeStore()
    registry = RegistrySync(store)
    controller = FilterController(registry)
    views = []
    controller.add_listener(views.append)
    assert controller.view.total == 0

    store.subscriptions[0].push([make_doc("a", category="food"), make_doc("b", category="ice")])
    assert [r.id for r in controller.view.records] == ["a", "b"]

    view = controller.set_category(Category.ICE)
    assert [r.id for r in view.records] == ["b"]
    assert view.total == 2

    controller.set_status(OperatingStatus.MAINTENANCE)
    assert controller.filters == FilterState(Category.ICE, OperatingStatus.MAINTENANCE)
    assert controller.view.records == ()

    controller.clear_filters()
    assert controller.filters == FilterState()
    assert len(controller.view.records) == 2
    assert len(views) == 4

    controller.detach()
    store.subscriptions[0].push([make_doc("z")])
    assert len(views) == 4
    registry.close()
