from __future__ import annotations
import argparse

from .config import CONFIG
from .ditto_client import DittoClient
from .filters import derive_view
from .geo import format_distance, nearby
from .memory_store import InMemoryStore
from .models import Category, Coordinates, FilterState, OperatingStatus
from .registry import RegistrySync, SyncState
from .server import create_app


def _print_view(registry: RegistrySync, category: str | None, status: str | None) -> None:
    filters = FilterState(
        category=Category(category) if category else None,
        status=OperatingStatus(status) if status else None,
    )
    view = derive_view(registry.snapshot, filters)
    print(
        f"{len(view.records)} of {view.total} machines "
        f"(operating={view.operating} maintenance={view.maintenance} "
        f"out_of_order={view.out_of_order})"
    )
    for rec in view.records:
        print(f"  {rec.id}  {rec.category.value:<13} {rec.status.value:<12} {rec.description}")


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--memory", action="store_true", help="Use a process-local store instead of Ditto")
    parser.add_argument("--list", action="store_true", help="Print the current registry once")
    parser.add_argument("--category", choices=[c.value for c in Category])
    parser.add_argument("--status", choices=[s.value for s in OperatingStatus])
    parser.add_argument("--nearby", nargs=2, type=float, metavar=("LAT", "LON"),
                        help="Print machines sorted by distance from LAT LON")
    parser.add_argument("--limit", type=int, default=CONFIG["NEARBY_LIMIT"], help="Max rows for --nearby")
    parser.add_argument("--flask", type=int, default=0, help="Run Flask API if 1")
    parser.add_argument("--port", type=int, default=8089, help="Flask port")
    args, _ = parser.parse_known_args()

    store = InMemoryStore() if args.memory else DittoClient()

    if args.list or args.nearby:
        registry = RegistrySync(store)
        try:
            registry.wait_ready(timeout=10)
            if registry.state is not SyncState.LIVE:
                print("Registry unavailable:", registry.error or "timed out")
                return 1
            if args.list:
                _print_view(registry, args.category, args.status)
            if args.nearby:
                origin = Coordinates(*args.nearby)
                for x in nearby(registry.snapshot, origin, limit=args.limit):
                    print(f"{format_distance(x.distance_km):>8}  {x.record.id}  {x.record.description}")
        finally:
            registry.close()

    if args.flask:
        app = create_app(store=store)
        app.run(host="0.0.0.0", port=args.port, debug=False)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
