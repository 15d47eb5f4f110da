"""
Diagnostics CLI for the PlantSurveyor session database.

Usage examples:
  plantsurveyor sessions
  plantsurveyor --db ./field.sqlite show PARCEL-12
  plantsurveyor reconstruct PARCEL-12 --point 4 --at 5.0 5.0 0.0
  plantsurveyor purge --yes

Exit status is non-zero when the command fails or a chain check finds issues.
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import List, Optional

from .config import get_config
from .errors import PlantSurveyorError, UnknownOrigin
from .geometry import Position
from .logging import setup_logging
from .models import find_chain_violations
from .reconstruction import reconstruct
from .session_store import SessionStore, session_to_dict


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _load_session(store: SessionStore, origin_id: str):
    session = store.get_by_origin_id(origin_id)
    if session is None:
        raise UnknownOrigin(f"No session exists for origin {origin_id}", details={"origin_id": origin_id})
    return session


def cmd_sessions(store: SessionStore, args: argparse.Namespace) -> int:
    sessions = store.list_sessions()
    if not sessions:
        print("No sessions stored")
        return 0
    for session in sessions:
        print(f"{session.origin_id}\t{session.display_name}\t{session.point_count} points\t"
              f"updated {session.updated_at.isoformat()}")
    return 0


def cmd_stats(store: SessionStore, args: argparse.Namespace) -> int:
    _print_json(store.get_statistics())
    return 0


def cmd_show(store: SessionStore, args: argparse.Namespace) -> int:
    session = _load_session(store, args.origin_id)
    print(f"{session.display_name} ({session.origin_id}) lat={session.latitude} lon={session.longitude}")
    for point in session.points:
        print(f"  #{point.id:<4} {point.name:<16} origin+{point.offset_from_origin} "
              f"prev({point.previous_point_id})+{point.offset_from_previous} "
              f"{point.distance_from_previous:.2f} m")
    return 0


def cmd_export(store: SessionStore, args: argparse.Namespace) -> int:
    _print_json(store.export_session(args.origin_id))
    return 0


def cmd_verify(store: SessionStore, args: argparse.Namespace) -> int:
    session = _load_session(store, args.origin_id)
    violations = find_chain_violations(session.points, get_config().chain_tolerance)
    if not violations:
        print(f"OK: {session.point_count} points, chain consistent")
        return 0
    for violation in violations:
        print(f"point {violation.point_id}: {violation.reason}")
    return 1


def cmd_reconstruct(store: SessionStore, args: argparse.Namespace) -> int:
    session = _load_session(store, args.origin_id)
    config = get_config()
    result = reconstruct(
        session,
        args.point,
        Position.from_sequence(args.at),
        verify_chain=config.verify_chain_on_recovery,
        tolerance=config.chain_tolerance,
    )
    _print_json({
        "anchor_point_id": result.anchor_point_id,
        "origin": list(result.origin.as_tuple()),
        "positions": {str(point.id): list(result.positions[point.id].as_tuple()) for point in session.points},
    })
    return 0


def cmd_delete(store: SessionStore, args: argparse.Namespace) -> int:
    if store.delete_session(args.origin_id):
        print(f"Deleted session {args.origin_id}")
        return 0
    print(f"No session exists for origin {args.origin_id}", file=sys.stderr)
    return 1


def cmd_purge(store: SessionStore, args: argparse.Namespace) -> int:
    if not args.yes:
        print("Refusing to delete every session without --yes", file=sys.stderr)
        return 2
    removed = store.delete_all()
    print(f"Deleted {removed} sessions")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="plantsurveyor", description="Inspect PlantSurveyor planting sessions")
    parser.add_argument("--db", dest="db_path", default=None,
                        help="SQLite database path (defaults to the configured database_path)")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("sessions", help="List sessions, most recently updated first").set_defaults(func=cmd_sessions)
    sub.add_parser("stats", help="Show session and point totals").set_defaults(func=cmd_stats)

    show = sub.add_parser("show", help="Show the points of one session")
    show.add_argument("origin_id")
    show.set_defaults(func=cmd_show)

    export = sub.add_parser("export", help="Print one session as JSON")
    export.add_argument("origin_id")
    export.set_defaults(func=cmd_export)

    verify = sub.add_parser("verify", help="Check the stored offset chain of a session")
    verify.add_argument("origin_id")
    verify.set_defaults(func=cmd_verify)

    rebuild = sub.add_parser("reconstruct", help="Rebuild world positions from one known point")
    rebuild.add_argument("origin_id")
    rebuild.add_argument("--point", type=int, required=True, help="Id of the recognised point")
    rebuild.add_argument("--at", type=float, nargs=3, required=True, metavar=("X", "Y", "Z"),
                         help="Current world position of that point")
    rebuild.set_defaults(func=cmd_reconstruct)

    delete = sub.add_parser("delete", help="Delete one session and its points")
    delete.add_argument("origin_id")
    delete.set_defaults(func=cmd_delete)

    purge = sub.add_parser("purge", help="Delete every session")
    purge.add_argument("--yes", action="store_true", help="Confirm deletion")
    purge.set_defaults(func=cmd_purge)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = get_config()
    setup_logging(service="plantsurveyor", level=config.log_level, json_format=config.log_json)

    store = SessionStore(db_path=args.db_path, config=config)
    try:
        return args.func(store, args)
    except PlantSurveyorError as exc:
        print(f"{exc.code}: {exc.message}", file=sys.stderr)
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
