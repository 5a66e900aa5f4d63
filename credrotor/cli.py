"""
credrotor CLI — entry point for all operations.

Usage:
    credrotor version              # Show version
    credrotor migrate              # Create / update the database schema
    credrotor serve                # Start the API server
    credrotor list                 # List registered credentials
    credrotor due                  # Show credentials due for rotation
    credrotor rotate <id|name>     # Rotate one credential now
    credrotor sweep                # Rotate everything due (cron entry point)
    credrotor reconcile            # Close abandoned in-progress attempts
    credrotor history <id|name>    # Show the rotation ledger for a credential
    credrotor audit                # Show recent audit events
    credrotor controlplane workspaces      # List control-plane workspaces
    credrotor controlplane init-varset     # Create the sync variable set
"""

from __future__ import annotations

import argparse
import logging
import sys

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"

# Tables created by 001_init.sql
REQUIRED_TABLES = [
    "credentials",
    "rotation_logs",
    "secret_managers",
    "audit_log",
]


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="credrotor",
        description="credrotor — credential rotation with secret-store and control-plane sync.",
    )
    parser.add_argument("--version", action="store_true", help="Show version and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command")

    # migrate
    migrate_parser = subparsers.add_parser("migrate", help="Run database migrations")
    migrate_parser.add_argument(
        "--dry-run", action="store_true", help="Print SQL without executing"
    )
    migrate_parser.add_argument(
        "--check", action="store_true", help="Check if required tables exist"
    )

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=None, help="Port (default: config)")

    # list / due
    list_parser = subparsers.add_parser("list", help="List credentials")
    list_parser.add_argument("--active", action="store_true", help="Only active credentials")
    subparsers.add_parser("due", help="Show credentials due for rotation")

    # rotate
    rotate_parser = subparsers.add_parser("rotate", help="Rotate one credential")
    rotate_parser.add_argument("credential", help="Credential id or name")
    rotate_parser.add_argument(
        "--trigger",
        choices=["manual", "emergency"],
        default="manual",
        help="Trigger recorded on the ledger entry",
    )

    # sweep / reconcile
    subparsers.add_parser("sweep", help="Rotate every due credential")
    subparsers.add_parser("reconcile", help="Fail abandoned in-progress attempts")

    # history
    history_parser = subparsers.add_parser("history", help="Show rotation history")
    history_parser.add_argument("credential", help="Credential id or name")
    history_parser.add_argument("--limit", type=int, default=20, help="Max entries")

    # audit
    audit_parser = subparsers.add_parser("audit", help="Show recent audit events")
    audit_parser.add_argument("--event-type", help="Exact event type, e.g. rotation.failed")
    audit_parser.add_argument("--target", help="Target substring, e.g. a credential id")
    audit_parser.add_argument("--status", choices=["ok", "error"], help="Event status")
    audit_parser.add_argument("--limit", type=int, default=50, help="Max events")

    # controlplane
    cp_parser = subparsers.add_parser("controlplane", help="Inspect or bootstrap the control plane")
    cp_sub = cp_parser.add_subparsers(dest="cp_command")
    cp_sub.add_parser("workspaces", help="List workspaces in the organization")
    varset_parser = cp_sub.add_parser(
        "init-varset", help="Create the variable set rotated values are synced to"
    )
    varset_parser.add_argument("name", nargs="?", default="rotated-credentials")
    varset_parser.add_argument(
        "--description", default="Credentials managed by credrotor", help="Set description"
    )

    # version
    subparsers.add_parser("version", help="Show version")

    args = parser.parse_args(argv)

    if args.version or args.command == "version":
        from credrotor import __version__

        print(f"credrotor {__version__}")
        return 0

    if args.command is None:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if args.command == "migrate":
        return _cmd_migrate(args)
    elif args.command == "serve":
        return _cmd_serve(args)

    handlers = {
        "list": _cmd_list,
        "due": _cmd_due,
        "rotate": _cmd_rotate,
        "sweep": _cmd_sweep,
        "reconcile": _cmd_reconcile,
        "history": _cmd_history,
        "audit": _cmd_audit,
        "controlplane": _cmd_controlplane,
    }
    from credrotor.errors import RotationError

    try:
        return handlers[args.command](args)
    except RotationError as e:
        print(f"Error: {e}")
        return 1


def _engine():
    from credrotor.rotation.engine import build_engine

    return build_engine()


# ─── Migrations ──────────────────────────────────────────────────────


def _find_migration_sql() -> str | None:
    """Find the migration SQL file bundled with the package."""
    from pathlib import Path

    bundled = Path(__file__).parent / "migrations" / "001_init.sql"
    if bundled.exists():
        return bundled.read_text()
    return None


def _cmd_migrate(args: argparse.Namespace) -> int:
    sql = _find_migration_sql()
    if sql is None:
        print("Error: Migration SQL not found.")
        print("Expected at: credrotor/migrations/001_init.sql")
        return 1

    if args.check:
        return _cmd_migrate_check()

    if args.dry_run:
        print("-- Dry run: the following SQL would be executed --")
        print(sql)
        return 0

    try:
        import psycopg2

        from credrotor.config import get_config

        cfg = get_config().db
        print(f"Connecting to {cfg.describe()}...")
        conn = psycopg2.connect(**cfg.connect_kwargs)
        conn.autocommit = True
        with conn.cursor() as cur:
            cur.execute(sql)
        conn.close()
        print("Migration completed successfully.")

        return _cmd_migrate_check()

    except Exception as e:
        print(f"Error: Migration failed: {e}")
        print("Check CREDROTOR_DB_* environment variables and ensure PostgreSQL is running.")
        return 1


def _cmd_migrate_check() -> int:
    """Check if required tables exist in the database."""
    try:
        import psycopg2

        from credrotor.config import get_config

        cfg = get_config().db
        conn = psycopg2.connect(**cfg.connect_kwargs)
        with conn.cursor() as cur:
            cur.execute(
                "SELECT table_name FROM information_schema.tables WHERE table_schema = 'public'"
            )
            existing = {row[0] for row in cur.fetchall()}
        conn.close()

        missing = [t for t in REQUIRED_TABLES if t not in existing]
        if missing:
            print(f"Missing tables ({len(missing)}/{len(REQUIRED_TABLES)}):")
            for t in missing:
                print(f"  - {t}")
            print("\nRun 'credrotor migrate' to create them.")
            return 1
        print(f"All {len(REQUIRED_TABLES)} required tables present.")
        return 0

    except Exception as e:
        print(f"Error: Cannot check tables: {e}")
        return 1


# ─── Server ──────────────────────────────────────────────────────────


def _cmd_serve(args: argparse.Namespace) -> int:
    try:
        import uvicorn
    except ImportError:
        print("Error: uvicorn is required. Install with: pip install credrotor[api]")
        return 1

    from credrotor.config import get_config

    port = args.port or get_config().api_port
    print(f"Starting credrotor API on {args.host}:{port}...")
    uvicorn.run("credrotor.api.server:app", host=args.host, port=port)
    return 0


# ─── Rotation commands ───────────────────────────────────────────────


def _cmd_list(args: argparse.Namespace) -> int:
    creds = _engine().store.list_credentials(active_only=args.active)
    if not creds:
        print("No credentials registered.")
        return 0
    for c in creds:
        state = "active" if c.is_active else "inactive"
        nxt = c.next_rotation_at.isoformat() if c.next_rotation_at else "-"
        print(f"  {c.name:<32} {c.type.value:<26} {state:<9} next: {nxt}")
    return 0


def _cmd_due(args: argparse.Namespace) -> int:
    due = _engine().find_due()
    print(f"{len(due)} credential(s) due for rotation")
    for c in due:
        print(f"  {c.name:<32} due since {c.next_rotation_at.isoformat()}")
    return 0


def _cmd_rotate(args: argparse.Namespace) -> int:
    result = _engine().rotate(args.credential, args.trigger)
    print(f"Rotated {args.credential} (log: {result.log_id})")
    print(f"  new secret hash: {result.new_secret_hash}")
    for r in result.publish_results:
        mark = "ok" if r.success else f"FAILED ({r.error})"
        print(f"  store {r.registration}: {mark}")
    if result.sync_result is not None:
        sync = result.sync_result
        if sync.skipped:
            print(f"  control plane: skipped ({sync.skipped_reason})")
        else:
            print(f"  control plane: {sync.variable_key} ({len(sync.run_ids)} run(s) queued)")
    return 0


def _cmd_sweep(args: argparse.Namespace) -> int:
    outcomes = _engine().sweep_due()
    failed = [o for o in outcomes if not o.success]
    print(f"Processed {len(outcomes)} credential(s): {len(outcomes) - len(failed)} rotated")
    for o in failed:
        print(f"  FAILED {o.credential_name}: {o.error}")
    return 0


def _cmd_reconcile(args: argparse.Namespace) -> int:
    closed = _engine().reconcile_stale()
    print(f"Reconciled {len(closed)} abandoned attempt(s)")
    for log_id in closed:
        print(f"  {log_id}")
    return 0


def _cmd_history(args: argparse.Namespace) -> int:
    engine = _engine()
    cred = engine.resolve_credential(args.credential)
    attempts = engine.store.list_attempts(cred.id, limit=args.limit)
    if not attempts:
        print(f"No rotation history for {cred.name}.")
        return 0
    for a in attempts:
        line = f"  {a.started_at.isoformat()}  {a.trigger.value:<9} {a.status.value:<11}"
        if a.error_message:
            line += f" {a.error_message}"
        print(line)
    return 0


def _cmd_audit(args: argparse.Namespace) -> int:
    from credrotor.audit.logger import query_log

    events = query_log(
        limit=args.limit, event_type=args.event_type, target=args.target, status=args.status
    )
    if not events:
        print("No audit events.")
        return 0
    for e in events:
        print(f"  {e['timestamp']}  {e['event_type']:<22} {e['status']:<5} {e['action']}")
    return 0


# ─── Control plane ───────────────────────────────────────────────────


def _controlplane_client(cfg):
    from credrotor.controlplane.client import build_client

    return build_client(cfg)


def _cmd_controlplane(args: argparse.Namespace) -> int:
    from credrotor.config import get_config
    from credrotor.errors import NotFound

    if args.cp_command is None:
        print("Usage: credrotor controlplane {workspaces,init-varset}")
        return 1

    cfg = get_config().control_plane
    if not (cfg.api_token and cfg.organization):
        print("Error: set TFC_API_TOKEN and TFC_ORGANIZATION first.")
        return 1

    with _controlplane_client(cfg) as tfc:
        if args.cp_command == "workspaces":
            workspaces = tfc.list_workspaces()
            print(f"{len(workspaces)} workspace(s) in {cfg.organization}")
            for ws in workspaces:
                print(f"  {ws['attributes']['name']:<32} {ws['id']}")
            return 0

        try:
            varset = tfc.find_variable_set(args.name)
            print(f"Variable set {args.name} already exists ({varset['id']})")
        except NotFound:
            varset = tfc.create_variable_set(args.name, args.description)
            print(f"Created variable set {args.name} ({varset['id']})")
    print(f"Set TFC_VARIABLE_SET_ID={varset['id']} to sync rotated credentials into it.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
