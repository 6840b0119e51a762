"""Command-line interface for the transaction capture queue."""

import argparse
import sys
import threading
from pathlib import Path

from transaction_capture import __version__
from transaction_capture.config import Settings, get_settings
from transaction_capture.container import Container
from transaction_capture.domain.value_objects import Amount, ServiceType, SyncStatus
from transaction_capture.exceptions import TransactionCaptureError
from transaction_capture.logging_config import configure_logging
from transaction_capture.services.connectivity import ProbeConnectivity


def build_settings(args: argparse.Namespace) -> Settings:
    """Apply command-line overrides on top of environment settings."""
    settings = get_settings()
    updates: dict[str, object] = {}
    if getattr(args, "database", None):
        updates["queue_path"] = Path(args.database)
    if getattr(args, "offline", False):
        updates["assume_online"] = False
    return settings.model_copy(update=updates) if updates else settings


def create_container(args: argparse.Namespace) -> Container:
    return Container(settings=build_settings(args))


def _error(message: str) -> int:
    print(f"Error: {message}", file=sys.stderr)
    return 1


def cmd_add(args: argparse.Namespace) -> int:
    """Queue a transaction and sync it when online."""
    try:
        with create_container(args) as container:
            manager = container.sync_manager
            local_id = manager.add_transaction(
                args.organization_id, args.service_type, args.amount
            )
            manager.wait_for_idle(timeout=container.settings.remote_timeout_seconds + 5)
            record = container.queue.get(int(local_id))
    except TransactionCaptureError as e:
        return _error(e.message)

    status = record.status.value if record else "unknown"
    print(f"Queued transaction {local_id} ({status})")
    return 0


def cmd_drain(args: argparse.Namespace) -> int:
    """Run one drain cycle."""
    try:
        with create_container(args) as container:
            result = container.sync_manager.drain("cli")
            remaining = container.sync_manager.pending_count()
    except TransactionCaptureError as e:
        return _error(e.message)

    if result.was_skipped:
        print(f"Drain skipped: {result.skipped}")
        return 0

    print(
        f"Attempted: {result.attempted}  Synced: {result.synced}  "
        f"Failed: {result.failed}  Flagged: {result.flagged}"
    )
    print(f"Remaining: {remaining}")
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    """List queued transactions."""
    try:
        with create_container(args) as container:
            if args.status:
                records = container.queue.list_by_status(SyncStatus(args.status))
            else:
                records = list(container.queue.list_all())
    except TransactionCaptureError as e:
        return _error(e.message)

    if not records:
        print("No transactions queued")
        return 0

    print(
        f"{'ID':>6} {'Organization':<20} {'Type':<13} {'Amount':>16} "
        f"{'Status':<8} {'External ID':<20} {'Created':<26}"
    )
    print("-" * 115)
    for record in records:
        print(
            f"{record.local_id:>6} {record.organization_id[:20]:<20} "
            f"{record.service_type.value:<13} {record.amount.to_fixed4():>16} "
            f"{record.status.value:<8} {(record.external_id or '-')[:20]:<20} "
            f"{record.created_at.isoformat():<26}"
        )
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Show queue counts per status."""
    try:
        with create_container(args) as container:
            counts = container.queue.count_by_status()
            path = container.settings.queue_path
    except TransactionCaptureError as e:
        return _error(e.message)

    print(f"Queue: {path}")
    for status in SyncStatus:
        print(f"  {status.value:<8} {counts[status]}")
    return 0


def cmd_cashflow(args: argparse.Namespace) -> int:
    """Summarize cashflow for an organization and check its threshold."""
    try:
        configured = Amount.parse(args.threshold) if args.threshold else None
        balance = Amount.parse(args.balance) if args.balance else None
        with create_container(args) as container:
            monitor = container.cashflow_monitor
            summary = monitor.load_summary(args.organization_id, configured)
            current = balance if balance is not None else summary.balance
            breached = monitor.check_threshold(
                args.organization_id, current, summary.threshold
            )
    except TransactionCaptureError as e:
        return _error(e.message)

    print(f"Cashflow: {summary.organization_id}")
    print("=" * 40)
    print(f"  Incoming:          {summary.incoming_payments.to_fixed4():>16}")
    print(f"  Outgoing:          {summary.outgoing_payments.to_fixed4():>16}")
    print(f"  Fees:              {summary.fees.to_fixed4():>16}")
    print(f"  Balance:           {summary.balance.to_fixed4():>16}")
    print(f"  Projected (7d):    {summary.projected_balance.to_fixed4():>16}")
    print(f"  Threshold:         {summary.threshold.to_fixed4():>16}")
    if breached:
        print(f"  ALERT: {current.to_fixed4()} is below threshold")
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    """Drain periodically until interrupted."""
    try:
        with create_container(args) as container:
            connectivity = container.connectivity
            if isinstance(connectivity, ProbeConnectivity):
                connectivity.start()
            container.sync_manager.start()
            print(
                f"Syncing {container.settings.queue_path} every "
                f"{container.settings.drain_interval_seconds:g}s (Ctrl+C to stop)"
            )
            try:
                threading.Event().wait()
            except KeyboardInterrupt:
                print("Stopping")
    except TransactionCaptureError as e:
        return _error(e.message)
    return 0


def cmd_version(args: argparse.Namespace) -> int:
    """Show version information."""
    print(f"Transaction Capture v{__version__}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="txc",
        description="Transaction Capture - offline-first transaction queue with remote sync",
    )
    parser.add_argument(
        "--database",
        "-d",
        help="Path to the SQLite queue file",
        default=None,
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Treat the remote store as unreachable",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # add command
    add_parser = subparsers.add_parser("add", help="Queue a new transaction")
    add_parser.add_argument("organization_id", help="Organization (tenant) ID")
    add_parser.add_argument(
        "service_type",
        choices=[s.value for s in ServiceType],
        help="Service type",
    )
    add_parser.add_argument("amount", help="Amount, e.g. 100.0000")
    add_parser.set_defaults(func=cmd_add)

    # drain command
    drain_parser = subparsers.add_parser(
        "drain", help="Push pending transactions to the remote store"
    )
    drain_parser.set_defaults(func=cmd_drain)

    # list command
    list_parser = subparsers.add_parser("list", help="List queued transactions")
    list_parser.add_argument(
        "--status",
        choices=[s.value for s in SyncStatus],
        help="Only show records in this status",
    )
    list_parser.set_defaults(func=cmd_list)

    # status command
    status_parser = subparsers.add_parser("status", help="Show queue status")
    status_parser.set_defaults(func=cmd_status)

    # cashflow command
    cashflow_parser = subparsers.add_parser(
        "cashflow", help="Show cashflow summary and check the alert threshold"
    )
    cashflow_parser.add_argument("organization_id", help="Organization (tenant) ID")
    cashflow_parser.add_argument(
        "--balance", help="Current balance to check (default: computed balance)"
    )
    cashflow_parser.add_argument(
        "--threshold", help="Configured threshold (default: 3 days of outflows)"
    )
    cashflow_parser.set_defaults(func=cmd_cashflow)

    # run command
    run_parser = subparsers.add_parser("run", help="Run the periodic sync loop")
    run_parser.set_defaults(func=cmd_run)

    # version command
    version_parser = subparsers.add_parser("version", help="Show version")
    version_parser.set_defaults(func=cmd_version)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    configure_logging(build_settings(args))

    result: int = args.func(args)
    return result


if __name__ == "__main__":
    sys.exit(main())
