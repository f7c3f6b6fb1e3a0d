"""Settlement engine command line interface.

Provides operational tools for:
- Creating tenant schemas
- Draining the background job queue
- Metrics emission
- Encoding and decoding opaque ids

Usage:
    settlement-engine init-db --tenant acme --database-url sqlite:///acme.db
    settlement-engine run-jobs --tenant acme --limit 500
    settlement-engine metrics --tenant acme --format prometheus
    settlement-engine encode-id 1b4e28ba-2fa1-11d2-883f-0016d3cca427
    settlement-engine decode-id <opaque-id>
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Callable
from uuid import UUID

from settlement_engine.config import get_settings
from settlement_engine.database import (
    DEFAULT_TENANT,
    get_session,
    init_db,
    register_tenant,
    tenant_scope,
)
from settlement_engine.settlement.errors import SettlementError
from settlement_engine.settlement.ids import decode_id, encode_id
from settlement_engine.settlement.listeners import default_worker
from settlement_engine.settlement.metrics import SettlementMetricsCollector
from settlement_engine.settlement.notifications import LoggingMailer

logger = logging.getLogger(__name__)


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for command line use."""
    logging.basicConfig(
        level=(level or get_settings().log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


class SettlementCli:
    """Settlement engine command line interface."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="settlement-engine",
            description="Settlement engine operational tools",
        )
        parser.add_argument(
            "--log-level",
            type=str,
            help="Logging level (default: LOG_LEVEL from the environment)",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # init-db command
        init = subparsers.add_parser("init-db", help="Create tables in a tenant database")
        self._add_tenant_arguments(init)

        # run-jobs command
        jobs = subparsers.add_parser("run-jobs", help="Run queued background jobs")
        self._add_tenant_arguments(jobs)
        jobs.add_argument(
            "--limit",
            type=int,
            default=100,
            help="Maximum jobs to run (default: 100)",
        )

        # metrics command
        metrics = subparsers.add_parser("metrics", help="Emit settlement metrics")
        self._add_tenant_arguments(metrics)
        metrics.add_argument(
            "--format",
            choices=["json", "prometheus"],
            default="prometheus",
            help="Output format (default: prometheus)",
        )

        # encode-id command
        encode = subparsers.add_parser("encode-id", help="Encode a raw id for external use")
        encode.add_argument("raw_id", type=parse_uuid, help="Raw UUID")
        encode.add_argument("--key", type=str, help="Application key (default: APP_KEY)")

        # decode-id command
        decode = subparsers.add_parser("decode-id", help="Decode an opaque id")
        decode.add_argument("opaque_id", type=str, help="Opaque id")
        decode.add_argument("--key", type=str, help="Application key (default: APP_KEY)")

        return parser

    @staticmethod
    def _add_tenant_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "--tenant",
            type=str,
            default=DEFAULT_TENANT,
            help=f"Tenant to operate on (default: {DEFAULT_TENANT})",
        )
        parser.add_argument(
            "--database-url",
            type=str,
            help="Database URL of the tenant (registers the tenant)",
        )

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        configure_logging(parsed.log_level)

        handlers: dict[str, Callable[[argparse.Namespace], int]] = {
            "init-db": self._cmd_init_db,
            "run-jobs": self._cmd_run_jobs,
            "metrics": self._cmd_metrics,
            "encode-id": self._cmd_encode_id,
            "decode-id": self._cmd_decode_id,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        try:
            return handler(parsed)
        except SettlementError as exc:
            print(f"Error: {exc.message}", file=sys.stderr)
            return 2

    def _select(self, args: argparse.Namespace) -> str:
        if args.database_url:
            register_tenant(args.tenant, args.database_url)
        return args.tenant

    def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create all tables."""
        tenant = self._select(args)
        init_db(tenant)
        print(f"Initialized database for tenant: {tenant}")
        return 0

    def _cmd_run_jobs(self, args: argparse.Namespace) -> int:
        """Drain the job queue once."""
        tenant = self._select(args)
        worker = default_worker(LoggingMailer())
        with tenant_scope(tenant), get_session(tenant) as session:
            result = worker.run_pending(session, limit=args.limit)

        print(
            f"Processed {result.processed} jobs: {result.succeeded} succeeded, "
            f"{result.retried} retried, {result.failed} failed"
        )
        return 0 if result.failed == 0 else 1

    def _cmd_metrics(self, args: argparse.Namespace) -> int:
        """Emit metrics."""
        tenant = self._select(args)
        with get_session(tenant) as session:
            metrics = SettlementMetricsCollector(session).collect_all()

        if args.format == "json":
            print(metrics.to_json())
        else:
            print(metrics.to_prometheus())
        return 0

    def _cmd_encode_id(self, args: argparse.Namespace) -> int:
        print(encode_id(args.raw_id, args.key))
        return 0

    def _cmd_decode_id(self, args: argparse.Namespace) -> int:
        print(decode_id(args.opaque_id, args.key))
        return 0


def main() -> int:
    """CLI entry point."""
    cli = SettlementCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
