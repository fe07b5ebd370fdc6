"""Obligation Ledger Command Line Interface.

Batch triggers and read-only reports:
- Database setup
- Late fee sweep
- Single-period late fee assessment
- Recurring expense materialization
- Monthly trust interest
- Payment entry
- Trust reconciliation
- Rent roll and aging

Usage:
    python -m obligation_ledger init-db
    python -m obligation_ledger sweep --as-of 2026-03-10
    python -m obligation_ledger assess --obligation-id X --as-of 2026-03-10
    python -m obligation_ledger recurring-expenses --as-of 2026-03-01
    python -m obligation_ledger apply-interest --as-of 2026-03-31
    python -m obligation_ledger record-payment --obligation-id X --amount 35.00 --date 2026-03-12
    python -m obligation_ledger reconcile --account-id X
    python -m obligation_ledger rent-roll --property-id X --as-of 2026-03-31
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Callable
from uuid import UUID

from obligation_ledger.config import EngineConfig, get_settings
from obligation_ledger.database import LedgerStore
from obligation_ledger.errors import IntegrityError, LedgerError
from obligation_ledger.services import (
    ExpenseService,
    LateFeeService,
    PaymentService,
    ReportService,
    TrustService,
)

logger = logging.getLogger(__name__)


def parse_date(s: str) -> date:
    """Parse ISO date string."""
    try:
        return date.fromisoformat(s)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date {s!r}; expected YYYY-MM-DD") from None


def parse_amount(s: str) -> Decimal:
    """Parse decimal money amount."""
    try:
        return Decimal(s)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"invalid amount {s!r}") from None


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    try:
        return UUID(s)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid id {s!r}") from None


class LedgerCli:
    """Obligation ledger command line interface."""

    def __init__(self, store: LedgerStore | None = None, config: EngineConfig | None = None):
        self._store = store
        self.config = config or EngineConfig()
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m obligation_ledger",
            description="Recurring obligation and late fee ledger tools",
        )
        parser.add_argument(
            "--database-url",
            type=str,
            help="Database URL (default: DATABASE_URL from the environment)",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser("init-db", help="Create all ledger tables")

        sweep = subparsers.add_parser("sweep", help="Assess late fees as of a date")
        sweep.add_argument("--as-of", type=parse_date, required=True, help="YYYY-MM-DD")

        assess = subparsers.add_parser(
            "assess",
            help="Assess the late fee for one obligation period",
        )
        assess.add_argument("--obligation-id", type=parse_uuid, required=True)
        assess.add_argument("--as-of", type=parse_date, required=True, help="YYYY-MM-DD")

        recurring = subparsers.add_parser(
            "recurring-expenses",
            help="Create pending expenses for recurring expense obligations",
        )
        recurring.add_argument("--as-of", type=parse_date, required=True, help="YYYY-MM-DD")

        interest = subparsers.add_parser(
            "apply-interest",
            help="Post monthly interest on interest-bearing trust accounts",
        )
        interest.add_argument("--as-of", type=parse_date, required=True, help="YYYY-MM-DD")

        payment = subparsers.add_parser(
            "record-payment",
            help="Record a payment and allocate it to pending late fees",
        )
        payment.add_argument("--obligation-id", type=parse_uuid, required=True)
        payment.add_argument("--amount", type=parse_amount, required=True)
        payment.add_argument("--date", type=parse_date, required=True, help="YYYY-MM-DD")
        payment.add_argument(
            "--method",
            type=str,
            help="Payment method (default: DEFAULT_PAYMENT_METHOD from the environment)",
        )
        payment.add_argument("--reference", type=str)

        reconcile = subparsers.add_parser(
            "reconcile",
            help="Verify a trust account's balance chain",
        )
        reconcile.add_argument("--account-id", type=parse_uuid, required=True)

        rent_roll = subparsers.add_parser("rent-roll", help="Rent roll for a property")
        rent_roll.add_argument("--property-id", type=parse_uuid, required=True)
        rent_roll.add_argument("--as-of", type=parse_date, required=True, help="YYYY-MM-DD")

        aging = subparsers.add_parser("aging", help="Receivables aging for a property")
        aging.add_argument("--property-id", type=parse_uuid, required=True)
        aging.add_argument("--as-of", type=parse_date, required=True, help="YYYY-MM-DD")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        handlers: dict[str, Callable[[argparse.Namespace], int]] = {
            "init-db": self._cmd_init_db,
            "sweep": self._cmd_sweep,
            "assess": self._cmd_assess,
            "recurring-expenses": self._cmd_recurring_expenses,
            "apply-interest": self._cmd_apply_interest,
            "record-payment": self._cmd_record_payment,
            "reconcile": self._cmd_reconcile,
            "rent-roll": self._cmd_rent_roll,
            "aging": self._cmd_aging,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        if self._store is None:
            url = parsed.database_url or get_settings().database_url
            self._store = LedgerStore.from_url(url, echo=get_settings().database_echo)

        try:
            return handler(parsed)
        except LedgerError as e:
            logger.error("%s failed: %s", parsed.command, e)
            self._emit({"error": type(e).__name__, "message": str(e)}, stream=sys.stderr)
            return 1

    @property
    def store(self) -> LedgerStore:
        assert self._store is not None
        return self._store

    @staticmethod
    def _emit(payload: dict[str, Any], stream: Any = None) -> None:
        print(json.dumps(payload, indent=2, default=str), file=stream or sys.stdout)

    def _cmd_init_db(self, args: argparse.Namespace) -> int:
        self.store.create_all()
        self._emit({"status": "ok", "database": str(self.store.engine.url)})
        return 0

    def _cmd_sweep(self, args: argparse.Namespace) -> int:
        result = LateFeeService(self.store, config=self.config).run_sweep(args.as_of)
        self._emit(result.to_dict())
        return 1 if result.errors else 0

    def _cmd_assess(self, args: argparse.Namespace) -> int:
        service = LateFeeService(self.store, config=self.config)
        decision = service.assess_period(args.obligation_id, args.as_of)
        self._emit(decision.to_dict())
        return 0

    def _cmd_recurring_expenses(self, args: argparse.Namespace) -> int:
        result = ExpenseService(self.store).process_recurring_expenses(args.as_of)
        self._emit(result.to_dict())
        return 1 if result.errors else 0

    def _cmd_apply_interest(self, args: argparse.Namespace) -> int:
        result = TrustService(self.store).apply_monthly_interest(args.as_of)
        self._emit(result.to_dict())
        return 1 if result.errors else 0

    def _cmd_record_payment(self, args: argparse.Namespace) -> int:
        method = args.method or get_settings().default_payment_method
        result = PaymentService(self.store).record_payment(
            args.obligation_id, args.amount, args.date, method, reference=args.reference
        )
        self._emit(result.to_dict())
        return 0

    def _cmd_reconcile(self, args: argparse.Namespace) -> int:
        service = TrustService(self.store)
        try:
            check = service.reconcile(args.account_id)
        except IntegrityError:
            self._emit(service.check_balance(args.account_id).to_dict())
            return 1
        self._emit(check.to_dict())
        return 0

    def _cmd_rent_roll(self, args: argparse.Namespace) -> int:
        report = ReportService(self.store, self.config).rent_roll(args.property_id, args.as_of)
        self._emit(report.to_dict())
        return 0

    def _cmd_aging(self, args: argparse.Namespace) -> int:
        report = ReportService(self.store, self.config).aging(args.property_id, args.as_of)
        self._emit(report.to_dict())
        return 0


def main() -> int:
    """CLI entry point."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    cli = LedgerCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
