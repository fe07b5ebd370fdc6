"""Trust account ledger - append-only lines with balance snapshots.

Every line stores the balance after it was applied and a per-account
sequence number, so the chain can be re-verified at any time:

    balance_after[n] = balance_after[n-1] + signed(amount[n])

The account row caches the latest balance. Reconciliation recomputes the
chain and reports mismatches; it never rewrites history.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from obligation_ledger.calculators.schedule import shift_months
from obligation_ledger.calculators.types import (
    CENT,
    ZERO,
    TrustAccountType,
    parse_enum,
    positive_money,
    positive_rate,
)
from obligation_ledger.database import LedgerStore, get_for_update
from obligation_ledger.errors import (
    ConflictError,
    InsufficientFundsError,
    IntegrityError,
    NotFoundError,
    ValidationError,
)
from obligation_ledger.events import (
    EventBatch,
    EventEmitter,
    EventMetadata,
    TrustTransactionPosted,
    TrustTransferCompleted,
)
from obligation_ledger.models import Property, TrustAccount, TrustTransaction
from obligation_ledger.models.trust import CREDIT_TYPES

logger = logging.getLogger(__name__)

SOURCE = "trust_service"
MONTHS_PER_YEAR = Decimal("12")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class BalanceCheck:
    """Result of recomputing an account's balance from its lines."""

    account_id: UUID
    cached_balance: Decimal
    computed_balance: Decimal
    transaction_count: int
    problems: list[str] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return self.cached_balance == self.computed_balance and not self.problems

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": str(self.account_id),
            "cached_balance": str(self.cached_balance),
            "computed_balance": str(self.computed_balance),
            "transaction_count": self.transaction_count,
            "is_consistent": self.is_consistent,
            "problems": list(self.problems),
        }


@dataclass(frozen=True)
class TransferResult:
    transfer_id: UUID
    withdrawal: TrustTransaction
    deposit: TrustTransaction


@dataclass
class InterestRunResult:
    """Summary of one monthly interest run."""

    as_of: date
    posted: dict[UUID, Decimal] = field(default_factory=dict)
    skipped: dict[UUID, str] = field(default_factory=dict)
    errors: dict[UUID, str] = field(default_factory=dict)

    @property
    def total_posted(self) -> Decimal:
        return sum(self.posted.values(), ZERO)

    def to_dict(self) -> dict[str, Any]:
        return {
            "as_of": self.as_of.isoformat(),
            "posted": {str(k): str(v) for k, v in self.posted.items()},
            "skipped": {str(k): v for k, v in self.skipped.items()},
            "errors": {str(k): v for k, v in self.errors.items()},
            "total_posted": str(self.total_posted),
        }


def average_daily_balance(
    opening: Decimal,
    movements: list[tuple[date, Decimal]],
    start: date,
    end: date,
) -> Decimal:
    """Average of end-of-day balances over [start, end].

    Args:
        opening: Balance at the start of `start`
        movements: (transaction_date, signed_amount) pairs inside the window
        start: First day of the window
        end: Last day of the window (inclusive)
    """
    if end < start:
        return ZERO
    by_day: dict[date, Decimal] = {}
    for day, amount in movements:
        by_day[day] = by_day.get(day, ZERO) + amount

    balance = opening
    total = ZERO
    days = 0
    day = start
    while day <= end:
        balance += by_day.get(day, ZERO)
        total += balance
        days += 1
        day += timedelta(days=1)
    return total / days


class TrustService:
    """Trust account ledger operations."""

    def __init__(self, store: LedgerStore, emitter: EventEmitter | None = None):
        self.store = store
        self.emitter = emitter or EventEmitter()

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    def open_account(
        self,
        *,
        property_id: UUID,
        name: str,
        account_type: TrustAccountType | str,
        is_interest_bearing: bool = False,
        interest_rate: Decimal | str | None = None,
    ) -> TrustAccount:
        """Open a trust account. One active account per property and type.

        Raises:
            ValidationError: Bad type, name or interest rate
            NotFoundError: Property does not exist
            ConflictError: An active account of this type already exists
        """
        kind = parse_enum(TrustAccountType, account_type, "account_type")
        if not name or not name.strip():
            raise ValidationError("Account name is required", field="name")
        rate: Decimal | None = None
        if is_interest_bearing:
            if interest_rate is None:
                raise ValidationError(
                    "Interest-bearing accounts need an interest_rate", field="interest_rate"
                )
            rate = positive_rate(interest_rate, "interest_rate")

        with self.store.transaction() as session:
            if session.get(Property, property_id) is None:
                raise NotFoundError("Property", property_id)
            existing = session.execute(
                select(TrustAccount.trust_account_id).where(
                    TrustAccount.property_id == property_id,
                    TrustAccount.account_type == kind.value,
                    TrustAccount.is_active.is_(True),
                )
            ).first()
            if existing is not None:
                raise ConflictError(
                    f"An active {kind.value} trust account already exists "
                    f"for property {property_id}"
                )
            account = TrustAccount(
                property_id=property_id,
                name=name.strip(),
                account_type=kind.value,
                is_interest_bearing=is_interest_bearing,
                interest_rate=rate,
                balance=ZERO,
                is_active=True,
            )
            session.add(account)
            session.flush()

        logger.info(
            "Opened %s trust account %s for property %s",
            account.account_type,
            account.trust_account_id,
            property_id,
        )
        return account

    def deactivate_account(self, account_id: UUID) -> TrustAccount:
        """Close an account. Only an empty account can be closed."""
        with self.store.transaction() as session:
            account = get_for_update(session, TrustAccount, account_id, "TrustAccount")
            if account.balance != ZERO:
                raise ConflictError(
                    f"Cannot deactivate trust account {account_id} "
                    f"with non-zero balance {account.balance}"
                )
            account.is_active = False

        logger.info("Deactivated trust account %s", account_id)
        return account

    def get_account(self, account_id: UUID) -> TrustAccount:
        with self.store.transaction() as session:
            account = session.get(TrustAccount, account_id)
            if account is None:
                raise NotFoundError("TrustAccount", account_id)
            return account

    # -------------------------------------------------------------------------
    # Postings
    # -------------------------------------------------------------------------

    def deposit(
        self,
        account_id: UUID,
        amount: Decimal | str | int,
        *,
        transaction_date: date,
        description: str | None = None,
        reference: str | None = None,
    ) -> TrustTransaction:
        return self._post_single(
            account_id, "deposit", amount, transaction_date, description, reference
        )

    def withdraw(
        self,
        account_id: UUID,
        amount: Decimal | str | int,
        *,
        transaction_date: date,
        description: str | None = None,
        reference: str | None = None,
    ) -> TrustTransaction:
        """Withdraw funds.

        Raises:
            InsufficientFundsError: The balance would go negative
        """
        return self._post_single(
            account_id, "withdrawal", amount, transaction_date, description, reference
        )

    def record_fee(
        self,
        account_id: UUID,
        amount: Decimal | str | int,
        *,
        transaction_date: date,
        description: str | None = None,
        reference: str | None = None,
    ) -> TrustTransaction:
        """Charge a bank or management fee against the account."""
        return self._post_single(
            account_id, "fee", amount, transaction_date, description, reference
        )

    def record_interest(
        self,
        account_id: UUID,
        amount: Decimal | str | int,
        *,
        transaction_date: date,
        description: str | None = None,
        reference: str | None = None,
    ) -> TrustTransaction:
        """Post interest reported by the bank on an interest-bearing account."""
        return self._post_single(
            account_id, "interest", amount, transaction_date, description, reference
        )

    def _post_single(
        self,
        account_id: UUID,
        transaction_type: str,
        amount: Decimal | str | int,
        transaction_date: date,
        description: str | None,
        reference: str | None,
    ) -> TrustTransaction:
        amount = positive_money(amount)
        with self.emitter.batch() as batch:
            with self.store.transaction() as session:
                account = get_for_update(session, TrustAccount, account_id, "TrustAccount")
                txn = self._append(
                    session,
                    batch,
                    account,
                    transaction_type,
                    amount,
                    transaction_date,
                    description=description,
                    reference=reference,
                )

        logger.info(
            "Posted %s of %s to trust account %s, balance %s",
            transaction_type,
            amount,
            account_id,
            txn.balance_after,
        )
        return txn

    def _append(
        self,
        session: Session,
        batch: EventBatch,
        account: TrustAccount,
        transaction_type: str,
        amount: Decimal,
        transaction_date: date,
        *,
        description: str | None = None,
        reference: str | None = None,
        related_account_id: UUID | None = None,
        transfer_id: UUID | None = None,
    ) -> TrustTransaction:
        """Append one line to a locked account and move its cached balance."""
        if not account.is_active:
            raise ConflictError(f"Trust account {account.trust_account_id} is inactive")
        if transaction_type == "interest" and not account.is_interest_bearing:
            raise ConflictError(
                f"Trust account {account.trust_account_id} does not bear interest"
            )

        if transaction_type in CREDIT_TYPES:
            balance_after = account.balance + amount
        else:
            if amount > account.balance:
                raise InsufficientFundsError(account.trust_account_id, account.balance, amount)
            balance_after = account.balance - amount

        last_sequence = session.execute(
            select(func.coalesce(func.max(TrustTransaction.sequence), 0)).where(
                TrustTransaction.trust_account_id == account.trust_account_id
            )
        ).scalar_one()

        txn = TrustTransaction(
            trust_account_id=account.trust_account_id,
            sequence=int(last_sequence) + 1,
            transaction_type=transaction_type,
            amount=amount,
            transaction_date=transaction_date,
            related_account_id=related_account_id,
            transfer_id=transfer_id,
            description=description,
            reference=reference,
            balance_after=balance_after,
            is_reconciled=False,
        )
        session.add(txn)
        account.balance = balance_after
        session.flush()

        batch.add(
            TrustTransactionPosted(
                metadata=EventMetadata.create(SOURCE, correlation_id=transfer_id),
                transaction_id=txn.trust_transaction_id,
                trust_account_id=account.trust_account_id,
                transaction_type=transaction_type,
                amount=amount,
                balance_after=balance_after,
            )
        )
        return txn

    def transfer(
        self,
        from_account_id: UUID,
        to_account_id: UUID,
        amount: Decimal | str | int,
        *,
        transaction_date: date,
        description: str | None = None,
        reference: str | None = None,
    ) -> TransferResult:
        """Move funds between two accounts as one atomic pair.

        Both accounts are locked in id order so two opposing transfers
        cannot deadlock. The pair shares a transfer_id.

        Raises:
            ValidationError: Same source and destination
            InsufficientFundsError: Source balance too low (nothing written)
        """
        if from_account_id == to_account_id:
            raise ValidationError(
                "Cannot transfer a trust account to itself", field="to_account_id"
            )
        amount = positive_money(amount)
        transfer_id = uuid4()

        with self.emitter.batch() as batch:
            with self.store.transaction() as session:
                locked = {
                    account_id: get_for_update(session, TrustAccount, account_id, "TrustAccount")
                    for account_id in sorted((from_account_id, to_account_id), key=str)
                }
                source = locked[from_account_id]
                destination = locked[to_account_id]

                withdrawal = self._append(
                    session,
                    batch,
                    source,
                    "withdrawal",
                    amount,
                    transaction_date,
                    description=description or f"Transfer to {destination.name}",
                    reference=reference,
                    related_account_id=to_account_id,
                    transfer_id=transfer_id,
                )
                deposit = self._append(
                    session,
                    batch,
                    destination,
                    "deposit",
                    amount,
                    transaction_date,
                    description=description or f"Transfer from {source.name}",
                    reference=reference,
                    related_account_id=from_account_id,
                    transfer_id=transfer_id,
                )
                batch.add(
                    TrustTransferCompleted(
                        metadata=EventMetadata.create(SOURCE, correlation_id=transfer_id),
                        transfer_id=transfer_id,
                        from_account_id=from_account_id,
                        to_account_id=to_account_id,
                        amount=amount,
                    )
                )

        logger.info(
            "Transferred %s from trust account %s to %s (transfer %s)",
            amount,
            from_account_id,
            to_account_id,
            transfer_id,
        )
        return TransferResult(transfer_id=transfer_id, withdrawal=withdrawal, deposit=deposit)

    # -------------------------------------------------------------------------
    # Interest
    # -------------------------------------------------------------------------

    def apply_monthly_interest(self, as_of: date) -> InterestRunResult:
        """Post interest for the month of as_of on every interest-bearing account.

        Interest = average daily balance from the first of the month
        through as_of, times annual rate / 12 / 100, rounded to cents.
        An account that already has interest dated in that month is
        skipped, so re-running is harmless.
        """
        with self.store.transaction() as session:
            account_ids = list(
                session.execute(
                    select(TrustAccount.trust_account_id)
                    .where(
                        TrustAccount.is_active.is_(True),
                        TrustAccount.is_interest_bearing.is_(True),
                    )
                    .order_by(TrustAccount.trust_account_id)
                ).scalars()
            )

        result = InterestRunResult(as_of=as_of)
        for account_id in account_ids:
            try:
                posted = self._apply_interest(account_id, as_of)
            except Exception as e:
                logger.exception("Interest posting failed for trust account %s", account_id)
                result.errors[account_id] = f"{type(e).__name__}: {e}"
                continue
            if isinstance(posted, str):
                result.skipped[account_id] = posted
            else:
                result.posted[account_id] = posted

        logger.info(
            "Interest run as of %s: %d posted (%s), %d skipped, %d errors",
            as_of,
            len(result.posted),
            result.total_posted,
            len(result.skipped),
            len(result.errors),
        )
        return result

    def _apply_interest(self, account_id: UUID, as_of: date) -> Decimal | str:
        """Post one account's interest. Returns the amount or a skip reason."""
        month_start = as_of.replace(day=1)
        next_year, next_month = shift_months(as_of.year, as_of.month, 1)
        month_end = date(next_year, next_month, 1)

        with self.emitter.batch() as batch:
            with self.store.transaction() as session:
                account = get_for_update(session, TrustAccount, account_id, "TrustAccount")
                already = session.execute(
                    select(TrustTransaction.trust_transaction_id).where(
                        TrustTransaction.trust_account_id == account_id,
                        TrustTransaction.transaction_type == "interest",
                        TrustTransaction.transaction_date >= month_start,
                        TrustTransaction.transaction_date < month_end,
                    )
                ).first()
                if already is not None:
                    return "already_posted"

                lines = session.execute(
                    select(TrustTransaction).where(
                        TrustTransaction.trust_account_id == account_id,
                        TrustTransaction.transaction_date <= as_of,
                    )
                ).scalars().all()
                opening = sum(
                    (t.signed_amount for t in lines if t.transaction_date < month_start), ZERO
                )
                movements = [
                    (t.transaction_date, t.signed_amount)
                    for t in lines
                    if t.transaction_date >= month_start
                ]
                adb = average_daily_balance(opening, movements, month_start, as_of)
                rate = Decimal(account.interest_rate or 0)
                interest = (adb * rate / MONTHS_PER_YEAR / HUNDRED).quantize(
                    CENT, rounding=ROUND_HALF_UP
                )
                if interest <= ZERO:
                    return "no_interest"

                self._append(
                    session,
                    batch,
                    account,
                    "interest",
                    interest,
                    as_of,
                    description=f"Interest for {as_of:%Y-%m}",
                )

        logger.info("Posted interest %s to trust account %s", interest, account_id)
        return interest

    # -------------------------------------------------------------------------
    # Verification and reconciliation
    # -------------------------------------------------------------------------

    def check_balance(self, account_id: UUID) -> BalanceCheck:
        """Recompute the balance and verify every snapshot in the chain."""
        with self.store.transaction() as session:
            account = session.get(TrustAccount, account_id)
            if account is None:
                raise NotFoundError("TrustAccount", account_id)
            lines = session.execute(
                select(TrustTransaction)
                .where(TrustTransaction.trust_account_id == account_id)
                .order_by(TrustTransaction.sequence)
            ).scalars().all()

            problems: list[str] = []
            running = ZERO
            for expected_sequence, txn in enumerate(lines, start=1):
                if txn.sequence != expected_sequence:
                    problems.append(
                        f"sequence gap: expected {expected_sequence}, found {txn.sequence}"
                    )
                running += txn.signed_amount
                if txn.balance_after != running:
                    problems.append(
                        f"line {txn.sequence} balance_after {txn.balance_after} "
                        f"!= running balance {running}"
                    )

            return BalanceCheck(
                account_id=account_id,
                cached_balance=account.balance,
                computed_balance=running,
                transaction_count=len(lines),
                problems=problems,
            )

    def reconcile(self, account_id: UUID) -> BalanceCheck:
        """Verify the account, raising IntegrityError on any mismatch.

        Reports only; nothing is corrected.
        """
        check = self.check_balance(account_id)
        if not check.is_consistent:
            logger.warning(
                "Trust account %s failed reconciliation: cached %s, computed %s, %d problem(s)",
                account_id,
                check.cached_balance,
                check.computed_balance,
                len(check.problems),
            )
            raise IntegrityError(
                account_id, check.cached_balance, check.computed_balance, check.problems
            )
        logger.info("Trust account %s reconciled at %s", account_id, check.computed_balance)
        return check

    def mark_reconciled(
        self,
        account_id: UUID,
        transaction_ids: list[UUID],
        reconciled_date: date,
    ) -> int:
        """Flag lines as matched to a bank statement. Returns the count flagged."""
        if not transaction_ids:
            return 0
        with self.store.transaction() as session:
            get_for_update(session, TrustAccount, account_id, "TrustAccount")
            result = session.execute(
                update(TrustTransaction)
                .where(
                    TrustTransaction.trust_account_id == account_id,
                    TrustTransaction.trust_transaction_id.in_(transaction_ids),
                    TrustTransaction.is_reconciled.is_(False),
                )
                .values(is_reconciled=True, reconciled_date=reconciled_date)
                .execution_options(synchronize_session=False)
            )
            count = result.rowcount

        logger.info(
            "Marked %d of %d trust transaction(s) reconciled on account %s",
            count,
            len(transaction_ids),
            account_id,
        )
        return count

    def get_transactions(
        self,
        account_id: UUID,
        start: date | None = None,
        end: date | None = None,
    ) -> list[TrustTransaction]:
        conditions: list[Any] = [TrustTransaction.trust_account_id == account_id]
        if start is not None:
            conditions.append(TrustTransaction.transaction_date >= start)
        if end is not None:
            conditions.append(TrustTransaction.transaction_date <= end)

        with self.store.transaction() as session:
            if session.get(TrustAccount, account_id) is None:
                raise NotFoundError("TrustAccount", account_id)
            return list(
                session.execute(
                    select(TrustTransaction)
                    .where(*conditions)
                    .order_by(TrustTransaction.sequence)
                ).scalars()
            )
