"""
Bank/ledger reconciliation.

Two modes:
- search_bank_matches: find booked bank postings near one amount/date,
  returning every candidate for the user to choose from
- reconcile_statement: match a list of bank statement lines against the
  postings booked on one bank account, each posting used at most once

Ledger amounts are integer minor units. Statement amounts are major units
and are converted before any comparison, so tolerances are always checked
on integers.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .errors import ValidationError
from .ledger_client import LedgerClient

logger = logging.getLogger(__name__)

BANK_ACCOUNT_PREFIX = "19"


def to_minor_units(amount: float) -> int:
    """Major to minor units, multiply then round half up."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_major_units(minor: int) -> float:
    return minor / 100


def parse_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as e:
        raise ValidationError(f"Invalid date '{value}', expected YYYY-MM-DD") from e


@dataclass(frozen=True)
class MatchSettings:
    """Tolerances and retrieval limits for one reconciliation call."""
    amount_tolerance: int = 500  # minor units
    day_window: int = 5
    search_days: int = 5
    page_size: int = 100
    max_pages: int = 10


@dataclass
class BookedPosting:
    """One posting line on a ledger account, read for a single run."""
    journal_entry_id: int
    transaction_id: Optional[int]
    date: date
    amount_minor: int
    description: str
    ledger_account: str
    matched: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "journalEntryId": self.journal_entry_id,
            "transactionId": self.transaction_id,
            "date": self.date.isoformat(),
            "amount": self.amount_minor,
            "amountMajor": to_major_units(self.amount_minor),
            "description": self.description,
            "ledgerAccount": self.ledger_account,
        }


@dataclass(frozen=True)
class StatementLine:
    """One line from an external bank statement; negative amount = outflow."""
    date: date
    amount: float
    description: str = ""

    @property
    def amount_minor(self) -> int:
        return to_minor_units(self.amount)

    @property
    def direction(self) -> str:
        return "out" if self.amount < 0 else "in"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StatementLine":
        try:
            amount = float(data["amount"])
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Statement line has no valid amount: {data}") from e
        return cls(
            date=parse_date(data.get("date")),
            amount=amount,
            description=str(data.get("description", "")),
        )


@dataclass
class MatchResult:
    statement_index: int
    line: StatementLine
    posting: Optional[BookedPosting] = None

    @property
    def matched(self) -> bool:
        return self.posting is not None


@dataclass
class ReconciliationReport:
    account_code: str
    period_from: date
    period_to: date
    results: List[MatchResult] = field(default_factory=list)
    booked_count: int = 0

    @property
    def matched(self) -> List[MatchResult]:
        return [r for r in self.results if r.matched]

    @property
    def unmatched(self) -> List[MatchResult]:
        return [r for r in self.results if not r.matched]

    def summary(self) -> str:
        lines = [
            f"Period: {self.period_from.isoformat()} to {self.period_to.isoformat()}",
            f"Bank account: {self.account_code}",
            f"Statement lines: {len(self.results)}",
            f"Already booked (matched): {len(self.matched)}",
            f"Needs booking: {len(self.unmatched)}",
        ]
        if self.unmatched:
            lines.append("")
            lines.append("Lines that need booking:")
            for r in self.unmatched:
                lines.append(
                    f"  {r.statement_index + 1}. {r.line.date.isoformat()} - {r.line.description} - "
                    f"{abs(r.line.amount):.2f} ({r.line.direction})"
                )
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "totalTransactions": len(self.results),
            "matchedCount": len(self.matched),
            "unmatchedCount": len(self.unmatched),
            "matched": [
                {
                    "index": r.statement_index + 1,
                    "statementDate": r.line.date.isoformat(),
                    "statementAmount": r.line.amount,
                    "statementDescription": r.line.description,
                    "journalEntryId": r.posting.journal_entry_id,
                    "journalDate": r.posting.date.isoformat(),
                    "journalAmount": to_major_units(r.posting.amount_minor),
                    "journalDescription": r.posting.description,
                }
                for r in self.matched
            ],
            "unmatched": [
                {
                    "index": r.statement_index + 1,
                    "date": r.line.date.isoformat(),
                    "amount": r.line.amount,
                    "description": r.line.description,
                    "direction": r.line.direction,
                }
                for r in self.unmatched
            ],
            "bookedEntriesCount": self.booked_count,
            "summary": self.summary(),
        }


# ============================================================================
# Posting extraction
# ============================================================================

def line_account(line: Dict[str, Any]) -> str:
    """Account code of a journal entry line (``account`` on reads)."""
    return line.get("account") or line.get("debitAccount") or line.get("creditAccount") or ""


def is_bank_account(account: str) -> bool:
    return account.startswith(BANK_ACCOUNT_PREFIX)


def account_matcher(account_code: str) -> Callable[[str], bool]:
    """Match the exact code or its base account (``1920`` for ``1920:10001``)."""
    base = account_code.split(":")[0]
    return lambda account: account == account_code or account.startswith(base)


def extract_postings(
    entries: Iterable[Dict[str, Any]],
    account_filter: Callable[[str], bool],
    default_date: date,
) -> List[BookedPosting]:
    """Flatten journal entries into postings on accounts accepted by the filter."""
    postings = []
    for entry in entries:
        if not entry.get("lines") or not entry.get("journalEntryId"):
            continue
        entry_date = parse_date(entry["date"]) if entry.get("date") else default_date
        for line in entry["lines"]:
            account = line_account(line)
            if not account or not account_filter(account):
                continue
            postings.append(BookedPosting(
                journal_entry_id=entry["journalEntryId"],
                transaction_id=entry.get("transactionId"),
                date=entry_date,
                amount_minor=int(line.get("amount") or 0),
                description=entry.get("description") or "No description",
                ledger_account=account,
            ))
    return postings


async def fetch_journal_entries(
    client: LedgerClient,
    date_from: date,
    date_to: date,
    settings: MatchSettings,
) -> List[Dict[str, Any]]:
    """Page through journal entries, stopping at a short page or the page cap."""
    entries: List[Dict[str, Any]] = []
    for page in range(settings.max_pages):
        batch = await client.list_journal_entries(
            date_from.isoformat(), date_to.isoformat(), page=page, page_size=settings.page_size,
        )
        entries.extend(batch)
        if len(batch) < settings.page_size:
            break
    else:
        logger.warning(f"Journal entry retrieval hit the page cap ({settings.max_pages} pages)")
    return entries


# ============================================================================
# Matching
# ============================================================================

def find_candidates(
    postings: Sequence[BookedPosting],
    amount_minor: int,
    tolerance: int,
) -> List[BookedPosting]:
    """Every posting whose absolute amount is within tolerance of the target."""
    target = abs(amount_minor)
    return [p for p in postings if abs(abs(p.amount_minor) - target) <= tolerance]


def match_statement_lines(
    lines: Sequence[StatementLine],
    postings: Sequence[BookedPosting],
    tolerance: int,
    day_window: int,
) -> List[MatchResult]:
    """
    Match each line to at most one unmatched posting.

    Candidates must be within the amount tolerance and the day window;
    the smallest date difference wins and ties keep retrieval order. A
    selected posting is marked matched immediately.
    """
    results = []
    for index, line in enumerate(lines):
        target = abs(line.amount_minor)
        best: Optional[BookedPosting] = None
        best_diff = None

        for posting in postings:
            if posting.matched:
                continue
            if abs(abs(posting.amount_minor) - target) > tolerance:
                continue
            day_diff = abs((line.date - posting.date).days)
            if day_diff > day_window:
                continue
            if best_diff is None or day_diff < best_diff:
                best, best_diff = posting, day_diff

        if best is not None:
            best.matched = True
        results.append(MatchResult(statement_index=index, line=line, posting=best))
    return results


# ============================================================================
# Service operations
# ============================================================================

async def search_bank_matches(
    client: LedgerClient,
    amount: float,
    on_date: Any,
    settings: MatchSettings,
    days_range: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Find booked bank postings that could be the payment of one expense.

    Returns every candidate unranked; the user picks.
    """
    target_date = parse_date(on_date)
    days = settings.search_days if days_range is None else days_range
    date_from = target_date - timedelta(days=days)
    date_to = target_date + timedelta(days=days)

    bank_accounts = await client.list_bank_accounts(active_only=True)
    if not bank_accounts:
        return {"success": False, "error": "No active bank accounts found."}

    entries = await fetch_journal_entries(client, date_from, date_to, settings)
    postings = extract_postings(entries, is_bank_account, target_date)
    amount_minor = to_minor_units(amount)
    matches = find_candidates(postings, amount_minor, settings.amount_tolerance)

    logger.info(f"Bank match search: amount={amount_minor} date={target_date} "
                f"postings={len(postings)} matches={len(matches)}")

    if not matches:
        hint = "No matching bank postings. Ask the user whether the expense is paid."
    elif len(matches) == 1:
        hint = "One match found. Ask the user to confirm it is the same purchase."
    else:
        hint = f"{len(matches)} possible matches. Show the list and let the user choose."

    return {
        "success": True,
        "matchCount": len(matches),
        "matches": [p.to_dict() for p in matches],
        "searchCriteria": {
            "amount": amount,
            "amountMinor": amount_minor,
            "targetDate": target_date.isoformat(),
            "dateFrom": date_from.isoformat(),
            "dateTo": date_to.isoformat(),
            "tolerance": settings.amount_tolerance,
        },
        "bankAccounts": [
            {
                "id": a.get("bankAccountId"),
                "name": a.get("name"),
                "accountCode": a.get("accountCode"),
                "bankAccountNumber": a.get("bankAccountNumber"),
            }
            for a in bank_accounts
        ],
        "hint": hint,
    }


async def reconcile_statement(
    client: LedgerClient,
    account_code: str,
    period_from: Any,
    period_to: Any,
    lines: Sequence[StatementLine],
    settings: MatchSettings,
) -> ReconciliationReport:
    """
    Match statement lines against postings on one bank account.

    Any retrieval failure propagates; no partial report is produced.
    """
    account_code = (account_code or "").strip()
    if not is_bank_account(account_code.split(":")[0]):
        raise ValidationError(f"'{account_code}' is not a bank account code (expected 19xx or 19xx:XXXXX)")

    start = parse_date(period_from)
    end = parse_date(period_to)
    if end < start:
        raise ValidationError(f"Period end {end} is before period start {start}")

    entries = await fetch_journal_entries(client, start, end, settings)
    postings = extract_postings(entries, account_matcher(account_code), start)
    results = match_statement_lines(lines, postings, settings.amount_tolerance, settings.day_window)

    report = ReconciliationReport(
        account_code=account_code,
        period_from=start,
        period_to=end,
        results=results,
        booked_count=len(postings),
    )
    logger.info(f"Reconciled {len(lines)} lines on {account_code}: "
                f"{len(report.matched)} matched, {len(report.unmatched)} unmatched")
    return report
