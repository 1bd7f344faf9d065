"""Shared pieces of the capability toolsets."""

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Tuple

from ..accounts import AccountDirectory
from ..errors import ValidationError
from ..ledger_client import LedgerClient
from ..models import PendingFile
from ..reconciliation import MatchSettings, search_bank_matches, to_minor_units
from ..tools import ToolSpec, boolean, integer, number, obj, params, string, success

logger = logging.getLogger(__name__)

VAT_RATES: Dict[str, float] = {
    "HIGH": 0.25,
    "MEDIUM": 0.15,
    "LOW": 0.12,
    "RAW_FISH": 0.1111,
    "NONE": 0.0,
    "EXEMPT": 0.0,
    "OUTSIDE": 0.0,
    "HIGH_DIRECT": 0.25,
    "HIGH_BASIS": 0.25,
    "MEDIUM_DIRECT": 0.15,
    "MEDIUM_BASIS": 0.15,
}


@dataclass(frozen=True)
class AgentContext:
    """Per-turn dependencies shared by the capability toolsets."""
    client: LedgerClient
    accounts: AccountDirectory
    settings: MatchSettings
    pending_files: Tuple[PendingFile, ...] = ()


def split_gross(gross_major: float, vat_type: str) -> Tuple[int, int, int]:
    """Gross amount in major units -> (gross, net, vat) in minor units."""
    gross = to_minor_units(gross_major)
    rate = VAT_RATES.get(vat_type, 0.0)
    net = round(gross / (1 + rate))
    return gross, net, gross - net


async def resolve_bank_account_code(client: LedgerClient, code: Optional[str]) -> Optional[str]:
    """Expand a base code like ``1920`` to the full ``1920:10001`` of an active bank account."""
    if not code or ":" in code:
        return code
    for account in await client.list_bank_accounts(active_only=True):
        full = account.get("accountCode") or ""
        if full.startswith(code + ":"):
            return full
    return code


def summarize_contact(contact: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "contactId": contact.get("contactId"),
        "name": contact.get("name"),
        "email": contact.get("email"),
        "organizationNumber": contact.get("organizationNumber"),
        "customer": contact.get("customer"),
        "supplier": contact.get("supplier"),
    }


def summarize_bank_account(account: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "bankAccountId": account.get("bankAccountId"),
        "name": account.get("name"),
        "accountCode": account.get("accountCode"),
        "bankAccountNumber": account.get("bankAccountNumber"),
        "type": account.get("type"),
        "inactive": account.get("inactive", False),
    }


def bank_accounts_tool(ctx: AgentContext, name: str) -> ToolSpec:
    async def handler(**kwargs) -> Dict[str, Any]:
        accounts = await ctx.client.list_bank_accounts(active_only=True)
        return success(count=len(accounts), bankAccounts=[summarize_bank_account(a) for a in accounts])

    return ToolSpec(name, "List the company's active bank accounts.", params({}), handler)


def find_bank_matches_tool(ctx: AgentContext, name: str) -> ToolSpec:
    """Single-target search for booked bank postings near an amount and date."""

    async def handler(amount: float, date: str, days_range: Optional[int] = None,
                      tolerance: Optional[float] = None) -> Dict[str, Any]:
        settings = ctx.settings
        if tolerance is not None:
            settings = replace(settings, amount_tolerance=to_minor_units(tolerance))
        return await search_bank_matches(ctx.client, amount, date, settings, days_range=days_range)

    return ToolSpec(
        name,
        "Find booked bank postings that may be the payment of an expense: same amount "
        "(within a small tolerance) within a few days of the date. Returns every candidate "
        "for the user to choose from.",
        params(
            {
                "amount": number("Amount in major units (for example 450 for 450 kr)"),
                "date": string("Expense date (YYYY-MM-DD)"),
                "days_range": integer("Days before and after the date to search"),
                "tolerance": number("Allowed amount difference in major units"),
            },
            required=["amount", "date"],
        ),
        handler,
    )


def search_contacts_tool(ctx: AgentContext, tool_name: str) -> ToolSpec:
    async def handler(name: Optional[str] = None, customer: Optional[bool] = None,
                      supplier: Optional[bool] = None, pageSize: int = 25) -> Dict[str, Any]:
        data = await ctx.client.get(
            "/contacts", name=name, customer=_flag(customer), supplier=_flag(supplier), pageSize=pageSize,
        )
        contacts = [summarize_contact(c) for c in (data if isinstance(data, list) else [])]
        return success(count=len(contacts), contacts=contacts)

    return ToolSpec(
        tool_name,
        "Search customers and suppliers by name.",
        params({
            "name": string("Name or part of the name"),
            "customer": boolean("Only customers"),
            "supplier": boolean("Only suppliers"),
            "pageSize": integer("Max results (default 25)"),
        }),
        handler,
    )


def _flag(value: Optional[bool]) -> Optional[str]:
    return None if value is None else str(value).lower()


def sale_line_schema() -> Dict[str, Any]:
    return obj(
        {
            "description": string("What was sold"),
            "grossAmount": number("Amount INCLUDING VAT in major units, as the user says it"),
            "vatType": string("VAT type (HIGH, MEDIUM, LOW, NONE, EXEMPT, OUTSIDE)"),
            "incomeAccount": string("Income account (default 3000)"),
        },
        required=["description", "grossAmount"],
    )


def require_lines(lines: Any) -> List[Dict[str, Any]]:
    if not isinstance(lines, list) or not lines:
        raise ValidationError("At least one line is required")
    return [line for line in lines if isinstance(line, dict)]
