"""Ledger agent: chart of accounts, balances, journal entries and projects."""

import re
from enum import Enum
from typing import Any, Dict, List, Optional

from ..accounts import account_number
from ..errors import ValidationError
from ..reconciliation import to_major_units
from ..step_trace import CreationRule
from ..tools import (
    ToolKind, ToolSpec, Toolset, array, boolean, integer, obj, params,
    search_tool, string, success,
)
from .common import AgentContext

_BANK_BASE_CODE = re.compile(r"^19\d{2}$")

JOURNAL_ENTRY_RULE = CreationRule("journal_entry", ("journalEntry", "journalEntryId"))


class LedgerOp(str, Enum):
    GET_ACCOUNTS = "get_accounts"
    SUGGEST_ACCOUNTS = "suggest_accounts"
    GET_ACCOUNT_BALANCES = "get_account_balances"
    SEARCH_JOURNAL_ENTRIES = "search_journal_entries"
    CREATE_JOURNAL_ENTRY = "create_journal_entry"
    SEARCH_PROJECTS = "search_projects"
    CREATE_PROJECT = "create_project"


def validate_journal_lines(lines: List[Dict[str, Any]]) -> None:
    """
    Check journal entry lines before anything is posted.

    Each line needs a debit or credit account and a positive amount, bank
    accounts must carry their sub-ledger suffix, and the entry must balance.
    Raises ValidationError naming the first problem found.
    """
    if not lines:
        raise ValidationError("A journal entry needs at least one line")

    total_debit = 0
    total_credit = 0
    for position, line in enumerate(lines, start=1):
        debit = line.get("debitAccount")
        credit = line.get("creditAccount")
        amount = line.get("amount") or 0
        if not debit and not credit:
            raise ValidationError(f"Line {position}: needs a debitAccount and/or a creditAccount")
        if amount <= 0:
            raise ValidationError(f"Line {position}: amount must be positive ({amount} minor units)")
        for account in (debit, credit):
            if account and _BANK_BASE_CODE.match(str(account)):
                raise ValidationError(
                    f"Line {position}: bank account '{account}' is missing its sub-ledger. "
                    f"Use the form '{account}:XXXXX'."
                )
        if debit:
            total_debit += amount
        if credit:
            total_credit += amount

    if total_debit != total_credit:
        raise ValidationError(
            f"Journal entry does not balance. Debit: {total_debit}, credit: {total_credit}, "
            f"difference: {abs(total_debit - total_credit)} minor units."
        )


def _entry_ids(response: Any) -> Dict[str, Any]:
    """The created entry's ids, whether the service returned the entry or the wrapper."""
    if isinstance(response, list):
        response = response[0] if response else {}
    if not isinstance(response, dict):
        return {}
    nested = response.get("journalEntries")
    if isinstance(nested, list) and nested:
        response = nested[0]
    return {
        "journalEntryId": response.get("journalEntryId"),
        "transactionId": response.get("transactionId"),
        "date": response.get("date"),
        "description": response.get("description"),
    }


def _in_range(code: Optional[int], low: Optional[int], high: Optional[int]) -> bool:
    if code is None:
        return False
    return (low is None or code >= low) and (high is None or code <= high)


def build_toolset(ctx: AgentContext) -> Toolset:
    client = ctx.client

    async def get_accounts(fromAccount: Optional[str] = None,
                           toAccount: Optional[str] = None) -> Dict[str, Any]:
        accounts = await ctx.accounts.get_accounts()
        low = account_number(fromAccount) if fromAccount else None
        high = account_number(toAccount) if toAccount else None
        if low is not None or high is not None:
            accounts = [a for a in accounts if _in_range(account_number(a.get("code", "")), low, high)]
        return success(
            count=len(accounts),
            accounts=[{"code": a.get("code"), "name": a.get("name")} for a in accounts],
        )

    async def suggest_accounts(description: str, kind: str = "expense",
                               exclude: Optional[List[str]] = None) -> Dict[str, Any]:
        result = await ctx.accounts.suggest(description, kind, exclude or [])
        return success(**result)

    async def get_account_balances(date: str, fromAccount: Optional[str] = None,
                                   toAccount: Optional[str] = None) -> Dict[str, Any]:
        balances = await client.get(
            "/accountBalances", date=date, fromAccount=fromAccount, toAccount=toAccount, pageSize=100,
        )
        balances = balances if isinstance(balances, list) else []
        return success(
            date=date,
            count=len(balances),
            balances=[
                {
                    "code": b.get("code"),
                    "name": b.get("name"),
                    "balance": b.get("balance"),
                    "balanceMajor": to_major_units(b.get("balance") or 0),
                }
                for b in balances
            ],
        )

    async def create_journal_entry(date: str, description: str,
                                   lines: List[Dict[str, Any]]) -> Dict[str, Any]:
        lines = [line for line in lines if isinstance(line, dict)] if isinstance(lines, list) else []
        validate_journal_lines(lines)
        response = await client.post("/generalJournalEntries", {
            "journalEntries": [{
                "date": date,
                "description": description[:160],
                "lines": [
                    {k: v for k, v in {
                        "amount": line.get("amount"),
                        "debitAccount": line.get("debitAccount"),
                        "creditAccount": line.get("creditAccount"),
                        "debitVatCode": line.get("debitVatCode"),
                        "creditVatCode": line.get("creditVatCode"),
                    }.items() if v is not None}
                    for line in lines
                ],
            }],
        })
        return success("Journal entry created", operation_complete=True, journalEntry=_entry_ids(response))

    async def create_project(name: str, number: str, startDate: str,
                             description: Optional[str] = None, endDate: Optional[str] = None,
                             contactId: Optional[int] = None) -> Dict[str, Any]:
        project = await client.post("/projects", {
            "name": name,
            "number": number,
            "startDate": startDate,
            "description": description,
            "endDate": endDate,
            "contactId": contactId,
        })
        return success(
            f"Project created: {name}",
            operation_complete=True,
            project={
                "projectId": project.get("projectId"),
                "name": project.get("name"),
                "number": project.get("number"),
            },
        )

    journal_line = obj(
        {
            "amount": integer("Amount in minor units, always positive (50000 = 500.00)"),
            "debitAccount": string("Debit account, for example 5000 or 1920:10001"),
            "creditAccount": string("Credit account, for example 2400 or 1920:10001"),
            "debitVatCode": integer("VAT code for the debit side"),
            "creditVatCode": integer("VAT code for the credit side"),
        },
        required=["amount"],
    )

    specs = [
        ToolSpec(
            LedgerOp.GET_ACCOUNTS.value,
            "List the chart of accounts, optionally within a code range.",
            params({
                "fromAccount": string("Lowest account code, for example 3000"),
                "toAccount": string("Highest account code, for example 3999"),
            }),
            get_accounts,
        ),
        ToolSpec(
            LedgerOp.SUGGEST_ACCOUNTS.value,
            "Suggest the best accounts from the company's chart for an expense or income.",
            params(
                {
                    "description": string("What the expense or income is"),
                    "kind": string("Account kind", enum=["expense", "income"]),
                    "exclude": array(string("Account code"), "Codes already rejected by the user"),
                },
                required=["description"],
            ),
            suggest_accounts,
        ),
        ToolSpec(
            LedgerOp.GET_ACCOUNT_BALANCES.value,
            "Get account balances on a date.",
            params(
                {
                    "date": string("Balance date (YYYY-MM-DD)"),
                    "fromAccount": string("Lowest account code"),
                    "toAccount": string("Highest account code"),
                },
                required=["date"],
            ),
            get_account_balances,
        ),
        search_tool(
            client, LedgerOp.SEARCH_JOURNAL_ENTRIES.value, "Search journal entries by date.",
            "/journalEntries",
            {
                "dateGe": string("On or after (YYYY-MM-DD)"),
                "dateLe": string("On or before (YYYY-MM-DD)"),
            },
        ),
        ToolSpec(
            LedgerOp.CREATE_JOURNAL_ENTRY.value,
            "Create a manual journal entry. Total debit must equal total credit, amounts are "
            "positive and bank accounts need the sub-ledger form 1920:10001.",
            params(
                {
                    "date": string("Entry date (YYYY-MM-DD)"),
                    "description": string("Entry description (max 160 characters)"),
                    "lines": array(journal_line, "Entry lines"),
                },
                required=["date", "description", "lines"],
            ),
            create_journal_entry,
            kind=ToolKind.CREATE,
            creates=JOURNAL_ENTRY_RULE,
        ),
        search_tool(
            client, LedgerOp.SEARCH_PROJECTS.value, "List projects.", "/projects",
            {"completed": boolean("Only completed projects")},
            default_page_size=50,
        ),
        ToolSpec(
            LedgerOp.CREATE_PROJECT.value,
            "Create a project.",
            params(
                {
                    "name": string("Project name"),
                    "number": string("Project number"),
                    "startDate": string("Start date (YYYY-MM-DD)"),
                    "description": string("Description"),
                    "endDate": string("End date (YYYY-MM-DD)"),
                    "contactId": integer("Customer contact id"),
                },
                required=["name", "number", "startDate"],
            ),
            create_project,
            kind=ToolKind.CREATE,
        ),
    ]
    return Toolset(specs, LedgerOp)
