"""Banking agent: bank accounts, balances, transactions and statement reconciliation."""

from datetime import date as date_type
from enum import Enum
from typing import Any, Dict, List, Optional

from ..attachments import upload_tool
from ..errors import ValidationError
from ..reconciliation import StatementLine, reconcile_statement, to_major_units
from ..tools import (
    ToolKind, ToolSpec, Toolset, array, number, obj, params, search_tool, string, success,
)
from .common import AgentContext, bank_accounts_tool, find_bank_matches_tool

BANK_ACCOUNT_TYPES = ("NORMAL", "TAX_DEDUCTION", "FOREIGN", "CREDIT_CARD")


class BankingOp(str, Enum):
    GET_BANK_ACCOUNTS = "get_bank_accounts"
    GET_BANK_BALANCES = "get_bank_balances"
    CREATE_BANK_ACCOUNT = "create_bank_account"
    SEARCH_TRANSACTIONS = "search_transactions"
    FIND_BANK_MATCHES = "find_bank_matches"
    RECONCILE_BANK_STATEMENT = "reconcile_bank_statement"
    UPLOAD_TO_JOURNAL_ENTRY = "upload_attachment_to_journal_entry"


def _summarize_transaction(transaction: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "transactionId": transaction.get("transactionId"),
        "date": transaction.get("date"),
        "description": transaction.get("description"),
        "type": transaction.get("type"),
        "entries": transaction.get("entries"),
    }


def build_toolset(ctx: AgentContext) -> Toolset:
    client = ctx.client

    async def get_bank_balances(date: Optional[str] = None) -> Dict[str, Any]:
        on_date = date or date_type.today().isoformat()
        balances = await client.get("/bankBalances", date=on_date)
        accounts = {a.get("bankAccountId"): a for a in await client.list_bank_accounts(active_only=False)}
        result = []
        for balance in balances if isinstance(balances, list) else []:
            account = accounts.get(balance.get("bankAccountId")) or {}
            amount = balance.get("balance") or 0
            result.append({
                "bankAccountId": balance.get("bankAccountId"),
                "name": account.get("name", "Unknown account"),
                "accountCode": balance.get("bankAccountCode"),
                "balance": amount,
                "balanceMajor": to_major_units(amount),
            })
        total = sum(b["balanceMajor"] for b in result)
        return success(date=on_date, balances=result, totalBalance=total,
                       summary=f"Total bank balance: {total:,.2f}")

    async def create_bank_account(name: str, bankAccountNumber: str, type: str = "NORMAL",
                                  bic: Optional[str] = None, iban: Optional[str] = None) -> Dict[str, Any]:
        account_type = type.upper()
        if account_type not in BANK_ACCOUNT_TYPES:
            raise ValidationError(f"Invalid bank account type '{type}'. Valid types: {', '.join(BANK_ACCOUNT_TYPES)}")
        account = await client.post("/bankAccounts", {
            "name": name,
            "bankAccountNumber": bankAccountNumber,
            "type": account_type,
            "bic": bic,
            "iban": iban,
        })
        return success(
            f"Bank account created: {name}",
            operation_complete=True,
            bankAccount={
                "bankAccountId": account.get("bankAccountId"),
                "name": account.get("name"),
                "accountCode": account.get("accountCode"),
                "bankAccountNumber": account.get("bankAccountNumber"),
            },
        )

    async def reconcile_bank_statement(accountCode: str, periodFrom: str, periodTo: str,
                                       transactions: List[Dict[str, Any]]) -> Dict[str, Any]:
        if not transactions:
            raise ValidationError("No statement lines given")
        lines = [StatementLine.from_dict(t) for t in transactions]
        report = await reconcile_statement(ctx.client, accountCode, periodFrom, periodTo, lines, ctx.settings)
        return report.to_dict()

    statement_line = obj(
        {
            "date": string("Transaction date (YYYY-MM-DD)"),
            "amount": number("Amount in major units; negative for money out"),
            "description": string("Text from the statement"),
        },
        required=["date", "amount"],
    )

    specs = [
        bank_accounts_tool(ctx, BankingOp.GET_BANK_ACCOUNTS.value),
        ToolSpec(
            BankingOp.GET_BANK_BALANCES.value,
            "Get the balance of every bank account.",
            params({"date": string("Balance date (YYYY-MM-DD), default today")}),
            get_bank_balances,
        ),
        ToolSpec(
            BankingOp.CREATE_BANK_ACCOUNT.value,
            "Create a bank account.",
            params(
                {
                    "name": string("Account name"),
                    "bankAccountNumber": string("Bank account number (11 digits)"),
                    "type": string("Account type", enum=list(BANK_ACCOUNT_TYPES)),
                    "bic": string("BIC/SWIFT code"),
                    "iban": string("IBAN"),
                },
                required=["name", "bankAccountNumber"],
            ),
            create_bank_account,
            kind=ToolKind.CREATE,
        ),
        search_tool(
            client, BankingOp.SEARCH_TRANSACTIONS.value, "Search booked transactions by creation date.",
            "/transactions",
            {
                "createdDateGe": string("Created on or after (YYYY-MM-DD)"),
                "createdDateLe": string("Created on or before (YYYY-MM-DD)"),
            },
            summarize=_summarize_transaction,
            default_page_size=50,
        ),
        find_bank_matches_tool(ctx, BankingOp.FIND_BANK_MATCHES.value),
        ToolSpec(
            BankingOp.RECONCILE_BANK_STATEMENT.value,
            "Match bank statement lines against what is booked on a bank account and report "
            "which lines still need booking.",
            params(
                {
                    "accountCode": string("Bank account code, for example 1920:10001"),
                    "periodFrom": string("Statement period start (YYYY-MM-DD)"),
                    "periodTo": string("Statement period end (YYYY-MM-DD)"),
                    "transactions": array(statement_line, "Statement lines"),
                },
                required=["accountCode", "periodFrom", "periodTo", "transactions"],
            ),
            reconcile_bank_statement,
        ),
        upload_tool(client, ctx.pending_files, BankingOp.UPLOAD_TO_JOURNAL_ENTRY.value,
                    "journal_entry", "journalEntryId"),
    ]
    return Toolset(specs, BankingOp)
