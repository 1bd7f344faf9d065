"""Purchases agent: expenses, supplier invoices, receipts and their payments."""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from ..attachments import upload_tool
from ..errors import LedgerAPIError
from ..reconciliation import to_major_units, to_minor_units
from ..step_trace import DEFAULT_CREATION_RULES
from ..tools import (
    ToolKind, ToolSpec, Toolset, array, boolean, failure, get_tool, integer,
    number, obj, params, search_tool, string, success,
)
from .common import (
    AgentContext, bank_accounts_tool, find_bank_matches_tool, require_lines,
    resolve_bank_account_code, search_contacts_tool, split_gross,
)

logger = logging.getLogger(__name__)

# Gross amounts closer than this (minor units) count as the same purchase
DUPLICATE_AMOUNT_MARGIN = 100


class PurchasesOp(str, Enum):
    SUGGEST_ACCOUNTS = "suggest_accounts"
    SEARCH_PURCHASES = "search_purchases"
    GET_PURCHASE = "get_purchase"
    CREATE_PURCHASE = "create_purchase"
    DELETE_PURCHASE = "delete_purchase"
    ADD_PURCHASE_PAYMENT = "add_purchase_payment"
    GET_BANK_ACCOUNTS = "get_bank_accounts"
    FIND_BANK_MATCHES = "find_bank_matches"
    SEARCH_CONTACTS = "search_contacts"
    UPLOAD_TO_PURCHASE = "upload_attachment_to_purchase"


def purchase_gross(purchase: Dict[str, Any]) -> int:
    return sum((line.get("netPrice") or 0) + (line.get("vat") or 0) for line in purchase.get("lines") or [])


def _supplier_id(purchase: Dict[str, Any]) -> Optional[int]:
    return purchase.get("supplierId") or (purchase.get("supplier") or {}).get("contactId")


def _first_description(lines: List[Dict[str, Any]]) -> str:
    return ((lines[0].get("description") if lines else "") or "").lower()


def find_duplicate(
    existing: List[Dict[str, Any]],
    gross: int,
    description: str,
    supplier_id: Optional[int],
) -> Optional[Dict[str, Any]]:
    """
    First existing purchase that looks like the one about to be created.

    The gross amounts must be within DUPLICATE_AMOUNT_MARGIN, and either the
    first line descriptions overlap, the suppliers match, or neither side
    has a supplier (cash purchases).
    """
    description = description.lower()
    for purchase in existing:
        lines = purchase.get("lines") or []
        if not lines:
            continue
        if abs(purchase_gross(purchase) - gross) >= DUPLICATE_AMOUNT_MARGIN:
            continue
        existing_desc = _first_description(lines)
        desc_match = bool(description and existing_desc and
                          (description in existing_desc or existing_desc in description))
        existing_supplier = _supplier_id(purchase)
        supplier_match = bool(supplier_id and existing_supplier and supplier_id == existing_supplier)
        cash_match = not supplier_id and not existing_supplier
        if desc_match or supplier_match or cash_match:
            return purchase
    return None


def build_toolset(ctx: AgentContext) -> Toolset:
    client = ctx.client

    async def suggest_accounts(description: str, kind: str = "expense",
                               exclude: Optional[List[str]] = None) -> Dict[str, Any]:
        result = await ctx.accounts.suggest(description, kind, exclude or [])
        return success(**result)

    async def create_purchase(date: str, kind: str, paid: bool, lines: List[Dict[str, Any]],
                              currency: str = "NOK", supplierId: Optional[int] = None,
                              identifier: Optional[str] = None, dueDate: Optional[str] = None,
                              paymentAccount: Optional[str] = None, paymentDate: Optional[str] = None,
                              projectId: Optional[int] = None) -> Dict[str, Any]:
        purchase_lines = []
        for line in require_lines(lines):
            vat_type = line.get("vatType") or "HIGH"
            _, net, vat = split_gross(float(line["grossAmount"]), vat_type)
            purchase_lines.append({
                "description": line.get("description", ""),
                "vatType": vat_type,
                "netPrice": net,
                "vat": vat,
                "account": line.get("account"),
            })
        gross = sum(line["netPrice"] + line["vat"] for line in purchase_lines)

        try:
            existing = await client.get("/purchases", dateGe=date, dateLe=date, pageSize=100)
        except LedgerAPIError as e:
            logger.warning(f"Duplicate check failed, creating anyway: {e}")
            existing = []
        duplicate = find_duplicate(
            existing if isinstance(existing, list) else [],
            gross,
            purchase_lines[0]["description"],
            supplierId,
        )
        if duplicate is not None:
            logger.info(f"Duplicate purchase found: {duplicate.get('purchaseId')} ({gross} minor units on {date})")
            return {
                "success": False,
                "duplicateFound": True,
                "error": (
                    f"A similar purchase already exists (ID {duplicate.get('purchaseId')}). "
                    f"Do not create a new one; upload the file to the existing purchase if needed."
                ),
                "existingPurchase": {
                    "purchaseId": duplicate.get("purchaseId"),
                    "date": duplicate.get("date"),
                    "totalGross": to_major_units(purchase_gross(duplicate)),
                    "description": (duplicate.get("lines") or [{}])[0].get("description"),
                    "supplierName": (duplicate.get("supplier") or {}).get("name"),
                    "hasAttachments": bool(duplicate.get("attachments")),
                },
            }

        payment_account = await resolve_bank_account_code(client, paymentAccount)
        if kind == "cash_purchase" and not payment_account:
            bank_accounts = await client.list_bank_accounts(active_only=True)
            if not bank_accounts:
                return failure("No active bank accounts found. Create a bank account first.")
            if len(bank_accounts) > 1:
                return failure(
                    "Several bank accounts found. Ask the user which one paid for this purchase.",
                    requiresSelection=True,
                    options=[
                        {"accountCode": a.get("accountCode"), "name": a.get("name"),
                         "bankAccountNumber": a.get("bankAccountNumber")}
                        for a in bank_accounts
                    ],
                )
            payment_account = bank_accounts[0].get("accountCode")

        purchase = await client.post("/purchases", {
            "date": date,
            "kind": kind,
            "paid": paid,
            "currency": currency,
            "lines": purchase_lines,
            "supplierId": supplierId,
            "dueDate": dueDate,
            "paymentAccount": payment_account,
            "paymentDate": paymentDate or (date if paid and payment_account else None),
            "kid": identifier,
            "projectId": projectId,
        })
        return success(
            f"Purchase registered (ID: {purchase.get('purchaseId')})",
            operation_complete=True,
            purchase={
                "purchaseId": purchase.get("purchaseId"),
                "transactionId": purchase.get("transactionId"),
                "identifier": purchase.get("identifier"),
                "date": purchase.get("date"),
                "paid": purchase.get("paid"),
                "currency": purchase.get("currency"),
            },
            paymentAccount=payment_account,
        )

    async def delete_purchase(purchaseId: int, description: str) -> Dict[str, Any]:
        await client.patch(f"/purchases/{purchaseId}/delete", description=description)
        return success(f"Purchase {purchaseId} deleted", operation_complete=True)

    async def add_purchase_payment(purchaseId: int, date: str, amount: float,
                                   account: str = "1920") -> Dict[str, Any]:
        payment = await client.post(f"/purchases/{purchaseId}/payments", {
            "date": date,
            "amount": to_minor_units(amount),
            "account": await resolve_bank_account_code(client, account),
        })
        return success(f"Payment of {amount:.2f} registered on purchase {purchaseId}",
                       operation_complete=True, payment=payment)

    purchase_line = obj(
        {
            "description": string("What was bought"),
            "grossAmount": number("Amount INCLUDING VAT in major units, as the user says it"),
            "vatType": string("VAT type: HIGH (25%), MEDIUM (15%), LOW (12%), NONE, EXEMPT"),
            "account": string("Expense account, for example 6300 rent or 4000 goods"),
        },
        required=["description", "grossAmount", "vatType"],
    )

    specs = [
        ToolSpec(
            PurchasesOp.SUGGEST_ACCOUNTS.value,
            "Suggest the best accounts from the company's chart for an expense or income. "
            "Use before create_purchase.",
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
        search_tool(
            client, PurchasesOp.SEARCH_PURCHASES.value, "Search purchases by date.",
            "/purchases",
            {
                "dateGe": string("On or after (YYYY-MM-DD)"),
                "dateLe": string("On or before (YYYY-MM-DD)"),
            },
        ),
        get_tool(client, PurchasesOp.GET_PURCHASE.value, "Get one purchase with its lines.",
                 "/purchases/{id}", "purchaseId", "purchase"),
        ToolSpec(
            PurchasesOp.CREATE_PURCHASE.value,
            "Register a purchase or supplier invoice. Cash purchases: kind=cash_purchase, paid=true. "
            "Supplier invoices: kind=supplier, paid=false and dueDate. Without paymentAccount a cash "
            "purchase uses the only active bank account, or asks for a choice when there are several.",
            params(
                {
                    "date": string("Purchase date (YYYY-MM-DD)"),
                    "kind": string("Purchase kind", enum=["cash_purchase", "supplier"]),
                    "paid": boolean("Whether the purchase is paid"),
                    "currency": string("Currency (default NOK)"),
                    "lines": array(purchase_line, "Purchase lines"),
                    "supplierId": integer("Supplier contact id; omit when unknown"),
                    "identifier": string("Supplier's invoice number"),
                    "dueDate": string("Due date (YYYY-MM-DD), required for supplier invoices"),
                    "paymentAccount": string("Bank account that paid, for example 1920:10001"),
                    "paymentDate": string("Payment date (YYYY-MM-DD)"),
                    "projectId": integer("Project id"),
                },
                required=["date", "kind", "paid", "lines"],
            ),
            create_purchase,
            kind=ToolKind.CREATE,
            creates=DEFAULT_CREATION_RULES["create_purchase"],
        ),
        ToolSpec(
            PurchasesOp.DELETE_PURCHASE.value,
            "Delete a purchase.",
            params(
                {
                    "purchaseId": integer("Purchase id"),
                    "description": string("Reason for deleting"),
                },
                required=["purchaseId", "description"],
            ),
            delete_purchase,
            kind=ToolKind.UPDATE,
        ),
        ToolSpec(
            PurchasesOp.ADD_PURCHASE_PAYMENT.value,
            "Register a payment on a supplier invoice.",
            params(
                {
                    "purchaseId": integer("Purchase id"),
                    "date": string("Payment date (YYYY-MM-DD)"),
                    "amount": number("Amount in major units"),
                    "account": string("Bank account code (default 1920)"),
                },
                required=["purchaseId", "date", "amount"],
            ),
            add_purchase_payment,
            kind=ToolKind.UPDATE,
        ),
        bank_accounts_tool(ctx, PurchasesOp.GET_BANK_ACCOUNTS.value),
        find_bank_matches_tool(ctx, PurchasesOp.FIND_BANK_MATCHES.value),
        search_contacts_tool(ctx, PurchasesOp.SEARCH_CONTACTS.value),
        upload_tool(client, ctx.pending_files, PurchasesOp.UPLOAD_TO_PURCHASE.value, "purchase", "purchaseId"),
    ]
    return Toolset(specs, PurchasesOp)
