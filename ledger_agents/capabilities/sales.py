"""Sales agent: invoices, credit notes, other sales and their payments."""

from enum import Enum
from typing import Any, Dict, List, Optional

from ..attachments import upload_tool
from ..reconciliation import to_minor_units
from ..step_trace import DEFAULT_CREATION_RULES
from ..tools import (
    ToolKind, ToolSpec, Toolset, array, boolean, get_tool, integer, number,
    obj, params, search_tool, string, success,
)
from .common import AgentContext, require_lines, resolve_bank_account_code, sale_line_schema, split_gross


class SalesOp(str, Enum):
    SEARCH_INVOICES = "search_invoices"
    GET_INVOICE = "get_invoice"
    CREATE_INVOICE = "create_invoice"
    SEND_INVOICE = "send_invoice"
    SEARCH_SALES = "search_sales"
    CREATE_SALE = "create_sale"
    ADD_SALE_PAYMENT = "add_sale_payment"
    CREATE_FULL_CREDIT_NOTE = "create_full_credit_note"
    UPLOAD_TO_INVOICE = "upload_attachment_to_invoice"
    UPLOAD_TO_SALE = "upload_attachment_to_sale"


def _summarize_invoice(invoice: Dict[str, Any]) -> Dict[str, Any]:
    customer = invoice.get("customer") or {}
    return {
        "invoiceId": invoice.get("invoiceId"),
        "invoiceNumber": invoice.get("invoiceNumber"),
        "issueDate": invoice.get("issueDate"),
        "dueDate": invoice.get("dueDate"),
        "customerName": customer.get("name"),
        "gross": invoice.get("gross"),
        "settled": invoice.get("settled"),
    }


def build_toolset(ctx: AgentContext) -> Toolset:
    client = ctx.client

    async def create_invoice(customerId: int, issueDate: str, dueDate: str, lines: List[Dict[str, Any]],
                             bankAccountCode: str = "1920", cash: bool = False,
                             invoiceText: Optional[str] = None, yourReference: Optional[str] = None,
                             ourReference: Optional[str] = None) -> Dict[str, Any]:
        invoice_lines = []
        for line in require_lines(lines):
            vat_type = line.get("vatType") or "HIGH"
            _, net, _ = split_gross(float(line["unitPrice"]), vat_type)
            invoice_lines.append({
                "description": line.get("description", ""),
                "unitPrice": net,
                "quantity": line.get("quantity", 1),
                "vatType": vat_type,
                "incomeAccount": line.get("incomeAccount") or "3000",
            })

        invoice = await client.post("/invoices", {
            "customerId": customerId,
            "issueDate": issueDate,
            "dueDate": dueDate,
            "lines": invoice_lines,
            "bankAccountCode": await resolve_bank_account_code(client, bankAccountCode),
            "cash": cash,
            "invoiceText": invoiceText,
            "yourReference": yourReference,
            "ourReference": ourReference,
        })
        return success(
            f"Invoice #{invoice.get('invoiceNumber')} created (ID: {invoice.get('invoiceId')})",
            operation_complete=True,
            invoice=_summarize_invoice(invoice),
        )

    async def send_invoice(invoiceId: int, method: str = "email",
                           emailAddress: Optional[str] = None) -> Dict[str, Any]:
        await client.post("/invoices/send", {
            "invoiceId": invoiceId,
            "method": [method],
            "includeDocumentAttachments": True,
            "emailAddress": emailAddress,
        })
        return success(f"Invoice {invoiceId} sent by {method}", operation_complete=True)

    async def create_sale(date: str, paid: bool, lines: List[Dict[str, Any]], kind: str = "cash_sale",
                          currency: str = "NOK", paymentAccount: Optional[str] = None,
                          paymentDate: Optional[str] = None, contactId: Optional[int] = None,
                          projectId: Optional[int] = None) -> Dict[str, Any]:
        sale_lines = []
        for line in require_lines(lines):
            vat_type = line.get("vatType") or "HIGH"
            gross, net, _ = split_gross(float(line["grossAmount"]), vat_type)
            sale_lines.append({
                "description": line.get("description", ""),
                "vatType": vat_type,
                "netAmount": net,
                "grossAmount": gross,
                "incomeAccount": line.get("incomeAccount") or "3000",
            })

        sale = await client.post("/sales", {
            "date": date,
            "kind": kind,
            "paid": paid,
            "currency": currency,
            "lines": sale_lines,
            "paymentAccount": await resolve_bank_account_code(client, paymentAccount),
            "paymentDate": paymentDate or (date if paid else None),
            "contactId": contactId,
            "projectId": projectId,
        })
        return success(
            f"Sale registered (ID: {sale.get('saleId')})",
            operation_complete=True,
            sale={
                "saleId": sale.get("saleId"),
                "transactionId": sale.get("transactionId"),
                "date": sale.get("date"),
                "settled": sale.get("settled"),
                "grossAmount": sale.get("grossAmount"),
            },
        )

    async def add_sale_payment(saleId: int, date: str, amount: float,
                               account: str = "1920") -> Dict[str, Any]:
        payment = await client.post(f"/sales/{saleId}/payments", {
            "date": date,
            "amount": to_minor_units(amount),
            "account": await resolve_bank_account_code(client, account),
        })
        return success(f"Payment of {amount:.2f} registered on sale {saleId}",
                       operation_complete=True, payment=payment)

    async def create_full_credit_note(invoiceId: int, issueDate: str,
                                      creditNoteText: Optional[str] = None) -> Dict[str, Any]:
        credit_note = await client.post("/creditNotes/full", {
            "invoiceId": invoiceId,
            "issueDate": issueDate,
            "creditNoteText": creditNoteText,
        })
        return success(f"Full credit note #{credit_note.get('creditNoteNumber')} created",
                       operation_complete=True, creditNote=credit_note)

    invoice_line = obj(
        {
            "description": string("What is invoiced"),
            "unitPrice": number("Unit price INCLUDING VAT in major units"),
            "quantity": number("Quantity"),
            "vatType": string("VAT type (default HIGH)"),
            "incomeAccount": string("Income account (default 3000)"),
        },
        required=["description", "unitPrice", "quantity"],
    )

    specs = [
        search_tool(
            client, SalesOp.SEARCH_INVOICES.value, "Search invoices by customer, date or settlement status.",
            "/invoices",
            {
                "customerId": integer("Customer contact id"),
                "issueDateGe": string("Issued on or after (YYYY-MM-DD)"),
                "issueDateLe": string("Issued on or before (YYYY-MM-DD)"),
                "settled": boolean("Only settled (true) or unsettled (false) invoices"),
            },
            summarize=_summarize_invoice,
        ),
        get_tool(client, SalesOp.GET_INVOICE.value, "Get one invoice with its lines.",
                 "/invoices/{id}", "invoiceId", "invoice"),
        ToolSpec(
            SalesOp.CREATE_INVOICE.value,
            "Create an invoice. Look up the customer's contactId first.",
            params(
                {
                    "customerId": integer("Customer contact id"),
                    "issueDate": string("Issue date (YYYY-MM-DD)"),
                    "dueDate": string("Due date (YYYY-MM-DD)"),
                    "lines": array(invoice_line, "Invoice lines"),
                    "bankAccountCode": string("Bank account for payment (default 1920)"),
                    "cash": boolean("Paid immediately (cash sale)"),
                    "invoiceText": string("Text printed on the invoice"),
                    "yourReference": string("Customer's reference"),
                    "ourReference": string("Our reference"),
                },
                required=["customerId", "issueDate", "dueDate", "lines"],
            ),
            create_invoice,
            kind=ToolKind.CREATE,
            creates=DEFAULT_CREATION_RULES["create_invoice"],
        ),
        ToolSpec(
            SalesOp.SEND_INVOICE.value,
            "Send an invoice to the customer.",
            params(
                {
                    "invoiceId": integer("Invoice id"),
                    "method": string("Delivery method", enum=["email", "ehf", "efaktura"]),
                    "emailAddress": string("Override the customer's email address"),
                },
                required=["invoiceId"],
            ),
            send_invoice,
            kind=ToolKind.UPDATE,
        ),
        search_tool(
            client, SalesOp.SEARCH_SALES.value, "Search other sales (cash, card, external invoices).",
            "/sales",
            {
                "dateGe": string("On or after (YYYY-MM-DD)"),
                "dateLe": string("On or before (YYYY-MM-DD)"),
                "settled": boolean("Only settled (true) or unsettled (false) sales"),
            },
        ),
        ToolSpec(
            SalesOp.CREATE_SALE.value,
            "Register a sale that is not an invoice (cash, card, payment apps).",
            params(
                {
                    "date": string("Sale date (YYYY-MM-DD)"),
                    "kind": string("Sale kind", enum=["cash_sale", "external_invoice"]),
                    "paid": boolean("Whether the sale is paid"),
                    "currency": string("Currency (default NOK)"),
                    "lines": array(sale_line_schema(), "Sale lines"),
                    "paymentAccount": string("Bank account receiving the payment"),
                    "paymentDate": string("Payment date (YYYY-MM-DD)"),
                    "contactId": integer("Customer contact id, if any"),
                    "projectId": integer("Project id"),
                },
                required=["date", "paid", "lines"],
            ),
            create_sale,
            kind=ToolKind.CREATE,
            creates=DEFAULT_CREATION_RULES["create_sale"],
        ),
        ToolSpec(
            SalesOp.ADD_SALE_PAYMENT.value,
            "Register a payment on a sale.",
            params(
                {
                    "saleId": integer("Sale id"),
                    "date": string("Payment date (YYYY-MM-DD)"),
                    "amount": number("Amount in major units"),
                    "account": string("Bank account code (default 1920)"),
                },
                required=["saleId", "date", "amount"],
            ),
            add_sale_payment,
            kind=ToolKind.UPDATE,
        ),
        ToolSpec(
            SalesOp.CREATE_FULL_CREDIT_NOTE.value,
            "Credit a whole invoice. Invoices cannot be deleted; use this to reverse one.",
            params(
                {
                    "invoiceId": integer("Invoice to credit"),
                    "issueDate": string("Issue date (YYYY-MM-DD)"),
                    "creditNoteText": string("Text on the credit note"),
                },
                required=["invoiceId", "issueDate"],
            ),
            create_full_credit_note,
            kind=ToolKind.CREATE,
        ),
        upload_tool(client, ctx.pending_files, SalesOp.UPLOAD_TO_INVOICE.value, "invoice", "invoiceId"),
        upload_tool(client, ctx.pending_files, SalesOp.UPLOAD_TO_SALE.value, "sale", "saleId"),
    ]
    return Toolset(specs, SalesOp)
