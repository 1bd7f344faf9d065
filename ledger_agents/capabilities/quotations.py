"""Quotation agent: offers and order confirmations."""

from enum import Enum
from typing import Any, Dict, List, Optional

from ..reconciliation import to_minor_units
from ..tools import ToolKind, ToolSpec, Toolset, array, integer, number, obj, params, search_tool, string, success
from .common import AgentContext, require_lines


class QuotationOp(str, Enum):
    SEARCH_OFFERS = "search_offers"
    CREATE_OFFER_DRAFT = "create_offer_draft"
    CREATE_OFFER_FROM_DRAFT = "create_offer_from_draft"
    SEARCH_ORDER_CONFIRMATIONS = "search_order_confirmations"
    CREATE_INVOICE_DRAFT_FROM_ORDER = "create_invoice_draft_from_order_confirmation"


def _summarize_offer(offer: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "offerId": offer.get("offerId"),
        "offerNumber": offer.get("offerNumber"),
        "issueDate": offer.get("issueDate"),
        "customerName": (offer.get("customer") or {}).get("name"),
        "net": offer.get("net"),
        "gross": offer.get("gross"),
    }


def build_toolset(ctx: AgentContext) -> Toolset:
    client = ctx.client

    async def create_offer_draft(customerId: int, lines: List[Dict[str, Any]], daysUntilDueDate: int = 14,
                                 offerText: Optional[str] = None, ourReference: Optional[str] = None,
                                 yourReference: Optional[str] = None) -> Dict[str, Any]:
        draft = await client.post("/offers/drafts", {
            "customerId": customerId,
            "daysUntilDueDate": daysUntilDueDate,
            "type": "offer",
            "lines": [
                {
                    "description": line.get("description", ""),
                    "unitPrice": to_minor_units(float(line["unitPrice"])),
                    "quantity": line.get("quantity", 1),
                    "vatType": line.get("vatType") or "HIGH",
                    "incomeAccount": line.get("incomeAccount") or "3000",
                }
                for line in require_lines(lines)
            ],
            "offerText": offerText,
            "ourReference": ourReference,
            "yourReference": yourReference,
        })
        return success("Offer draft created", draft=draft)

    async def create_offer_from_draft(draftId: int) -> Dict[str, Any]:
        offer = await client.post(f"/offers/drafts/{draftId}/createOffer")
        return success(f"Offer #{offer.get('offerNumber')} created",
                       operation_complete=True, offer=_summarize_offer(offer))

    async def create_invoice_draft_from_order_confirmation(orderConfirmationId: int) -> Dict[str, Any]:
        draft = await client.post(f"/orderConfirmations/{orderConfirmationId}/createInvoiceDraft")
        return success(
            "Invoice draft created from order confirmation",
            operation_complete=True,
            invoiceDraft=draft,
            hint="The sales agent can turn the draft into an invoice.",
        )

    offer_line = obj(
        {
            "description": string("What is offered"),
            "unitPrice": number("Net unit price in major units (excluding VAT)"),
            "quantity": number("Quantity"),
            "vatType": string("VAT type (default HIGH)"),
            "incomeAccount": string("Income account (default 3000)"),
        },
        required=["description", "unitPrice", "quantity"],
    )

    specs = [
        search_tool(
            client, QuotationOp.SEARCH_OFFERS.value, "List offers.", "/offers",
            {"customerId": integer("Customer contact id")},
            summarize=_summarize_offer,
        ),
        ToolSpec(
            QuotationOp.CREATE_OFFER_DRAFT.value,
            "Create an offer draft. Workflow: offer, then order confirmation, then invoice.",
            params(
                {
                    "customerId": integer("Customer contact id"),
                    "lines": array(offer_line, "Offer lines"),
                    "daysUntilDueDate": integer("Days until the offer expires (default 14)"),
                    "offerText": string("Text on the offer"),
                    "ourReference": string("Our reference"),
                    "yourReference": string("Customer's reference"),
                },
                required=["customerId", "lines"],
            ),
            create_offer_draft,
            kind=ToolKind.CREATE,
        ),
        ToolSpec(
            QuotationOp.CREATE_OFFER_FROM_DRAFT.value,
            "Finalize an offer from a draft.",
            params({"draftId": integer("Draft id (integer, not uuid)")}, required=["draftId"]),
            create_offer_from_draft,
            kind=ToolKind.CREATE,
        ),
        search_tool(
            client, QuotationOp.SEARCH_ORDER_CONFIRMATIONS.value, "List order confirmations.",
            "/orderConfirmations", {"customerId": integer("Customer contact id")},
        ),
        ToolSpec(
            QuotationOp.CREATE_INVOICE_DRAFT_FROM_ORDER.value,
            "Create an invoice draft from an order confirmation.",
            params({"orderConfirmationId": integer("Order confirmation id")}, required=["orderConfirmationId"]),
            create_invoice_draft_from_order_confirmation,
            kind=ToolKind.CREATE,
        ),
    ]
    return Toolset(specs, QuotationOp)
