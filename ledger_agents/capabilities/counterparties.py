"""Counterparty agent: customers, suppliers and products."""

from enum import Enum
from typing import Any, Dict, Optional

from ..reconciliation import to_minor_units
from ..tools import (
    ToolKind, ToolSpec, Toolset, boolean, get_tool, integer, number, params,
    search_tool, string, success,
)
from .common import AgentContext, search_contacts_tool, summarize_contact


class CounterpartyOp(str, Enum):
    SEARCH_CONTACTS = "search_contacts"
    GET_CONTACT = "get_contact"
    CREATE_CONTACT = "create_contact"
    UPDATE_CONTACT = "update_contact"
    SEARCH_PRODUCTS = "search_products"
    CREATE_PRODUCT = "create_product"


def build_toolset(ctx: AgentContext) -> Toolset:
    client = ctx.client

    async def create_contact(name: str, email: Optional[str] = None,
                             organizationNumber: Optional[str] = None, phoneNumber: Optional[str] = None,
                             customer: bool = True, supplier: bool = False) -> Dict[str, Any]:
        contact = await client.post("/contacts", {
            "name": name,
            "email": email,
            "organizationNumber": organizationNumber,
            "phoneNumber": phoneNumber,
            "customer": customer,
            "supplier": supplier,
        })
        return success(f"Contact created: {name} (ID: {contact.get('contactId')})",
                       operation_complete=True, contact=summarize_contact(contact))

    async def update_contact(contactId: int, name: str, email: Optional[str] = None,
                             phoneNumber: Optional[str] = None,
                             inactive: Optional[bool] = None) -> Dict[str, Any]:
        contact = await client.put(f"/contacts/{contactId}", {
            "name": name,
            "email": email,
            "phoneNumber": phoneNumber,
            "inactive": inactive,
        })
        return success(f"Contact updated: {name}", operation_complete=True, contact=contact)

    async def create_product(name: str, unitPrice: Optional[float] = None,
                             productNumber: Optional[str] = None, vatType: str = "HIGH",
                             incomeAccount: str = "3000") -> Dict[str, Any]:
        product = await client.post("/products", {
            "name": name,
            "unitPrice": to_minor_units(unitPrice) if unitPrice is not None else None,
            "productNumber": productNumber,
            "vatType": vatType,
            "incomeAccount": incomeAccount,
            "active": True,
        })
        return success(
            f"Product created: {name} (ID: {product.get('productId')})",
            operation_complete=True,
            product={
                "productId": product.get("productId"),
                "name": product.get("name"),
                "productNumber": product.get("productNumber"),
                "unitPrice": product.get("unitPrice"),
                "vatType": product.get("vatType"),
                "incomeAccount": product.get("incomeAccount"),
            },
        )

    specs = [
        search_contacts_tool(ctx, CounterpartyOp.SEARCH_CONTACTS.value),
        get_tool(client, CounterpartyOp.GET_CONTACT.value, "Get one contact with details.",
                 "/contacts/{id}", "contactId", "contact"),
        ToolSpec(
            CounterpartyOp.CREATE_CONTACT.value,
            "Create a customer or supplier. Search first to avoid duplicates.",
            params(
                {
                    "name": string("Contact name"),
                    "email": string("Email address, needed for sending invoices"),
                    "organizationNumber": string("Organization number"),
                    "phoneNumber": string("Phone number"),
                    "customer": boolean("Is a customer (default true)"),
                    "supplier": boolean("Is a supplier (default false)"),
                },
                required=["name"],
            ),
            create_contact,
            kind=ToolKind.CREATE,
        ),
        ToolSpec(
            CounterpartyOp.UPDATE_CONTACT.value,
            "Update an existing contact.",
            params(
                {
                    "contactId": integer("Contact id"),
                    "name": string("Contact name"),
                    "email": string("Email address"),
                    "phoneNumber": string("Phone number"),
                    "inactive": boolean("Mark the contact inactive"),
                },
                required=["contactId", "name"],
            ),
            update_contact,
            kind=ToolKind.UPDATE,
        ),
        search_tool(
            client, CounterpartyOp.SEARCH_PRODUCTS.value, "Search products by name or number.",
            "/products",
            {
                "name": string("Product name"),
                "productNumber": string("Product number"),
                "active": boolean("Only active products"),
            },
        ),
        ToolSpec(
            CounterpartyOp.CREATE_PRODUCT.value,
            "Create a product for use on invoice lines.",
            params(
                {
                    "name": string("Product name"),
                    "unitPrice": number("Net unit price in major units (excluding VAT)"),
                    "productNumber": string("Product number"),
                    "vatType": string("VAT type (default HIGH)"),
                    "incomeAccount": string("Income account (default 3000)"),
                },
                required=["name"],
            ),
            create_product,
            kind=ToolKind.CREATE,
        ),
    ]
    return Toolset(specs, CounterpartyOp)
