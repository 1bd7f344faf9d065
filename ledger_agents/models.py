"""Data models for the ledger agents."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


# ============================================================================
# Agent identifiers
# ============================================================================

class AgentId(str, Enum):
    """Routing key and capability-set selector."""
    ORCHESTRATOR = "orchestrator"
    SALES = "sales-agent"
    PURCHASES = "purchases-agent"
    COUNTERPARTY = "counterparty-agent"
    QUOTATION = "quotation-agent"
    BANKING = "banking-agent"
    LEDGER = "ledger-agent"

    @property
    def tool_suffix(self) -> str:
        """Name fragment used in tool names (``sales-agent`` -> ``sales_agent``)."""
        return self.value.replace("-", "_")


CAPABILITY_AGENTS = tuple(a for a in AgentId if a is not AgentId.ORCHESTRATOR)


AGENT_DESCRIPTIONS: Dict[AgentId, str] = {
    AgentId.SALES: "Invoices, credit notes, sales, sending invoices, sale payments",
    AgentId.PURCHASES: "Purchases, supplier invoices, expenses, receipts, purchase payments",
    AgentId.COUNTERPARTY: "Customers, suppliers, contact persons, products",
    AgentId.QUOTATION: "Offers, order confirmations, converting them to invoices",
    AgentId.BANKING: "Bank accounts, transactions, balances, bank statement reconciliation",
    AgentId.LEDGER: "Chart of accounts, journal entries, account balances, projects",
}


# ============================================================================
# Pending files
# ============================================================================

@dataclass(frozen=True)
class PendingFile:
    """A file attached to the current user turn, waiting to be uploaded."""
    name: str
    mime_type: str
    data: str  # base64, optionally as a data URL


# ============================================================================
# API request models
# ============================================================================

class ChatMessage(BaseModel):
    """Chat message; content may be plain text or a list of parts."""
    role: str
    content: Union[str, List[Dict[str, Any]]] = ""

    def text(self) -> str:
        """Text content only; non-text parts are dropped."""
        if isinstance(self.content, str):
            return self.content
        return "".join(
            part.get("text", "") for part in self.content
            if isinstance(part, dict) and part.get("type", "text") == "text"
        )


class FileAttachment(BaseModel):
    """File attached to a chat request."""
    name: str
    type: str = "application/octet-stream"
    data: str

    def to_pending(self) -> PendingFile:
        return PendingFile(name=self.name, mime_type=self.type, data=self.data)


class ChatRequest(BaseModel):
    """Chat request for one user turn."""
    messages: List[ChatMessage]
    files: List[FileAttachment] = Field(default_factory=list)
    company_slug: Optional[str] = None
