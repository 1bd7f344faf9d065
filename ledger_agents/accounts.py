"""
Chart of accounts lookup and model-backed account suggestions.

The chart changes rarely, so it is cached per company for
``config.account_cache_ttl`` seconds (one week by default).
"""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from .cache import TTLCache
from .config import config
from .errors import ModelServiceError, ValidationError
from .ledger_client import LedgerClient
from .ollama_client import OllamaClient

logger = logging.getLogger(__name__)

MAX_ACCOUNT_PAGES = 50
ACCOUNT_PAGE_SIZE = 100

ACCOUNT_RANGES = {
    "expense": (4000, 7999),
    "income": (3000, 3999),
}

SUGGESTION_PROMPT = """You are an accounting expert. Pick the {count} most relevant accounts for this {label}.

DESCRIPTION: "{description}"

CHART OF ACCOUNTS ({total} accounts):
{accounts}

RULES:
- Use ONLY accounts from the list above; code and name must match exactly.
- The first suggestion is the best match.
- "reason" is a short explanation (max 50 characters).
- "vatDeductible" is whether purchases on this account normally have deductible VAT.
- "vatNote" (optional) says what to clarify with the user about VAT, for example
  domestic or foreign travel, internal meeting or client entertainment.
- If nothing fits, return an empty list.

Respond with JSON: {{"suggestions": [{{"code": "...", "name": "...", "reason": "...", "vatDeductible": true, "vatNote": "..."}}]}}
"""

# Shared across requests, keyed by company slug
chart_cache: TTLCache[str, List[Dict[str, Any]]] = TTLCache(config.account_cache_ttl)


def base_code(code: str) -> str:
    return str(code).split(":")[0]


def account_number(code: str) -> Optional[int]:
    base = base_code(code)
    return int(base) if base.isdigit() else None


def filter_by_kind(accounts: Sequence[Dict[str, Any]], kind: str) -> List[Dict[str, Any]]:
    """Accounts in the code range for ``kind``; unknown kinds keep everything."""
    bounds = ACCOUNT_RANGES.get(kind)
    if bounds is None:
        return list(accounts)
    low, high = bounds
    result = []
    for account in accounts:
        number = account_number(account.get("code", ""))
        if number is not None and low <= number <= high:
            result.append(account)
    return result


class AccountDirectory:
    """Cached chart of accounts for one company plus account suggestions."""

    def __init__(
        self,
        client: LedgerClient,
        llm: Optional[OllamaClient] = None,
        model: Optional[str] = None,
        cache: Optional[TTLCache] = None,
    ):
        self.client = client
        self.llm = llm
        self.model = model or config.agent_model
        self.cache = chart_cache if cache is None else cache

    async def get_accounts(self) -> List[Dict[str, Any]]:
        return await self.cache.get_or_load(self.client.company_slug, self._load)

    async def _load(self) -> List[Dict[str, Any]]:
        accounts: List[Dict[str, Any]] = []
        for page in range(MAX_ACCOUNT_PAGES):
            batch = await self.client.list_accounts(page=page, page_size=ACCOUNT_PAGE_SIZE)
            accounts.extend(batch)
            if len(batch) < ACCOUNT_PAGE_SIZE:
                break
        logger.info(f"Loaded {len(accounts)} accounts for {self.client.company_slug}")
        return accounts

    def clear(self):
        self.cache.invalidate(self.client.company_slug)

    async def suggest(
        self,
        description: str,
        kind: str = "expense",
        exclude: Sequence[str] = (),
        count: int = 3,
    ) -> Dict[str, Any]:
        """
        Ask the model for the best-fitting accounts for ``description``.

        Suggestions whose code is not in the company's chart are dropped.
        """
        if kind not in ACCOUNT_RANGES:
            raise ValidationError(f"Unknown account kind '{kind}', expected one of {sorted(ACCOUNT_RANGES)}")
        if self.llm is None:
            raise ModelServiceError("No model client configured for account suggestions")

        excluded = set(exclude)
        candidates = [
            a for a in filter_by_kind(await self.get_accounts(), kind)
            if a.get("code") not in excluded and base_code(a.get("code", "")) not in excluded
        ]
        if not candidates:
            return {"suggestions": [], "searchDescription": description}

        prompt = SUGGESTION_PROMPT.format(
            count=count,
            label="expense" if kind == "expense" else "income",
            description=description,
            total=len(candidates),
            accounts="\n".join(f"{a['code']} - {a.get('name', '')}" for a in candidates),
        )
        response = await self.llm.chat(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            format="json",
            temperature=0.0,
        )
        if response.get("error"):
            raise ModelServiceError(f"Account suggestion failed: {response['error']}")

        content = (response.get("message") or {}).get("content") or "{}"
        try:
            raw = json.loads(content).get("suggestions", [])
        except (json.JSONDecodeError, AttributeError):
            logger.warning(f"Account suggestion was not valid JSON: {content[:100]}")
            raw = []

        by_code = {a["code"]: a for a in candidates}
        suggestions = []
        for item in raw if isinstance(raw, list) else []:
            if not isinstance(item, dict):
                continue
            account = by_code.get(str(item.get("code", "")))
            if account is None:
                logger.debug(f"Dropping suggested account not in chart: {item.get('code')}")
                continue
            suggestions.append({
                "code": account["code"],
                "name": account.get("name", ""),
                "reason": item.get("reason", ""),
                "vatDeductible": bool(item.get("vatDeductible", True)),
                "vatNote": item.get("vatNote"),
            })
            if len(suggestions) >= count:
                break

        return {"suggestions": suggestions, "searchDescription": description}
