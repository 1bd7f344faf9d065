"""Service configuration."""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


@dataclass
class Config:
    """Configuration loaded from environment variables."""

    # Server
    host: str = field(default_factory=lambda: os.getenv("ORCH_HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("ORCH_PORT", "8000")))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    # Ollama
    ollama_url: str = field(default_factory=lambda: os.getenv("OLLAMA_URL", "http://localhost:11434"))
    ollama_model: str = field(default_factory=lambda: os.getenv("OLLAMA_MODEL", "ministral-3:14b"))
    agent_model: str = field(default_factory=lambda: os.getenv("AGENT_MODEL", "") or os.getenv("OLLAMA_MODEL", "ministral-3:14b"))

    # Ledger service
    ledger_api_url: str = field(default_factory=lambda: os.getenv("LEDGER_API_URL", "https://api.fiken.no/api/v2"))
    ledger_api_token: str = field(default_factory=lambda: os.getenv("LEDGER_API_TOKEN", ""))
    ledger_company: str = field(default_factory=lambda: os.getenv("LEDGER_COMPANY", ""))
    ledger_timeout: float = field(default_factory=lambda: float(os.getenv("LEDGER_TIMEOUT", "30")))
    ledger_page_size: int = field(default_factory=lambda: int(os.getenv("LEDGER_PAGE_SIZE", "100")))
    ledger_max_pages: int = field(default_factory=lambda: int(os.getenv("LEDGER_MAX_PAGES", "10")))

    # Agent loops
    agent_max_steps: int = field(default_factory=lambda: int(os.getenv("AGENT_MAX_STEPS", "15")))
    coordinator_max_steps: int = field(default_factory=lambda: int(os.getenv("COORDINATOR_MAX_STEPS", "25")))
    max_delegation_depth: int = field(default_factory=lambda: int(os.getenv("MAX_DELEGATION_DEPTH", "3")))

    # Chart of accounts cache (seconds, default one week)
    account_cache_ttl: int = field(default_factory=lambda: int(os.getenv("ACCOUNT_CACHE_TTL", str(7 * 24 * 3600))))

    # Reconciliation
    match_amount_tolerance: int = field(default_factory=lambda: int(os.getenv("MATCH_AMOUNT_TOLERANCE", "500")))
    match_day_window: int = field(default_factory=lambda: int(os.getenv("MATCH_DAY_WINDOW", "5")))
    match_search_days: int = field(default_factory=lambda: int(os.getenv("MATCH_SEARCH_DAYS", "5")))

    def match_settings(self):
        """Reconciliation tolerances as a MatchSettings instance."""
        from .reconciliation import MatchSettings

        return MatchSettings(
            amount_tolerance=self.match_amount_tolerance,
            day_window=self.match_day_window,
            search_days=self.match_search_days,
            page_size=self.ledger_page_size,
            max_pages=self.ledger_max_pages,
        )


# Global config instance
config = Config()
