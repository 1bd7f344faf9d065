"""
Ledger Agents - Main Entry Point

Chat API for a bookkeeping assistant. A coordinator model routes each
user turn to one of six capability agents (sales, purchases,
counterparties, quotations, banking, ledger), which call the
bookkeeping REST API through their tools.

Usage:
    python -m ledger_agents.main

Environment Variables:
    ORCH_HOST         - Server host (default: 0.0.0.0)
    ORCH_PORT         - Server port (default: 8000)
    OLLAMA_URL        - Ollama API URL (default: http://localhost:11434)
    OLLAMA_MODEL      - Coordinator model (default: ministral-3:14b)
    AGENT_MODEL       - Capability agent model (default: OLLAMA_MODEL)
    LEDGER_API_URL    - Bookkeeping API base URL
    LEDGER_API_TOKEN  - Bookkeeping API bearer token
    LEDGER_COMPANY    - Default company slug
    LOG_LEVEL         - Logging level (default: INFO)
"""

import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api import router as api_router
from .capabilities import TOOLSET_BUILDERS
from .config import config
from .ollama_client import ollama

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown lifecycle."""

    # Startup
    logger.info("=" * 60)
    logger.info("Ledger Agents Starting")
    logger.info("=" * 60)

    logger.info(f"Capability agents: {', '.join(a.value for a in TOOLSET_BUILDERS)}")
    if not config.ledger_api_token:
        logger.warning("No LEDGER_API_TOKEN configured - ledger calls will be rejected")
    if not config.ledger_company:
        logger.warning("No LEDGER_COMPANY configured - requests must send company_slug")

    logger.info(f"Ollama URL: {config.ollama_url}")
    logger.info(f"Coordinator model: {config.ollama_model}")
    logger.info(f"Agent model: {config.agent_model}")
    logger.info(f"Ledger API: {config.ledger_api_url}")

    logger.info("-" * 60)
    logger.info(f"Server ready at http://{config.host}:{config.port}")
    logger.info(f"Chat endpoint: http://{config.host}:{config.port}/api/chat")
    logger.info("=" * 60)

    yield

    # Shutdown
    logger.info("Shutting down...")
    await ollama.close()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Ledger Agents",
    description=(
        "Bookkeeping assistant. A coordinator delegates each request to a "
        "capability agent and streams the answer in the data stream format."
    ),
    version=__version__,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "agents": [a.value for a in TOOLSET_BUILDERS],
        "ollama_url": config.ollama_url,
        "model": config.ollama_model,
        "agent_model": config.agent_model,
    }


@app.get("/")
async def root():
    """Root endpoint with basic info."""
    return {
        "name": "Ledger Agents",
        "version": __version__,
        "protocol": "Data stream v1",
        "endpoints": {
            "chat": "/api/chat",
            "health": "/health",
        },
    }


def main():
    """Run the API server."""
    uvicorn.run(
        "ledger_agents.main:app",
        host=config.host,
        port=config.port,
        reload=False,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
