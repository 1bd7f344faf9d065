"""
Ledger Agents - multi-agent bookkeeping assistant.

A coordinator delegates each user request to one of six capability
agents over the bookkeeping REST API and streams the answer to the
client in the data stream format.
"""

__version__ = "0.1.0"
