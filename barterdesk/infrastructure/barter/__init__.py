"""
Infrastructure adapters for the barter bounded context.

Each adapter implements a domain port (ABC) and connects
to external systems: databases, the escrow ledger, webhooks.
"""
