"""
Infrastructure layer package.

Contains concrete implementations (adapters) of the ports
defined in the domain layer. This is where the stores, the escrow
ledger client, valuation lookups and notification delivery live.
"""
