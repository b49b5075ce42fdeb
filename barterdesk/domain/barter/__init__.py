"""
Barter bounded context: domain layer.

This module contains all domain logic for the barter context:
- Trade lifecycle state machine and cash differential
- Dispute sub-machine and settlement planning
- Valuation reputation scoring
- Platform fee policy
"""
