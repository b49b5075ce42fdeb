"""
BarterDesk: peer-to-peer barter marketplace core.

Application package root. This is a modular monolith using
hexagonal architecture (ports & adapters) with domain-driven design.

Bounded contexts:
    - barter: Trade lifecycle, escrow orchestration, disputes, ratings
      and valuation reputation scoring.

Layers:
    - domain: Pure business logic, entities, state machines, ports (ABCs), errors.
    - application: Use cases, DTOs, orchestration.
    - infrastructure: Adapters (stores, ledger, valuation, notifications) implementing domain ports.
    - interfaces: FastAPI routers, Pydantic schemas.
    - shared: Cross-cutting concerns (errors, security, logging).
"""
