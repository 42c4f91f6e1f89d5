"""
DigiComply - Routers Package

FastAPI route handlers.

Routers:
- compliance_state: Entity compliance state, history, alerts, filings, recalculation
- compliance_rules: Effective rule catalog and rule versioning
"""
