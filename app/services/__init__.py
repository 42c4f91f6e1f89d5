"""
DigiComply - Services Package

Business logic services.
"""

from app.services.compliance_state_service import ComplianceStateService

__all__ = [
    "ComplianceStateService",
]
