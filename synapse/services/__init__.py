"""
Business logic services.
"""

from synapse.services.admin_service import AdminService
from synapse.services.analysis_service import AnalysisService
from synapse.services.audit_service import AuditService
from synapse.services.user_service import UserService

__all__ = ["AnalysisService", "AdminService", "AuditService", "UserService"]
