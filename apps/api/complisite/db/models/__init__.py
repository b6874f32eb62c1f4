# complisite/db/models/__init__.py
"""
Central aggregator / namespace for all SQLAlchemy models in Complisite.

Recommended usage:
    from complisite.db.models import Organization, Project, UserCertificate

Import order inside this file follows dependency order:
1. Base (always first)
2. Tenancy & users
3. Projects (depend on organizations)
4. Compliance & certificates (depend on projects)
5. Activity trail (last, references everything)
"""

from .base import Base

from .tenancy import Company, Invitation, Organization, OrganizationMember
from .user import User, UserProfile

from .project import Project, ProjectCompliance, ProjectMember, ProjectType

from .compliance import (
    ChecklistCompletion,
    ComplianceAlert,
    ComplianceChecklistItem,
    CompliancePhoto,
    ComplianceTemplate,
    DailyReport,
)
from .certificate import (
    CertificateShare,
    CertificateType,
    ProjectRequiredCertificate,
    UserCertificate,
)

from .activity import ActivityLog

__all__ = [
    "Base",
    "Company",
    "Invitation",
    "Organization",
    "OrganizationMember",
    "User",
    "UserProfile",
    "Project",
    "ProjectCompliance",
    "ProjectMember",
    "ProjectType",
    "ChecklistCompletion",
    "ComplianceAlert",
    "ComplianceChecklistItem",
    "CompliancePhoto",
    "ComplianceTemplate",
    "DailyReport",
    "CertificateShare",
    "CertificateType",
    "ProjectRequiredCertificate",
    "UserCertificate",
    "ActivityLog",
]
