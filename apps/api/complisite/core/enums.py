"""
Shared enums for Complisite
All string-based enums used across the app (roles, statuses, probe outcomes, etc.)
"""

from enum import Enum


class OrgRole(str, Enum):
    """Organization membership roles"""
    ADMIN = "admin"
    MANAGER = "manager"
    WORKER = "worker"


class MemberStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    INVITED = "invited"


class ProjectRole(str, Enum):
    """Project membership roles"""
    MANAGER = "manager"
    MEMBER = "member"
    VIEWER = "viewer"


class ProjectMemberStatus(str, Enum):
    ACTIVE = "active"
    REVOKED = "revoked"


class ResourceKind(str, Enum):
    ORGANIZATION = "organization"
    PROJECT = "project"


class AccessLevel(int, Enum):
    """Ordered access levels; comparisons follow the integer value."""
    VIEWER = 1
    MEMBER = 2
    MANAGER = 3
    ADMIN = 4


class ProjectStatus(str, Enum):
    """Project lifecycle states"""
    PLANNING = "planning"
    ACTIVE = "active"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REVOKED = "revoked"
    EXPIRED = "expired"


class CertificateStatus(str, Enum):
    PENDING_VERIFICATION = "pending_verification"
    VERIFIED = "verified"
    EXPIRED = "expired"
    SUSPENDED = "suspended"
    REJECTED = "rejected"


class VerificationMethod(str, Enum):
    MANUAL = "manual"
    API = "api"
    AUTO = "auto"


class Readiness(str, Enum):
    """Per-worker certificate readiness on a project"""
    READY = "ready"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"
    MISSING = "missing"


class ProbeStatus(str, Enum):
    """Outcome of a single diagnostic table probe"""
    SUCCESS = "success"
    RECURSION = "recursion"
    OTHER_ERROR = "other_error"
    EXCEPTION = "exception"


class ErrorKind(str, Enum):
    """Machine-readable error classification used in result envelopes"""
    POLICY_RECURSION = "policy_recursion"
    PERMISSION_DENIED = "permission_denied"
    MISSING_TABLE = "missing_table"
    BACKEND_ERROR = "backend_error"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    UNAUTHORIZED = "unauthorized"
    STORAGE_ERROR = "storage_error"
    RATE_LIMITED = "rate_limited"
    INTERNAL = "internal"
