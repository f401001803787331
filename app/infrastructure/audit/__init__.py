"""
Audit logging infrastructure.

Append-only trail of outbound and automation state changes.
"""

from app.infrastructure.audit.audit_logger import AuditLogger, audit_logger

__all__ = ["AuditLogger", "audit_logger"]
