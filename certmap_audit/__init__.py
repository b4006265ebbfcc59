"""
certmap_audit: KB5014754 certificate-mapping audit for domain controllers.

Counts KDC events 39/40/41, reads StrongCertificateBindingEnforcement and
turns both into an ordered remediation plan with CSV/HTML reports.
"""
from .schema import ConfigurationValue, EnforcementMode, EventCategory, EventRecord
from .aggregate import AggregationResult, aggregate, summarize_by_user
from .remediation import Impact, RemediationEntry, RemediationPlan, build_remediation
from .config import AuditConfig, ReportConfig, RegistryConfig, SourceConfig
from .pipeline import AuditResult, run

__all__ = [
    "ConfigurationValue",
    "EnforcementMode",
    "EventCategory",
    "EventRecord",
    "AggregationResult",
    "aggregate",
    "summarize_by_user",
    "Impact",
    "RemediationEntry",
    "RemediationPlan",
    "build_remediation",
    "AuditConfig",
    "ReportConfig",
    "RegistryConfig",
    "SourceConfig",
    "AuditResult",
    "run",
]
