"""Failure taxonomy for the boundary collaborators.

Only I/O collaborators raise. The core (aggregate / build_remediation) is
total and reports anomalies in its output instead.
"""
from __future__ import annotations


class CertMapAuditError(Exception):
    """Base class for audit failures."""


class SourceUnavailable(CertMapAuditError):
    """The event source could not supply records."""


class ConfigurationUnavailable(CertMapAuditError):
    """The enforcement-mode value could not be read."""


# Anomaly code embedded in RemediationPlan.anomalies (never raised)
UNKNOWN_CONFIGURATION_VALUE = "UnknownConfigurationValue"
