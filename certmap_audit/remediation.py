"""
Remediation policy.
====================
Maps an AggregationResult plus the enforcement mode to an ordered list of
remediation entries:

  1. at most one configuration entry (Disabled / Unset / Audit)
  2. one entry per event category with a positive count, in category
     priority order (NoStrongMapping, CertificatePredatesAccount, SidMismatch)

Commands are examples for an administrator to adapt; nothing here runs them.
An unrecognized enforcement value produces no configuration entry and an
UnknownConfigurationValue notice in RemediationPlan.anomalies.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Mapping, Optional, Tuple, Union

import pandas as pd

from .aggregate import AggregationResult
from .errors import UNKNOWN_CONFIGURATION_VALUE
from .schema import CATEGORY_ORDER, ConfigurationValue, EnforcementMode, EventCategory


KDC_KEY = r"HKLM\SYSTEM\CurrentControlSet\Services\Kdc"
ENFORCEMENT_VALUE_NAME = "StrongCertificateBindingEnforcement"
BACKDATING_VALUE_NAME = "CertificateBackdatingCompensation"
SID_EXTENSION_OID = "1.3.6.1.4.1.311.25.2"
ENFORCEMENT_DEADLINE = "February 2025"


class Impact(Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"


@dataclass(frozen=True)
class RemediationEntry:
    issue: str
    impact: Impact
    action: str
    command: str

    def __post_init__(self):
        try:
            object.__setattr__(self, "impact", Impact(getattr(self.impact, "value", self.impact)))
        except ValueError:
            raise ValueError(
                f"Invalid impact {self.impact!r}. Expected one of {[i.value for i in Impact]}"
            ) from None


@dataclass(frozen=True)
class RemediationPlan:
    """Ordered remediation entries plus reportable anomalies."""
    entries: Tuple[RemediationEntry, ...] = ()
    anomalies: Tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[RemediationEntry]:
        return iter(self.entries)

    def __getitem__(self, idx):
        return self.entries[idx]

    def as_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {"priority": i, "issue": e.issue, "impact": e.impact.value,
                 "action": e.action, "command": e.command}
                for i, e in enumerate(self.entries, start=1)
            ],
            columns=["priority", "issue", "impact", "action", "command"],
        )


def _reg_add(value: int) -> str:
    return f'reg add "{KDC_KEY}" /v {ENFORCEMENT_VALUE_NAME} /t REG_DWORD /d {value} /f'


# ---------------------------------------------------------------------------
# Configuration-driven entries. ENFORCED is compliant; UNKNOWN is an anomaly.
# ---------------------------------------------------------------------------

CONFIG_ENTRIES: Mapping[EnforcementMode, Optional[RemediationEntry]] = {
    EnforcementMode.DISABLED: RemediationEntry(
        issue=f"{ENFORCEMENT_VALUE_NAME} is set to 0 (Disabled)",
        impact=Impact.HIGH,
        action=(
            "Change to 1 (Audit) to log weak mappings while testing, or to 2 "
            "(Enforced) once all certificates are strongly mapped."
        ),
        command=_reg_add(1),
    ),
    EnforcementMode.UNSET: RemediationEntry(
        issue=f"{ENFORCEMENT_VALUE_NAME} is not configured",
        impact=Impact.HIGH,
        action=(
            f"Configure the value to 1 (Audit) and review events 39/40/41 before "
            f"Full Enforcement ({ENFORCEMENT_DEADLINE})."
        ),
        command=_reg_add(1),
    ),
    EnforcementMode.AUDIT: RemediationEntry(
        issue=f"{ENFORCEMENT_VALUE_NAME} is set to 1 (Audit)",
        impact=Impact.MEDIUM,
        action=(
            f"Resolve logged mapping failures and plan the move to 2 (Enforced) "
            f"before {ENFORCEMENT_DEADLINE}."
        ),
        command=_reg_add(2),
    ),
    EnforcementMode.ENFORCED: None,
    EnforcementMode.UNKNOWN: None,
}


def _plural(n: int) -> str:
    return f"{n} event" if n == 1 else f"{n} events"


# ---------------------------------------------------------------------------
# Event-driven entries (all HIGH)
# ---------------------------------------------------------------------------

EVENT_POLICY: Mapping[EventCategory, Tuple[str, str, str]] = {
    EventCategory.NO_STRONG_MAPPING: (
        "certificates could not be strongly mapped (event 39)",
        "Add a strong mapping to each affected account, e.g. an "
        "X509IssuerSerialNumber entry in altSecurityIdentities, or reissue "
        "certificates that carry the SID extension.",
        'Set-ADUser -Identity <user> -Add @{altSecurityIdentities="X509:<I><IssuerDN><SR><ReversedSerial>"}',
    ),
    EventCategory.CERTIFICATE_PREDATES_ACCOUNT: (
        "certificates predate the account they map to (event 40)",
        f"Reissue the certificates, or set {BACKDATING_VALUE_NAME} to cover the "
        "gap between certificate issuance and account creation.",
        f'reg add "{KDC_KEY}" /v {BACKDATING_VALUE_NAME} /t REG_DWORD /d <seconds> /f',
    ),
    EventCategory.SID_MISMATCH: (
        "certificate SID extension does not match the account (event 41)",
        f"Reissue the certificates from a template that writes the correct "
        f"SID security extension ({SID_EXTENSION_OID}).",
        "certutil -dump <certificate.cer>",
    ),
}


def build_remediation(
    aggregation: AggregationResult,
    config_value: Union[ConfigurationValue, int, None],
) -> RemediationPlan:
    """
    Build the ordered remediation plan.

    Only the aggregation summary and the configuration value are consulted.
    Output holds 0-4 entries: configuration entry first, then event entries
    in category priority order.
    """
    config_value = ConfigurationValue.coerce(config_value)
    entries = []
    anomalies = []

    config_entry = CONFIG_ENTRIES[config_value.mode]
    if config_entry is not None:
        entries.append(config_entry)
    if config_value.is_anomalous:
        anomalies.append(
            f"{UNKNOWN_CONFIGURATION_VALUE}: {ENFORCEMENT_VALUE_NAME}={config_value.raw} "
            f"is not 0, 1 or 2; enforcement state unknown"
        )

    for category in CATEGORY_ORDER:
        n = aggregation.count(category)
        if n <= 0:
            continue
        issue, action, command = EVENT_POLICY[category]
        entries.append(RemediationEntry(
            issue=f"{_plural(n)}: {issue}",
            impact=Impact.HIGH,
            action=action,
            command=command,
        ))

    return RemediationPlan(entries=tuple(entries), anomalies=tuple(anomalies))
