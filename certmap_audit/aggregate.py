"""
Classification and aggregation.
================================
Partitions EventRecords by category and counts them. Every category is
always present in the result (zero-filled) so downstream policy code can
index counts without guarding for missing keys.

Nothing here reads flags, files or the clock; the same records always
produce the same AggregationResult.
"""
from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional, Sequence

import pandas as pd

from .schema import (
    CATEGORY_ORDER,
    ConfigurationValue,
    EnforcementMode,
    EventCategory,
    EventRecord,
)


ENFORCEMENT_NARRATIVE: Mapping[EnforcementMode, str] = {
    EnforcementMode.DISABLED: (
        "Strong certificate binding is DISABLED. Weak certificate mappings are "
        "accepted without auditing; authentication will fail once the KDC moves "
        "to Full Enforcement."
    ),
    EnforcementMode.AUDIT: (
        "Compatibility (audit) mode. Weakly mapped certificates are still accepted "
        "and logged as events 39/40/41 in the System log."
    ),
    EnforcementMode.ENFORCED: (
        "Full Enforcement mode. Certificates without a strong mapping are denied."
    ),
    EnforcementMode.UNSET: (
        "StrongCertificateBindingEnforcement is not configured. The KDC follows the "
        "default for its installed update level."
    ),
    EnforcementMode.UNKNOWN: (
        "StrongCertificateBindingEnforcement holds an unrecognized value ({raw}). "
        "The effective mode cannot be determined."
    ),
}


@dataclass(frozen=True)
class AggregationResult:
    counts: Mapping[EventCategory, int]
    total_events: int
    enforcement: str = ""
    config_value: Optional[ConfigurationValue] = None

    def count(self, category: EventCategory) -> int:
        return self.counts[category]

    def as_frame(self) -> pd.DataFrame:
        """One row per category, priority order."""
        return pd.DataFrame(
            {
                "event_id": [c.event_id for c in CATEGORY_ORDER],
                "category": [c.value for c in CATEGORY_ORDER],
                "count": [self.counts[c] for c in CATEGORY_ORDER],
            }
        )


def describe_enforcement(config_value: ConfigurationValue) -> str:
    return ENFORCEMENT_NARRATIVE[config_value.mode].format(raw=config_value.raw)


def aggregate(
    records: Sequence[EventRecord],
    config_value: Optional[ConfigurationValue] = None,
) -> AggregationResult:
    """
    Count records per category.

    Duplicates are counted independently; the caller's sequence is neither
    reordered nor modified. An empty sequence yields all-zero counts.
    """
    labels = pd.Series([r.category for r in records], dtype="object")
    per_category = labels.value_counts().reindex(list(CATEGORY_ORDER), fill_value=0)
    counts = {cat: int(per_category[cat]) for cat in CATEGORY_ORDER}

    enforcement = ""
    if config_value is not None:
        config_value = ConfigurationValue.coerce(config_value)
        enforcement = describe_enforcement(config_value)

    return AggregationResult(
        counts=MappingProxyType(counts),
        total_events=sum(counts.values()),
        enforcement=enforcement,
        config_value=config_value,
    )


USER_SUMMARY_COLUMNS = ("user", "category", "event_id", "events", "first_seen", "last_seen")


def summarize_by_user(records: Sequence[EventRecord]) -> pd.DataFrame:
    """
    Per-account breakdown: one row per (user, category) with event count and
    first/last occurrence. Sorted by count (desc), then user, then category
    priority. Records with an empty user are grouped under "".
    """
    if not records:
        return pd.DataFrame(columns=list(USER_SUMMARY_COLUMNS))

    df = pd.DataFrame({
        "user": [r.user for r in records],
        "category": [r.category.value for r in records],
        "event_id": [r.event_id for r in records],
        "timestamp": [r.timestamp for r in records],
    })
    g = df.groupby(["user", "category", "event_id"], sort=False)
    out = g["timestamp"].agg(events="size", first_seen="min", last_seen="max").reset_index()

    priority = {c.value: i for i, c in enumerate(CATEGORY_ORDER)}
    out["_prio"] = out["category"].map(priority)
    out = out.sort_values(["events", "user", "_prio"], ascending=[False, True, True])
    out = out.drop(columns="_prio").reset_index(drop=True)
    out["events"] = out["events"].astype(int)
    return out[list(USER_SUMMARY_COLUMNS)]
