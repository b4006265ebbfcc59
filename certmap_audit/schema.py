"""
Canonical record types.
========================
Closed enumerations for the three KDC event categories and the
StrongCertificateBindingEnforcement modes, plus the immutable EventRecord
every source normalizes into.

KDC System-log events (source: Kerberos-Key-Distribution-Center):
  39 -> NoStrongMapping             certificate valid but not strongly mapped
  40 -> CertificatePredatesAccount  certificate issued before the account existed
  41 -> SidMismatch                 SID extension does not match the account

Canonical event columns (records_to_frame):
  timestamp, event_id, category, user, cert_subject, cert_issuer,
  serial_number, thumbprint
"""
from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional, Tuple

import pandas as pd


class EventCategory(Enum):
    """Declaration order is the remediation priority order."""
    NO_STRONG_MAPPING = "NoStrongMapping"
    CERTIFICATE_PREDATES_ACCOUNT = "CertificatePredatesAccount"
    SID_MISMATCH = "SidMismatch"

    @property
    def event_id(self) -> int:
        return _CATEGORY_TO_EVENT_ID[self]

    @classmethod
    def from_event_id(cls, event_id: int) -> "EventCategory":
        try:
            return _EVENT_ID_TO_CATEGORY[int(event_id)]
        except (KeyError, TypeError, ValueError):
            raise ValueError(
                f"Event ID {event_id!r} is not a KB5014754 KDC event. "
                f"Expected one of {sorted(_EVENT_ID_TO_CATEGORY)}"
            ) from None

    @classmethod
    def coerce(cls, value) -> "EventCategory":
        """Accept an EventCategory, its label, or its source event ID."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            if value.strip().isdigit():
                return cls.from_event_id(int(value))
            try:
                return cls(value)
            except ValueError:
                raise ValueError(
                    f"Unknown event category {value!r}. "
                    f"Expected one of {[c.value for c in cls]}"
                ) from None
        if isinstance(value, int) and not isinstance(value, bool):
            return cls.from_event_id(value)
        raise ValueError(f"Unknown event category {value!r}")


_CATEGORY_TO_EVENT_ID = {
    EventCategory.NO_STRONG_MAPPING: 39,
    EventCategory.CERTIFICATE_PREDATES_ACCOUNT: 40,
    EventCategory.SID_MISMATCH: 41,
}
_EVENT_ID_TO_CATEGORY = {eid: cat for cat, eid in _CATEGORY_TO_EVENT_ID.items()}

KDC_EVENT_IDS: Tuple[int, ...] = tuple(sorted(_EVENT_ID_TO_CATEGORY))
CATEGORY_ORDER: Tuple[EventCategory, ...] = tuple(EventCategory)


class EnforcementMode(Enum):
    DISABLED = "Disabled"
    AUDIT = "Audit"
    ENFORCED = "Enforced"
    UNSET = "Unset"
    UNKNOWN = "Unknown"   # raw value outside 0/1/2


_RAW_TO_MODE = {
    0: EnforcementMode.DISABLED,
    1: EnforcementMode.AUDIT,
    2: EnforcementMode.ENFORCED,
}


@dataclass(frozen=True)
class ConfigurationValue:
    """StrongCertificateBindingEnforcement as read from the host."""
    mode: EnforcementMode
    raw: Optional[int] = None

    @classmethod
    def from_raw(cls, raw: Optional[int]) -> "ConfigurationValue":
        if raw is None:
            return cls(EnforcementMode.UNSET, None)
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise ValueError(f"Enforcement value must be an int or None, got {raw!r}")
        return cls(_RAW_TO_MODE.get(raw, EnforcementMode.UNKNOWN), raw)

    @classmethod
    def coerce(cls, value) -> "ConfigurationValue":
        if isinstance(value, cls):
            return value
        return cls.from_raw(value)

    @property
    def is_anomalous(self) -> bool:
        return self.mode is EnforcementMode.UNKNOWN

    def describe(self) -> str:
        if self.mode is EnforcementMode.UNSET:
            return "Unset (value not present)"
        return f"{self.mode.value} ({self.raw})"


def _to_utc(ts) -> datetime:
    if isinstance(ts, pd.Timestamp):
        ts = ts.to_pydatetime()
    if not isinstance(ts, datetime):
        raise ValueError(f"timestamp must be a datetime, got {type(ts).__name__}")
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


@dataclass(frozen=True)
class EventRecord:
    timestamp: datetime
    category: EventCategory
    user: str = ""
    cert_subject: str = ""
    cert_issuer: str = ""
    serial_number: str = ""
    thumbprint: str = ""

    def __post_init__(self):
        # frozen: normalize through object.__setattr__
        object.__setattr__(self, "timestamp", _to_utc(self.timestamp))
        object.__setattr__(self, "category", EventCategory.coerce(self.category))
        for name in ("user", "cert_subject", "cert_issuer", "serial_number", "thumbprint"):
            value = getattr(self, name)
            object.__setattr__(self, name, "" if value is None else str(value))

    @property
    def event_id(self) -> int:
        return self.category.event_id


EVENT_COLUMNS: Tuple[str, ...] = (
    "timestamp", "event_id", "category", "user",
    "cert_subject", "cert_issuer", "serial_number", "thumbprint",
)


def records_to_frame(records: Iterable[EventRecord]) -> pd.DataFrame:
    """One row per record, input order preserved."""
    rows = []
    for r in records:
        row = {f.name: getattr(r, f.name) for f in fields(r)}
        row["category"] = r.category.value
        row["event_id"] = r.event_id
        rows.append(row)
    return pd.DataFrame(rows, columns=list(EVENT_COLUMNS))
