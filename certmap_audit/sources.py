"""
Boundary collaborators: event sources and enforcement-mode readers.
====================================================================
Event sources return fully materialized EventRecord lists for a closed
[start, end] window. Configuration readers return a ConfigurationValue.
Both raise SourceUnavailable / ConfigurationUnavailable when they cannot
deliver; a partially parseable row still becomes a record (unparsed text
fields are left as "").

Supported event sources
-----------------------
1. ExportedLogEventSource - CSV / JSONL export of the System log, e.g.
       Get-WinEvent -FilterHashtable @{LogName='System'; ProviderName='Kerberos-Key-Distribution-Center'; Id=39,40,41} |
           Select TimeCreated, Id, ProviderName, Message | Export-Csv events.csv
2. SyntheticEventSource   - seeded generator for demos and tests
3. InMemoryEventSource    - wraps an existing record list

Supported configuration readers
-------------------------------
1. RegistryConfigReader   - live read of HKLM\\...\\Kdc via winreg (Windows only)
2. ExportedConfigReader   - `reg export` (.reg) or JSON file
3. StaticConfigReader     - a raw value supplied on the command line
"""
from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

import numpy as np
import pandas as pd

from .config import SourceConfig
from .errors import ConfigurationUnavailable, SourceUnavailable
from .schema import (
    CATEGORY_ORDER,
    ConfigurationValue,
    EventCategory,
    EventRecord,
    KDC_EVENT_IDS,
)

logger = logging.getLogger("certmap_audit.sources")


class EventSource(Protocol):
    def fetch(self, start: datetime, end: datetime) -> List[EventRecord]: ...


class ConfigurationReader(Protocol):
    def read(self) -> ConfigurationValue: ...


def _utc(ts) -> pd.Timestamp:
    ts = pd.Timestamp(ts)
    return ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")


def _first_present(df: pd.DataFrame, candidates: Iterable[str]) -> Optional[str]:
    for c in candidates:
        if c in df.columns:
            return c
    return None


# ---------------------------------------------------------------------------
# Message-body extraction
# ---------------------------------------------------------------------------

# KDC events 39/40/41 render their details as "Label: value" lines
FIELD_PATTERNS: Dict[str, re.Pattern] = {
    "user":          re.compile(r"(?im)^\s*User:\s*(.*?)\s*$"),
    "cert_subject":  re.compile(r"(?im)^\s*Certificate Subject:\s*(.*?)\s*$"),
    "cert_issuer":   re.compile(r"(?im)^\s*Certificate Issuer:\s*(.*?)\s*$"),
    "serial_number": re.compile(r"(?im)^\s*Certificate Serial Number:\s*(.*?)\s*$"),
    "thumbprint":    re.compile(r"(?im)^\s*Certificate Thumbprint:\s*(.*?)\s*$"),
}

# Structured export columns, used in preference to the message body
FIELD_COLUMNS: Dict[str, tuple] = {
    "user":          ("User", "user", "AccountName"),
    "cert_subject":  ("CertificateSubject", "cert_subject", "Subject"),
    "cert_issuer":   ("CertificateIssuer", "cert_issuer", "Issuer"),
    "serial_number": ("CertificateSerialNumber", "serial_number", "SerialNumber"),
    "thumbprint":    ("CertificateThumbprint", "thumbprint", "Thumbprint"),
}


def _clean(value) -> str:
    if value is None:
        return ""
    try:
        if pd.isna(value):
            return ""
    except (TypeError, ValueError):
        pass
    s = str(value).strip()
    # Subject is sometimes rendered with a "@@@" prefix
    return s[3:].strip() if s.startswith("@@@") else s


def extract_fields(message) -> Dict[str, str]:
    """Pull certificate/user fields out of a KDC event message; misses are ""."""
    text = _clean(message)
    out = {}
    for name, pattern in FIELD_PATTERNS.items():
        m = pattern.search(text) if text else None
        out[name] = _clean(m.group(1)) if m else ""
    return out


# ---------------------------------------------------------------------------
# Exported System log
# ---------------------------------------------------------------------------

KDC_PROVIDER_NAMES = (
    "kerberos-key-distribution-center",
    "microsoft-windows-kerberos-key-distribution-center",
    "kdc",
)

class ExportedLogEventSource:
    """Reads events 39/40/41 from a CSV or JSONL export of the System log."""

    def __init__(self, path, cfg: Optional[SourceConfig] = None):
        self.path = Path(path)
        self.cfg = cfg or SourceConfig()

    def _load(self) -> pd.DataFrame:
        if not self.path.exists():
            raise SourceUnavailable(f"Event export not found: {self.path}")
        suffix = self.path.suffix.lower()
        try:
            if suffix == ".csv":
                return pd.read_csv(self.path, low_memory=False)
            if suffix in (".jsonl", ".ndjson"):
                return pd.read_json(self.path, lines=True)
        except (ValueError, OSError, pd.errors.ParserError) as e:
            raise SourceUnavailable(f"Could not read {self.path}: {e}") from e
        raise SourceUnavailable(f"Unsupported export type: {suffix}. Use .csv or .jsonl")

    def fetch(self, start: datetime, end: datetime) -> List[EventRecord]:
        raw = self._load()
        logger.info("Loaded %d rows from %s", len(raw), self.path)
        if raw.empty:
            return []

        cfg = self.cfg
        ts_col = _first_present(raw, cfg.timestamp_cols)
        eid_col = _first_present(raw, cfg.event_id_cols)
        if ts_col is None or eid_col is None:
            raise SourceUnavailable(
                f"Export lacks timestamp/event ID columns. Tried: "
                f"{cfg.timestamp_cols} / {cfg.event_id_cols}. "
                f"Available: {list(raw.columns)[:30]}"
            )
        msg_col = _first_present(raw, cfg.message_cols)

        df = raw.copy()
        df["_eid"] = pd.to_numeric(df[eid_col], errors="coerce")
        df = df[df["_eid"].isin(KDC_EVENT_IDS)].copy()

        # IDs 39/40/41 are reused by other providers (41 = Kernel-Power reboot)
        provider_col = _first_present(raw, cfg.provider_cols)
        if provider_col is None:
            logger.warning(
                "No provider column (tried %s); events 39/40/41 from other providers "
                "will be counted", cfg.provider_cols,
            )
        else:
            provider = df[provider_col].fillna("").astype(str).str.strip().str.lower()
            others = int((~provider.isin(KDC_PROVIDER_NAMES)).sum())
            if others:
                logger.info("Skipping %d events 39/40/41 from non-KDC providers", others)
            df = df[provider.isin(KDC_PROVIDER_NAMES)].copy()

        df["_ts"] = pd.to_datetime(df[ts_col], errors="coerce", utc=True)
        bad_ts = int(df["_ts"].isna().sum())
        if bad_ts:
            logger.warning("Dropping %d KDC events with unparseable timestamps", bad_ts)
        df = df.dropna(subset=["_ts"])

        lo, hi = _utc(start), _utc(end)
        df = df[(df["_ts"] >= lo) & (df["_ts"] <= hi)]

        records = []
        for _, row in df.iterrows():
            parsed = extract_fields(row[msg_col]) if msg_col else {}
            values = {}
            for name, candidates in FIELD_COLUMNS.items():
                col = _first_present(df, candidates)
                v = _clean(row[col]) if col else ""
                values[name] = v or parsed.get(name, "")
            records.append(EventRecord(
                timestamp=row["_ts"].to_pydatetime(),
                category=EventCategory.from_event_id(int(row["_eid"])),
                **values,
            ))

        logger.info("Kept %d KDC events in window %s .. %s", len(records), lo, hi)
        return records


# ---------------------------------------------------------------------------
# Synthetic generator
# ---------------------------------------------------------------------------

DEFAULT_USERS = ("alice", "bob", "carol", "svc-web", "svc-sql", "admin-jdoe")


class SyntheticEventSource:
    """
    Seeded synthetic KDC events for demo runs and tests.

    Each user gets one certificate; events are drawn with the given category
    weights and spread uniformly over the requested window.
    """

    def __init__(
        self,
        n_events: int = 60,
        seed: int = 42,
        weights: Sequence[float] = (0.6, 0.25, 0.15),
        users: Sequence[str] = DEFAULT_USERS,
        domain: str = "contoso.com",
    ):
        if len(weights) != len(CATEGORY_ORDER):
            raise ValueError(f"Expected {len(CATEGORY_ORDER)} category weights, got {len(weights)}")
        if n_events < 0:
            raise ValueError("n_events must be >= 0")
        self.n_events = n_events
        self.seed = seed
        self.weights = np.asarray(weights, dtype=float) / float(np.sum(weights))
        self.users = tuple(users)
        self.domain = domain

    def _certificates(self, rng: np.random.Generator) -> Dict[str, Dict[str, str]]:
        dc = ",".join(f"DC={p}" for p in self.domain.split("."))
        ca = f"{self.domain.split('.')[0]}-DC01-CA"
        certs = {}
        for u in self.users:
            certs[u] = {
                "cert_subject": f"CN={u}, CN=Users, {dc}",
                "cert_issuer": ca,
                "serial_number": rng.bytes(10).hex().upper(),
                "thumbprint": rng.bytes(20).hex().upper(),
            }
        return certs

    def fetch(self, start: datetime, end: datetime) -> List[EventRecord]:
        lo, hi = _utc(start), _utc(end)
        if hi < lo:
            return []
        rng = np.random.default_rng(self.seed)
        certs = self._certificates(rng)
        span = (hi - lo).total_seconds()

        cat_idx = rng.choice(len(CATEGORY_ORDER), size=self.n_events, p=self.weights)
        user_idx = rng.integers(0, len(self.users), size=self.n_events)
        offsets = np.sort(rng.uniform(0.0, span, size=self.n_events))

        records = []
        for c, u, off in zip(cat_idx, user_idx, offsets):
            user = self.users[int(u)]
            records.append(EventRecord(
                timestamp=(lo + pd.Timedelta(seconds=float(off))).to_pydatetime(),
                category=CATEGORY_ORDER[int(c)],
                user=f"{user}@{self.domain}",
                **certs[user],
            ))
        logger.info("Generated %d synthetic KDC events (seed=%d)", len(records), self.seed)
        return records


class InMemoryEventSource:
    def __init__(self, records: Iterable[EventRecord]):
        self.records = list(records)

    def fetch(self, start: datetime, end: datetime) -> List[EventRecord]:
        lo, hi = _utc(start).to_pydatetime(), _utc(end).to_pydatetime()
        return [r for r in self.records if lo <= r.timestamp <= hi]


def default_window(days_back: int = 30, now: Optional[datetime] = None):
    """(start, end) covering the last `days_back` days up to `now`."""
    end = now or datetime.now(timezone.utc)
    return end - timedelta(days=days_back), end


# ---------------------------------------------------------------------------
# Enforcement-mode readers
# ---------------------------------------------------------------------------

KDC_SUBKEY = r"SYSTEM\CurrentControlSet\Services\Kdc"
ENFORCEMENT_VALUE = "StrongCertificateBindingEnforcement"


class StaticConfigReader:
    def __init__(self, raw: Optional[int]):
        self.raw = raw

    def read(self) -> ConfigurationValue:
        try:
            return ConfigurationValue.from_raw(self.raw)
        except ValueError as e:
            raise ConfigurationUnavailable(str(e)) from e


_REG_VALUE_RE = re.compile(
    r'^\s*"' + ENFORCEMENT_VALUE + r'"\s*=\s*(?P<data>.+?)\s*$',
    re.IGNORECASE | re.MULTILINE,
)


class ExportedConfigReader:
    """Reads the enforcement value from a `reg export` file or a JSON document."""

    def __init__(self, path):
        self.path = Path(path)

    def _read_text(self) -> str:
        data = self.path.read_bytes()
        # reg.exe writes UTF-16 LE with a BOM
        if data.startswith(b"\xff\xfe") or data.startswith(b"\xfe\xff"):
            return data.decode("utf-16")
        return data.decode("utf-8-sig")

    def read(self) -> ConfigurationValue:
        if not self.path.exists():
            raise ConfigurationUnavailable(f"Registry export not found: {self.path}")
        try:
            text = self._read_text()
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigurationUnavailable(f"Could not read {self.path}: {e}") from e

        if self.path.suffix.lower() == ".json":
            raw = self._parse_json(text)
        else:
            raw = self._parse_reg(text)
        logger.info("Read %s=%s from %s", ENFORCEMENT_VALUE, raw, self.path)
        return ConfigurationValue.from_raw(raw)

    def _parse_json(self, text: str) -> Optional[int]:
        try:
            doc = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigurationUnavailable(f"Malformed JSON in {self.path}: {e}") from e
        if not isinstance(doc, dict):
            raise ConfigurationUnavailable(f"Expected a JSON object in {self.path}")
        value = doc.get(ENFORCEMENT_VALUE)
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigurationUnavailable(
                f"{ENFORCEMENT_VALUE} must be an integer, got {value!r}"
            )
        return value

    def _parse_reg(self, text: str) -> Optional[int]:
        m = _REG_VALUE_RE.search(text)
        if m is None:
            return None
        data = m.group("data")
        if not data.lower().startswith("dword:"):
            raise ConfigurationUnavailable(f"{ENFORCEMENT_VALUE} is not a REG_DWORD: {data}")
        try:
            return int(data.split(":", 1)[1], 16)
        except ValueError as e:
            raise ConfigurationUnavailable(f"Bad dword data {data!r}") from e


class RegistryConfigReader:
    """
    Live, read-only lookup of HKLM\\SYSTEM\\CurrentControlSet\\Services\\Kdc.

    `winreg_module` may be injected; by default the standard library module
    is imported at read time (available on Windows only).
    """

    def __init__(self, subkey: str = KDC_SUBKEY, value_name: str = ENFORCEMENT_VALUE,
                 winreg_module=None):
        self.subkey = subkey
        self.value_name = value_name
        self._winreg = winreg_module

    def _module(self):
        if self._winreg is not None:
            return self._winreg
        try:
            import winreg
        except ImportError as e:
            raise ConfigurationUnavailable(
                "Live registry reads need Windows; use --registry-export or --enforcement"
            ) from e
        return winreg

    def read(self) -> ConfigurationValue:
        winreg = self._module()
        try:
            key = winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, self.subkey)
        except FileNotFoundError:
            logger.info("Key HKLM\\%s not found; treating value as unset", self.subkey)
            return ConfigurationValue.from_raw(None)
        except OSError as e:
            raise ConfigurationUnavailable(f"Cannot open HKLM\\{self.subkey}: {e}") from e

        try:
            value, value_type = winreg.QueryValueEx(key, self.value_name)
        except FileNotFoundError:
            return ConfigurationValue.from_raw(None)
        except OSError as e:
            raise ConfigurationUnavailable(f"Cannot read {self.value_name}: {e}") from e
        finally:
            winreg.CloseKey(key)

        if value_type != winreg.REG_DWORD:
            raise ConfigurationUnavailable(
                f"{self.value_name} has registry type {value_type}, expected REG_DWORD"
            )
        logger.info("Read %s=%s from HKLM\\%s", self.value_name, value, self.subkey)
        return ConfigurationValue.from_raw(int(value))
