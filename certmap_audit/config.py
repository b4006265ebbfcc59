"""
Audit configuration.
=====================
Sub-configs for the three boundary collaborators (event source,
enforcement-mode reader, report sink) under one AuditConfig. Nothing in the
core reads these; pipeline.run() hands each collaborator its slice.

Usage:
    cfg = AuditConfig()                                  # defaults
    cfg = AuditConfig(report=ReportConfig(quiet=True))
    cfg = AuditConfig.from_json("audit.json")
"""
from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple


@dataclass
class SourceConfig:
    """Where events come from and which window to scan."""
    # "export" = CSV/JSONL export of the System log, "synthetic" = generated demo data
    kind: str = "export"
    input_path: Path = Path("data/system_events.csv")

    # Column candidates for exported logs (first found wins)
    timestamp_cols: Tuple[str, ...] = ("TimeCreated", "TimeGenerated", "timestamp", "Date and Time")
    event_id_cols: Tuple[str, ...] = ("Id", "EventID", "EventId", "event_id", "Event ID")
    message_cols: Tuple[str, ...] = ("Message", "message", "Description")
    provider_cols: Tuple[str, ...] = ("ProviderName", "Source", "Provider")

    # Scan window: explicit ISO bounds win over days_back
    days_back: int = 30
    time_min: Optional[str] = None
    time_max: Optional[str] = None

    # Synthetic generator
    n_events: int = 60
    random_seed: int = 42


@dataclass
class RegistryConfig:
    """Where the StrongCertificateBindingEnforcement value comes from."""
    # "registry" = live winreg read, "export" = .json/.reg file, "static" = raw_value below
    kind: str = "static"
    export_path: Optional[Path] = None
    raw_value: Optional[int] = None


@dataclass
class ReportConfig:
    output_dir: Path = Path("output")
    quiet: bool = False
    make_html: bool = True
    make_plots: bool = True


@dataclass
class AuditConfig:
    source: SourceConfig = field(default_factory=SourceConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    report: ReportConfig = field(default_factory=ReportConfig)

    # Non-zero exit when the plan has entries (for scheduled tasks / CI)
    fail_on_findings: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    def to_json(self, path: str) -> None:
        with open(path, "w") as f:
            json.dump(self.as_dict(), f, indent=2, default=str)

    @classmethod
    def from_json(cls, path: str) -> "AuditConfig":
        with open(path) as f:
            d = json.load(f)

        src = dict(d.get("source", {}))
        if "input_path" in src:
            src["input_path"] = Path(src["input_path"])
        for key in ("timestamp_cols", "event_id_cols", "message_cols", "provider_cols"):
            if key in src:
                src[key] = tuple(src[key])

        reg = dict(d.get("registry", {}))
        if reg.get("export_path"):
            reg["export_path"] = Path(reg["export_path"])

        rep = dict(d.get("report", {}))
        if "output_dir" in rep:
            rep["output_dir"] = Path(rep["output_dir"])

        return cls(
            source=SourceConfig(**src),
            registry=RegistryConfig(**reg),
            report=ReportConfig(**rep),
            fail_on_findings=d.get("fail_on_findings", False),
        )
