"""KB5014754 certificate-mapping audit runner.

Usage:
  # Demo on synthetic events, enforcement value unset
  python -m certmap_audit.pipeline --synthetic --enforcement unset

  # Exported System log + exported Kdc key, last 14 days
  python -m certmap_audit.pipeline --input events.csv --registry-export kdc.reg --days 14

  # On a domain controller
  certmap-audit --input events.csv --live-registry

Outputs (in output/ by default):
  - events.csv, summary.csv, remediation.csv, users.csv, anomalies.csv
  - category_counts.png (optional)
  - report.html (optional)

Exit status: 0 ok, 1 findings with --fail-on-findings, 2 source/registry unavailable
or invalid window/configuration (bad --start/--end is rejected by argparse, also 2).
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from .aggregate import AggregationResult, aggregate
from .config import AuditConfig
from .errors import CertMapAuditError
from .remediation import RemediationPlan, build_remediation
from .report import ReportSink
from .schema import ConfigurationValue, EventRecord
from .sources import (
    ConfigurationReader,
    EventSource,
    ExportedConfigReader,
    ExportedLogEventSource,
    RegistryConfigReader,
    StaticConfigReader,
    SyntheticEventSource,
    default_window,
)

logger = logging.getLogger("certmap_audit")


@dataclass
class AuditResult:
    """Everything one run produced."""
    records: List[EventRecord] = field(default_factory=list)
    config_value: Optional[ConfigurationValue] = None
    aggregation: Optional[AggregationResult] = None
    plan: RemediationPlan = field(default_factory=RemediationPlan)
    window: Optional[Tuple[datetime, datetime]] = None
    artifacts: Dict[str, Path] = field(default_factory=dict)


def build_event_source(cfg: AuditConfig) -> EventSource:
    scfg = cfg.source
    if scfg.kind == "synthetic":
        return SyntheticEventSource(n_events=scfg.n_events, seed=scfg.random_seed)
    if scfg.kind == "export":
        return ExportedLogEventSource(scfg.input_path, scfg)
    raise ValueError(f"Unknown source kind: {scfg.kind}. Use 'export' or 'synthetic'.")


def build_config_reader(cfg: AuditConfig) -> ConfigurationReader:
    rcfg = cfg.registry
    if rcfg.kind == "static":
        return StaticConfigReader(rcfg.raw_value)
    if rcfg.kind == "export":
        if rcfg.export_path is None:
            raise ValueError("registry.kind='export' needs registry.export_path")
        return ExportedConfigReader(rcfg.export_path)
    if rcfg.kind == "registry":
        return RegistryConfigReader()
    raise ValueError(f"Unknown registry kind: {rcfg.kind}. Use 'registry', 'export' or 'static'.")


def resolve_window(cfg: AuditConfig, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """
    Closed [start, end] scan window. Explicit time_min/time_max win over
    days_back; a date-only time_max covers that whole day.
    """
    scfg = cfg.source
    start, end = default_window(scfg.days_back, now)
    if scfg.time_max:
        ts = pd.Timestamp(scfg.time_max)
        if len(scfg.time_max.strip()) == 10:
            ts = ts + pd.Timedelta(days=1) - pd.Timedelta(microseconds=1)
        end = (ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")).to_pydatetime()
        if not scfg.time_min:
            start = end - timedelta(days=scfg.days_back)
    if scfg.time_min:
        ts = pd.Timestamp(scfg.time_min)
        start = (ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")).to_pydatetime()
    if start > end:
        raise ValueError(f"Scan window start {start} is after end {end}")
    return start, end


def run(
    cfg: AuditConfig,
    source: Optional[EventSource] = None,
    reader: Optional[ConfigurationReader] = None,
    now: Optional[datetime] = None,
) -> AuditResult:
    """Fetch inputs, run aggregation + remediation, write reports.

    Collaborator failures propagate before the core runs.
    """
    source = source or build_event_source(cfg)
    reader = reader or build_config_reader(cfg)
    start, end = resolve_window(cfg, now)

    logger.info("Reading enforcement mode (%s)", type(reader).__name__)
    config_value = reader.read()
    logger.info("Enforcement mode: %s", config_value.describe())

    logger.info("Fetching KDC events %s .. %s", start.isoformat(), end.isoformat())
    records = source.fetch(start, end)
    logger.info("Fetched %d events", len(records))

    aggregation = aggregate(records, config_value)
    plan = build_remediation(aggregation, config_value)
    for notice in plan.anomalies:
        logger.warning(notice)

    metadata = {
        "Generated": (now or datetime.now(timezone.utc)).isoformat(timespec="seconds"),
        "Window start": start.isoformat(timespec="seconds"),
        "Window end": end.isoformat(timespec="seconds"),
        "Event source": type(source).__name__,
        "StrongCertificateBindingEnforcement": config_value.describe(),
    }
    artifacts = ReportSink(cfg.report).write(aggregation, plan, records, metadata)
    logger.info("Done. Outputs in %s", cfg.report.output_dir)

    return AuditResult(
        records=records,
        config_value=config_value,
        aggregation=aggregation,
        plan=plan,
        window=(start, end),
        artifacts=artifacts,
    )


def _date_arg(value: str) -> str:
    try:
        pd.Timestamp(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an ISO date or date/time, got {value!r}")
    return value


def _enforcement_arg(value: str) -> Optional[int]:
    if value.strip().lower() in ("unset", "none", ""):
        return None
    try:
        return int(value, 0)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer or 'unset', got {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="certmap-audit",
        description="Audit KDC certificate-mapping enforcement (KB5014754) and events 39/40/41",
    )
    parser.add_argument("--config",          default=None, help="AuditConfig JSON file")
    parser.add_argument("--input",           default=None, help="System log export (.csv/.jsonl)")
    parser.add_argument("--synthetic",       action="store_true", help="Use generated demo events")
    parser.add_argument("--n-events",        type=int, default=None, help="Synthetic event count")
    parser.add_argument("--seed",            type=int, default=None, help="Synthetic RNG seed")
    parser.add_argument("--days",            type=int, default=None, help="Scan the last N days")
    parser.add_argument("--start",           type=_date_arg, default=None, help="Window start (ISO date/time)")
    parser.add_argument("--end",             type=_date_arg, default=None, help="Window end, inclusive (ISO date/time)")

    reg = parser.add_mutually_exclusive_group()
    reg.add_argument("--registry-export",    default=None, help="reg export (.reg) or JSON file")
    reg.add_argument("--enforcement",        type=_enforcement_arg, default=argparse.SUPPRESS,
                     help="Raw StrongCertificateBindingEnforcement value or 'unset'")
    reg.add_argument("--live-registry",      action="store_true", help="Read HKLM on this host")

    parser.add_argument("--output",          default=None, help="Output directory")
    parser.add_argument("--quiet",           action="store_true", help="No console summary")
    parser.add_argument("--no-html",         action="store_true")
    parser.add_argument("--no-plots",        action="store_true")
    parser.add_argument("--fail-on-findings", action="store_true",
                        help="Exit 1 when any remediation entry is produced")
    parser.add_argument("--verbose",         action="store_true")
    return parser


def config_from_args(args: argparse.Namespace) -> AuditConfig:
    cfg = AuditConfig.from_json(args.config) if args.config else AuditConfig()
    source, registry, report = cfg.source, cfg.registry, cfg.report

    if args.synthetic:
        source = dataclasses.replace(source, kind="synthetic")
    elif args.input:
        source = dataclasses.replace(source, kind="export", input_path=Path(args.input))
    if args.n_events is not None:
        source = dataclasses.replace(source, n_events=args.n_events)
    if args.seed is not None:
        source = dataclasses.replace(source, random_seed=args.seed)
    if args.days is not None:
        source = dataclasses.replace(source, days_back=args.days)
    if args.start:
        source = dataclasses.replace(source, time_min=args.start)
    if args.end:
        source = dataclasses.replace(source, time_max=args.end)

    if args.registry_export:
        registry = dataclasses.replace(registry, kind="export", export_path=Path(args.registry_export))
    elif args.live_registry:
        registry = dataclasses.replace(registry, kind="registry")
    elif hasattr(args, "enforcement"):
        registry = dataclasses.replace(registry, kind="static", raw_value=args.enforcement)

    if args.output:
        report = dataclasses.replace(report, output_dir=Path(args.output))
    if args.quiet:
        report = dataclasses.replace(report, quiet=True)
    if args.no_html:
        report = dataclasses.replace(report, make_html=False)
    if args.no_plots:
        report = dataclasses.replace(report, make_plots=False)

    return dataclasses.replace(
        cfg, source=source, registry=registry, report=report,
        fail_on_findings=cfg.fail_on_findings or args.fail_on_findings,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    cfg = config_from_args(args)
    try:
        result = run(cfg)
    except CertMapAuditError as e:
        logger.error("%s: %s", type(e).__name__, e)
        return 2
    except ValueError as e:
        # bad window or source/registry kind from --config
        logger.error("Invalid configuration: %s", e)
        return 2

    if cfg.fail_on_findings and len(result.plan) > 0:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
