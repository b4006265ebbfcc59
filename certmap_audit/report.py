"""
Report sink: CSV, HTML and console output.

Outputs (in ReportConfig.output_dir):
  - events.csv           one row per event record, in the order received
  - summary.csv          one row per category
  - remediation.csv      one row per remediation entry, in plan order
  - users.csv            per-account breakdown
  - anomalies.csv        reportable anomalies (e.g. UnknownConfigurationValue); header only when none
  - category_counts.png  (optional)
  - report.html          (optional)

The sink renders what it is given; it never re-sorts or edits entries.
"""
from __future__ import annotations

import html
import logging
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence

import pandas as pd

from .aggregate import AggregationResult, summarize_by_user
from .config import ReportConfig
from .plots import plot_category_counts
from .remediation import RemediationPlan
from .schema import EventRecord, records_to_frame

logger = logging.getLogger("certmap_audit.report")


def ensure_output_dir(cfg: ReportConfig) -> Path:
    out = Path(cfg.output_dir)
    out.mkdir(parents=True, exist_ok=True)
    return out


def render_console(
    aggregation: AggregationResult,
    plan: RemediationPlan,
    metadata: Optional[Mapping[str, object]] = None,
) -> str:
    lines = ["KB5014754 certificate-mapping audit", "=" * 36]
    for k, v in (metadata or {}).items():
        lines.append(f"{k}: {v}")
    if aggregation.enforcement:
        lines += ["", aggregation.enforcement]

    lines += ["", "Events by category:"]
    for _, row in aggregation.as_frame().iterrows():
        lines.append(f"  {row['category']:<28} (ID {row['event_id']}): {row['count']}")
    lines.append(f"  {'Total':<35}: {aggregation.total_events}")

    for notice in plan.anomalies:
        lines += ["", f"WARNING: {notice}"]

    lines.append("")
    if len(plan) == 0:
        lines.append("No remediation required.")
    else:
        lines.append("Remediation:")
        for i, e in enumerate(plan, start=1):
            lines.append(f"  {i}. [{e.impact.value}] {e.issue}")
            lines.append(f"     Action:  {e.action}")
            lines.append(f"     Example: {e.command}")
    return "\n".join(lines)


_HTML_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{title}</title>
<style>
body {{ font-family: Segoe UI, Arial, sans-serif; margin: 2em; color: #222; }}
table {{ border-collapse: collapse; margin-bottom: 1.5em; }}
th, td {{ border: 1px solid #ccc; padding: 4px 8px; text-align: left; vertical-align: top; }}
th {{ background: #f0f0f0; }}
.notice {{ background: #fff3cd; border: 1px solid #e0c060; padding: 8px; }}
.ok {{ color: #2e7d32; }}
</style>
</head>
<body>
<h1>{title}</h1>
{metadata}
<h2>Enforcement mode</h2>
<p>{enforcement}</p>
{anomalies}
<h2>Events by category</h2>
{summary}
{chart}
<h2>Remediation</h2>
{remediation}
<h2>Affected accounts</h2>
{users}
<h2>Events</h2>
{events}
</body>
</html>
"""


class ReportSink:
    def __init__(self, cfg: Optional[ReportConfig] = None):
        self.cfg = cfg or ReportConfig()

    def write(
        self,
        aggregation: AggregationResult,
        plan: RemediationPlan,
        records: Sequence[EventRecord],
        metadata: Optional[Mapping[str, object]] = None,
    ) -> Dict[str, Path]:
        cfg = self.cfg
        out_dir = ensure_output_dir(cfg)
        metadata = dict(metadata or {})

        events = records_to_frame(records)
        summary = aggregation.as_frame()
        remediation = plan.as_frame()
        users = summarize_by_user(records)

        anomalies = pd.DataFrame(
            {"code": [a.split(":", 1)[0] for a in plan.anomalies], "notice": list(plan.anomalies)},
            columns=["code", "notice"],
        )

        artifacts: Dict[str, Path] = {}
        for name, frame in (("events", events), ("summary", summary),
                            ("remediation", remediation), ("users", users),
                            ("anomalies", anomalies)):
            path = out_dir / f"{name}.csv"
            frame.to_csv(path, index=False)
            artifacts[name] = path
        logger.info("Wrote %d events, %d remediation entries to %s",
                    len(events), len(remediation), out_dir)

        if cfg.make_plots:
            artifacts["category_counts"] = plot_category_counts(summary, out_dir)

        if cfg.make_html:
            path = out_dir / "report.html"
            path.write_text(
                self._render_html(aggregation, plan, events, summary, remediation,
                                  users, metadata, artifacts.get("category_counts")),
                encoding="utf-8",
            )
            artifacts["html"] = path

        if not cfg.quiet:
            print(render_console(aggregation, plan, metadata))

        return artifacts

    @staticmethod
    def _render_html(aggregation, plan, events, summary, remediation, users,
                     metadata, chart_path) -> str:
        esc = html.escape
        meta_html = ""
        if metadata:
            rows = "".join(
                f"<tr><th>{esc(str(k))}</th><td>{esc(str(v))}</td></tr>"
                for k, v in metadata.items()
            )
            meta_html = f"<table>{rows}</table>"

        anomalies = "".join(f'<p class="notice">{esc(a)}</p>' for a in plan.anomalies)
        chart = f'<img src="{esc(chart_path.name)}" alt="events by category">' if chart_path else ""

        if len(plan) == 0:
            remediation_html = '<p class="ok">No remediation required.</p>'
        else:
            remediation_html = remediation.to_html(index=False, escape=True)

        def _table(df: pd.DataFrame, empty: str) -> str:
            return df.to_html(index=False, escape=True) if len(df) else f"<p>{empty}</p>"

        return _HTML_TEMPLATE.format(
            title="KB5014754 Certificate Mapping Audit",
            metadata=meta_html,
            enforcement=esc(aggregation.enforcement or "Not read"),
            anomalies=anomalies,
            summary=summary.to_html(index=False),
            chart=chart,
            remediation=remediation_html,
            users=_table(users, "No affected accounts."),
            events=_table(events, "No events 39/40/41 in the scanned window."),
        )
