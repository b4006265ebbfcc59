"""Simple plots for the audit report."""

from __future__ import annotations

from pathlib import Path

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import pandas as pd


def plot_category_counts(summary: pd.DataFrame, out_dir: Path) -> Path:
    """Bar chart of events per category (summary = AggregationResult.as_frame())."""
    path = out_dir / "category_counts.png"
    labels = [f"{c}\n(event {e})" for c, e in zip(summary["category"], summary["event_id"])]
    plt.figure(figsize=(7, 4))
    plt.bar(labels, summary["count"].astype(int), color=["#c0392b", "#e67e22", "#8e44ad"])
    plt.title("KDC certificate-mapping events by category")
    plt.ylabel("events")
    plt.tight_layout()
    plt.savefig(path, dpi=160)
    plt.close()
    return path
