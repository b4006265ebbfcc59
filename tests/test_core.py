"""
Tests for the aggregation and remediation core.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from certmap_audit import (
    ConfigurationValue,
    EnforcementMode,
    EventCategory,
    EventRecord,
    Impact,
    RemediationEntry,
    aggregate,
    build_remediation,
    summarize_by_user,
)
from certmap_audit.errors import UNKNOWN_CONFIGURATION_VALUE

NSM = EventCategory.NO_STRONG_MAPPING
PRE = EventCategory.CERTIFICATE_PREDATES_ACCOUNT
SID = EventCategory.SID_MISMATCH

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def make_records(categories, user="alice@contoso.com"):
    return [
        EventRecord(timestamp=T0 + timedelta(minutes=i), category=c, user=user)
        for i, c in enumerate(categories)
    ]


# ---------------------------------------------------------------------------
# Records / enums
# ---------------------------------------------------------------------------

def test_category_event_ids():
    assert [c.event_id for c in EventCategory] == [39, 40, 41]
    assert EventCategory.from_event_id(40) is PRE
    with pytest.raises(ValueError):
        EventCategory.from_event_id(4768)


def test_record_rejects_unknown_category():
    with pytest.raises(ValueError):
        EventRecord(timestamp=T0, category="WeakMapping")


def test_record_coerces_label_and_naive_timestamp():
    r = EventRecord(timestamp=datetime(2026, 1, 1, 12, 0), category="SidMismatch", user=None)
    assert r.category is SID
    assert r.timestamp.tzinfo is not None
    assert r.user == ""
    with pytest.raises(Exception):
        r.user = "mallory"


def test_configuration_value_from_raw():
    assert ConfigurationValue.from_raw(None).mode is EnforcementMode.UNSET
    assert ConfigurationValue.from_raw(0).mode is EnforcementMode.DISABLED
    assert ConfigurationValue.from_raw(1).mode is EnforcementMode.AUDIT
    assert ConfigurationValue.from_raw(2).mode is EnforcementMode.ENFORCED
    odd = ConfigurationValue.from_raw(7)
    assert odd.mode is EnforcementMode.UNKNOWN
    assert odd.raw == 7
    assert odd.is_anomalous


# ---------------------------------------------------------------------------
# aggregate
# ---------------------------------------------------------------------------

def test_aggregate_empty_is_zero_filled():
    agg = aggregate([])
    assert agg.total_events == 0
    assert set(agg.counts) == set(EventCategory)
    assert all(v == 0 for v in agg.counts.values())


def test_aggregate_counts_sum_to_total_and_keep_duplicates():
    recs = make_records([NSM, NSM, SID, NSM, PRE, SID])
    recs.append(recs[0])  # exact duplicate counts again
    agg = aggregate(recs)
    assert agg.count(NSM) == 4
    assert agg.count(PRE) == 1
    assert agg.count(SID) == 2
    assert sum(agg.counts.values()) == agg.total_events == 7


def test_aggregate_does_not_mutate_or_reorder_input():
    recs = make_records([SID, NSM, PRE])
    before = list(recs)
    aggregate(recs)
    assert recs == before


def test_aggregate_is_idempotent():
    recs = make_records([PRE, NSM, NSM])
    first, second = aggregate(recs), aggregate(recs)
    assert dict(first.counts) == dict(second.counts)
    assert first.total_events == second.total_events == 3


def test_aggregate_enforcement_narrative():
    assert aggregate([]).enforcement == ""
    assert "Full Enforcement" in aggregate([], ConfigurationValue.from_raw(2)).enforcement
    assert "(9)" in aggregate([], ConfigurationValue.from_raw(9)).enforcement


def test_summary_frame_in_priority_order():
    frame = aggregate(make_records([SID, SID, NSM])).as_frame()
    assert frame["category"].tolist() == ["NoStrongMapping", "CertificatePredatesAccount", "SidMismatch"]
    assert frame["count"].tolist() == [1, 0, 2]


def test_summarize_by_user():
    recs = make_records([NSM, NSM, SID], user="bob@contoso.com") + make_records([PRE], user="alice@contoso.com")
    users = summarize_by_user(recs)
    assert users.iloc[0]["user"] == "bob@contoso.com"
    assert users.iloc[0]["category"] == "NoStrongMapping"
    assert int(users.iloc[0]["events"]) == 2
    assert len(users) == 3
    assert summarize_by_user([]).empty


# ---------------------------------------------------------------------------
# build_remediation
# ---------------------------------------------------------------------------

def test_empty_and_enforced_gives_empty_plan():
    plan = build_remediation(aggregate([]), ConfigurationValue.from_raw(2))
    assert len(plan) == 0
    assert plan.anomalies == ()


def test_disabled_with_one_no_strong_mapping_event():
    plan = build_remediation(aggregate(make_records([NSM])), ConfigurationValue.from_raw(0))
    assert len(plan) == 2
    assert plan[0].impact is Impact.HIGH
    assert "Disabled" in plan[0].issue
    assert "1" in plan[1].issue
    assert "event 39" in plan[1].issue


@pytest.mark.parametrize("raw,impact", [(None, Impact.HIGH), (0, Impact.HIGH), (1, Impact.MEDIUM)])
def test_config_entry_impacts(raw, impact):
    plan = build_remediation(aggregate([]), raw)
    assert len(plan) == 1
    assert plan[0].impact is impact


def test_audit_recommends_enforced():
    plan = build_remediation(aggregate([]), ConfigurationValue.from_raw(1))
    assert "/d 2" in plan[0].command


def test_unknown_value_flags_anomaly_and_keeps_event_entries():
    plan = build_remediation(aggregate(make_records([SID, NSM])), ConfigurationValue.from_raw(5))
    assert len(plan) == 2
    assert all("StrongCertificateBindingEnforcement" not in e.issue for e in plan)
    assert len(plan.anomalies) == 1
    assert plan.anomalies[0].startswith(UNKNOWN_CONFIGURATION_VALUE)


def test_unknown_value_is_not_treated_as_enforced():
    enforced = build_remediation(aggregate([]), 2)
    unknown = build_remediation(aggregate([]), 3)
    assert enforced.anomalies == ()
    assert unknown.anomalies != ()


def test_event_entries_follow_priority_order():
    recs = make_records([SID, SID, PRE, SID, NSM])
    plan = build_remediation(aggregate(recs), 2)
    assert len(plan) == 3
    assert plan[0].issue.startswith("1 event:") and "event 39" in plan[0].issue
    assert plan[1].issue.startswith("1 event:") and "event 40" in plan[1].issue
    assert plan[2].issue.startswith("3 events:") and "event 41" in plan[2].issue
    reversed_plan = build_remediation(aggregate(list(reversed(recs))), 2)
    assert [e.issue for e in reversed_plan] == [e.issue for e in plan]


def test_maximum_plan_length():
    plan = build_remediation(aggregate(make_records([NSM, PRE, SID])), None)
    assert len(plan) == 4
    assert "not configured" in plan[0].issue
    assert all(e.impact is Impact.HIGH for e in plan)


def test_remediation_entry_rejects_unknown_impact():
    with pytest.raises(ValueError):
        RemediationEntry(issue="x", impact="LOW", action="y", command="z")
    assert RemediationEntry(issue="x", impact="MEDIUM", action="y", command="z").impact is Impact.MEDIUM


def test_plan_frame_preserves_order():
    plan = build_remediation(aggregate(make_records([PRE, NSM])), 1)
    frame = plan.as_frame()
    assert frame["priority"].tolist() == [1, 2, 3]
    assert frame["impact"].tolist() == ["MEDIUM", "HIGH", "HIGH"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
