from datetime import datetime, timezone

import pytest

from lanscout.analytics.diff import (
    FieldChange,
    KeySpaceMismatchError,
    SeverityMap,
    diff_snapshots,
    field_comparator,
)
from lanscout.models import ChangeKind, Severity, Snapshot

NOW = datetime(2026, 3, 1, 8, 30, tzinfo=timezone.utc)


def snap(items, key_space="address"):
    return Snapshot.from_items(items, key=lambda item: item["address"], key_space=key_space)


def device(address, mac="aa", hostname=None):
    return {"address": address, "mac": mac, "hostname": hostname}


compare_identity = field_comparator("mac", "hostname")


def test_added_removed_changed_partition():
    old = snap([device("A"), device("B")])
    new = snap([device("B"), device("C")])

    result = diff_snapshots(old, new, compare=compare_identity, now=NOW)

    assert result.added == ["C"]
    assert result.removed == ["A"]
    assert result.changed == {}
    assert result.unchanged == ["B"]


def test_partition_covers_union_without_overlap():
    old = snap([device(key, mac=key) for key in "ABCDE"])
    new = snap([device("B", mac="B"), device("C", mac="x"), device("F"), device("G")])
    result = diff_snapshots(old, new, compare=compare_identity, now=NOW)

    groups = [set(result.added), set(result.removed), set(result.changed), set(result.unchanged)]
    assert set().union(*groups) == set(old) | set(new)
    assert sum(len(group) for group in groups) == len(set(old) | set(new))
    assert set(result.added) | set(result.removed) == set(old) ^ set(new)


def test_first_observation_marks_everything_added():
    new = snap([device("A"), device("B")])
    result = diff_snapshots(None, new, compare=compare_identity, now=NOW)

    assert result.first_observation is True
    assert result.added == ["A", "B"]
    assert result.removed == []
    assert [event.kind for event in result.events] == [ChangeKind.APPEARED, ChangeKind.APPEARED]
    assert all(event.severity is Severity.MEDIUM for event in result.events)


def test_identifier_change_emits_one_high_event():
    old = snap([device("10.0.0.4", mac="00:11:22:33:44:55")])
    new = snap([device("10.0.0.4", mac="66:77:88:99:AA:BB")])
    severity = SeverityMap(fields={"mac": Severity.HIGH})

    result = diff_snapshots(old, new, compare=compare_identity, severity=severity, now=NOW)

    assert len(result.events) == 1
    event = result.events[0]
    assert event.kind is ChangeKind.ATTRIBUTE_CHANGED
    assert event.attribute == "mac"
    assert event.severity is Severity.HIGH
    assert (event.previous, event.new) == ("00:11:22:33:44:55", "66:77:88:99:AA:BB")
    assert event.timestamp == NOW
    assert event.to_dict()["field"] == "mac"


def test_key_space_mismatch_raises():
    old = snap([device("A")], key_space="address")
    new = snap([device("A")], key_space="host:port")
    with pytest.raises(KeySpaceMismatchError):
        diff_snapshots(old, new, compare=compare_identity)
    with pytest.raises(ValueError):
        diff_snapshots(old, new, compare=compare_identity)


def test_events_grouped_and_sorted():
    old = snap([device("Z"), device("M", mac="1"), device("Y")])
    new = snap([device("M", mac="2"), device("B"), device("A")])
    result = diff_snapshots(old, new, compare=compare_identity, now=NOW)

    assert [(event.kind, event.key) for event in result.events] == [
        (ChangeKind.APPEARED, "A"),
        (ChangeKind.APPEARED, "B"),
        (ChangeKind.DISAPPEARED, "Y"),
        (ChangeKind.DISAPPEARED, "Z"),
        (ChangeKind.ATTRIBUTE_CHANGED, "M"),
    ]


def test_default_severities_and_resolver_override():
    old = snap([device("A"), device("B", hostname="old")])
    new = snap([device("B", hostname="new"), device("C")])
    defaults = diff_snapshots(old, new, compare=compare_identity, now=NOW)
    assert [event.severity for event in defaults.events] == [Severity.MEDIUM, Severity.LOW, Severity.INFO]

    def resolver(kind, key, change):
        return Severity.CRITICAL if kind is ChangeKind.APPEARED else None

    overridden = diff_snapshots(old, new, compare=compare_identity, severity=SeverityMap(resolver=resolver), now=NOW)
    assert [event.severity for event in overridden.events] == [Severity.CRITICAL, Severity.LOW, Severity.INFO]


def test_duplicate_keys_keep_latest_item():
    snapshot = snap([device("A", mac="first"), device("A", mac="second")])
    assert len(snapshot) == 1
    assert snapshot["A"]["mac"] == "second"


def test_custom_comparator_may_return_multiple_changes():
    def compare(old, new):
        yield FieldChange("mac", old["mac"], new["mac"])
        yield FieldChange("hostname", old["hostname"], new["hostname"])

    result = diff_snapshots(snap([device("A")]), snap([device("A")]), compare=compare, now=NOW)
    assert [event.attribute for event in result.events] == ["mac", "hostname"]
