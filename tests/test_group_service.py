"""Unit tests for group payload validation helpers."""
import pytest

from app.huddle.errors import NotFoundError
from app.huddle.modules.groups.service import parse_id, parse_leader_ids, validate_group_payload


def test_create_requires_name_and_description():
    assert validate_group_payload({}) == {"name": ["can't be blank"], "description": ["can't be blank"]}


def test_whitespace_counts_as_blank():
    assert validate_group_payload({"name": "   ", "description": "ok"}) == {"name": ["can't be blank"]}


def test_partial_only_checks_present_keys():
    assert validate_group_payload({"leader": [1]}, partial=True) == {}
    assert validate_group_payload({"description": None}, partial=True) == {"description": ["can't be blank"]}


def test_parse_leader_ids_accepts_scalars_lists_and_drops_junk():
    assert parse_leader_ids(None) == []
    assert parse_leader_ids("7") == [7]
    assert parse_leader_ids(["1", 2, "x", ""]) == [1, 2]


def test_parse_leader_ids_drops_ids_outside_the_database_range():
    assert parse_leader_ids([10**30, "-5", 0, 2**63 - 1, 2**63]) == [2**63 - 1]


def test_name_longer_than_column_is_rejected():
    assert validate_group_payload({"name": "x" * 255, "description": "ok"}) == {}
    assert validate_group_payload({"name": "x" * 256, "description": "ok"}) == {
        "name": ["is too long (maximum is 255 characters)"]
    }


def test_parse_id_raises_not_found_for_malformed_ids():
    for raw in ("abc", "-1", "0", "", str(2**63)):
        with pytest.raises(NotFoundError):
            parse_id(raw, "Group")
    assert parse_id("42", "Group") == 42
