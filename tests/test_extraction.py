"""
Unit tests for extract_observation() and the Observation payload.
"""
from __future__ import annotations

import json

import pytest

from screentime_collector import (
    OBSERVATION_FIELDS,
    MalformedDataError,
    MissingField,
    Observation,
    TypeMismatch,
    extract_observation,
    observation_topic,
)

CANONICAL_KEYS = [key for key, _ in OBSERVATION_FIELDS]


class TestExtractionSuccess:
    def test_values_are_copied_exactly(self, good_bag):
        obs = extract_observation(good_bag)
        assert obs == Observation(
            left_day=3600,
            spent_balance=0,
            spent_month=18000,
            spent_week=7200,
            spent_day=3600,
        )

    def test_extra_keys_are_ignored(self, good_bag):
        good_bag.update({"LIMITS_PER_WEEKDAYS": "1;2;3", "TRACK_INACTIVE": False})
        assert extract_observation(good_bag).left_day == 3600

    def test_int32_bounds_are_accepted(self, good_bag):
        good_bag["TIME_SPENT_BALANCE"] = -(2**31)
        good_bag["TIME_SPENT_MONTH"] = 2**31 - 1
        obs = extract_observation(good_bag)
        assert obs.spent_balance == -(2**31)
        assert obs.spent_month == 2**31 - 1

    def test_bag_is_not_modified(self, good_bag):
        before = dict(good_bag)
        extract_observation(good_bag)
        assert good_bag == before


class TestMissingFields:
    def test_single_missing_field(self, good_bag):
        del good_bag["TIME_SPENT_WEEK"]
        with pytest.raises(MalformedDataError) as excinfo:
            extract_observation(good_bag)
        assert excinfo.value.problems == [MissingField("TIME_SPENT_WEEK")]

    def test_every_missing_field_is_reported(self, good_bag):
        del good_bag["TIME_SPENT_DAY"]
        del good_bag["TIME_LEFT_DAY"]
        del good_bag["TIME_SPENT_MONTH"]
        with pytest.raises(MalformedDataError) as excinfo:
            extract_observation(good_bag)
        # canonical order, not deletion order
        assert excinfo.value.missing_fields == [
            "TIME_LEFT_DAY",
            "TIME_SPENT_MONTH",
            "TIME_SPENT_DAY",
        ]

    def test_empty_bag_reports_all_five(self):
        with pytest.raises(MalformedDataError) as excinfo:
            extract_observation({})
        assert excinfo.value.missing_fields == CANONICAL_KEYS
        assert excinfo.value.mismatched_fields == []


class TestTypeMismatch:
    def test_string_value_is_a_mismatch(self, good_bag):
        good_bag["TIME_SPENT_MONTH"] = "18000"
        with pytest.raises(MalformedDataError) as excinfo:
            extract_observation(good_bag)
        assert excinfo.value.problems == [TypeMismatch("TIME_SPENT_MONTH", "int32", "str")]
        assert excinfo.value.missing_fields == []

    @pytest.mark.parametrize("value", [True, 1.5, 3600.0, None, 2**31, -(2**31) - 1])
    def test_non_int32_values_are_rejected(self, good_bag, value):
        good_bag["TIME_LEFT_DAY"] = value
        with pytest.raises(MalformedDataError) as excinfo:
            extract_observation(good_bag)
        assert excinfo.value.mismatched_fields == ["TIME_LEFT_DAY"]

    def test_missing_and_mismatched_are_collected_together(self, good_bag):
        del good_bag["TIME_SPENT_BALANCE"]
        good_bag["TIME_SPENT_DAY"] = "lots"
        with pytest.raises(MalformedDataError) as excinfo:
            extract_observation(good_bag)
        assert excinfo.value.problems == [
            MissingField("TIME_SPENT_BALANCE"),
            TypeMismatch("TIME_SPENT_DAY", "int32", "str"),
        ]
        message = str(excinfo.value)
        assert "TIME_SPENT_BALANCE: missing" in message
        assert "TIME_SPENT_DAY: expected int32, got str" in message


class TestPayload:
    def test_payload_has_exactly_the_five_keys(self):
        obs = Observation(3600, 0, 18000, 7200, 3600)
        assert json.loads(obs.to_payload()) == {
            "left_day": 3600,
            "spent_balance": 0,
            "spent_month": 18000,
            "spent_week": 7200,
            "spent_day": 3600,
        }

    def test_observation_is_immutable(self):
        obs = Observation(1, 2, 3, 4, 5)
        with pytest.raises(AttributeError):
            obs.left_day = 10  # type: ignore[misc]

    def test_topic(self):
        assert observation_topic("h1", "alice") == "time.obs.h1.alice"
