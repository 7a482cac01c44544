"""Tests for rate limit window arithmetic and header rendering."""

import json

import pytest
from starlette.datastructures import MutableHeaders

from throttle.app.exceptions import ConfigurationError, RatelimitError
from throttle.app.middleware.rate_limit.models import (
    RateSpec,
    format_epoch,
    ratelimit_epoch,
    ratelimit_json,
    ratelimit_lines,
    seconds_until_epoch,
)


class TestRatelimitEpoch:
    @pytest.mark.parametrize("timestamp", [0.5, 3.0, 9.999, 10.0])
    def test_instants_in_one_window_share_an_epoch(self, timestamp):
        assert ratelimit_epoch(timestamp, 10) == 10

    def test_crossing_a_boundary_advances_one_period(self):
        assert ratelimit_epoch(10.0, 10) == 10
        assert ratelimit_epoch(10.0001, 10) == 20
        assert ratelimit_epoch(3599.5, 3600) == 3600
        assert ratelimit_epoch(3600.5, 3600) == 7200

    def test_epoch_is_an_integer(self):
        assert isinstance(ratelimit_epoch(1_700_000_000.123, 60), int)


class TestSecondsUntilEpoch:
    def test_rounds_up(self):
        assert seconds_until_epoch(10, 3.2) == 7

    def test_clamped_to_zero(self):
        assert seconds_until_epoch(10, 25.0) == 0


class TestRateSpec:
    def test_coerce_pair(self):
        assert RateSpec.coerce([500, 300]) == RateSpec(max=500, period=300)

    def test_coerce_keeps_instances(self):
        rate = RateSpec(1, 10)
        assert RateSpec.coerce(rate) is rate

    @pytest.mark.parametrize("value", [None, 5, (1,), (None, None), (1, None)])
    def test_incomplete_rates_are_rejected(self, value):
        with pytest.raises(ConfigurationError):
            RateSpec.coerce(value)

    @pytest.mark.parametrize(
        "value",
        [(5, 0), (5, -10), (0, 10), (-1, 10), ("5", 10), (5, 1.5), (True, 10)],
    )
    def test_non_positive_or_non_integer_rates_are_rejected(self, value):
        with pytest.raises(ConfigurationError):
            RateSpec.coerce(value)

    def test_configuration_error_is_a_ratelimit_error(self):
        assert issubclass(ConfigurationError, RatelimitError)
        assert ConfigurationError().status_code == 500


class TestHeader:
    def test_format_epoch(self):
        assert format_epoch(0) == "1970-01-01T00:00:00Z"
        assert format_epoch(1_000_010) == "1970-01-12T13:46:50Z"

    def test_ratelimit_json(self):
        line = ratelimit_json("API", RateSpec(1000, 3600), 999, 3600)
        assert line == (
            '{"name":"API","period":3600,"limit":1000,"remaining":999,'
            '"until":"1970-01-01T01:00:00Z"}'
        )

    def test_remaining_is_clamped(self):
        line = ratelimit_json("API", RateSpec(1, 10), -3, 10)
        assert json.loads(line)["remaining"] == 0

    def test_ratelimit_lines(self):
        headers = MutableHeaders()
        assert ratelimit_lines(headers) is None

        headers.append("X-Ratelimit", "one")
        headers.append("X-Ratelimit", "two")
        assert ratelimit_lines(headers) == "one\ntwo"
