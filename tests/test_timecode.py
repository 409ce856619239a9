import pytest

from hlsbundle.timecode import to_seconds, to_timestamp


def test_to_timestamp():
    assert to_timestamp(0) == "0:00:00.000"
    assert to_timestamp(3661.5) == "1:01:01.500"
    assert to_timestamp(2) == "0:00:02.000"
    assert to_timestamp(59.9996) == "0:01:00.000"
    assert to_timestamp(36000) == "10:00:00.000"


def test_to_timestamp_rejects_negative():
    with pytest.raises(ValueError):
        to_timestamp(-0.5)


def test_to_seconds():
    assert to_seconds("1:01:01.500") == 3661.5
    assert to_seconds("00:00:05.250000") == 5.25
    assert to_seconds("2:30") == 150.0
    assert to_seconds("12.5") == 12.5
    assert to_seconds(7) == 7.0
    assert to_seconds("-00:00:00.023220") == pytest.approx(-0.02322)


@pytest.mark.parametrize("value", ["", "N/A", "1:2:3:4"])
def test_to_seconds_rejects_garbage(value):
    with pytest.raises(ValueError):
        to_seconds(value)


def test_round_trip_within_a_millisecond():
    for seconds in (0, 0.001, 1.2345, 59.999, 3599.9994, 86400.5, 123456.789):
        assert abs(to_seconds(to_timestamp(seconds)) - seconds) <= 0.0005 + 1e-9
