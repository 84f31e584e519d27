"""Tests for formatting utilities."""

from power_scope.formatting import (
    format_age,
    format_frequencies,
    format_megabytes,
    format_power,
    truncate,
)


class TestFormatPower:
    """Tests for format_power."""

    def test_milliwatts(self) -> None:
        """Below one watt shows whole milliwatts."""
        assert format_power(523.4) == "523 mW"

    def test_watts(self) -> None:
        """From one watt up shows watts with two decimals."""
        assert format_power(1234.0) == "1.23 W"


class TestFormatMegabytes:
    def test_megabytes(self) -> None:
        """Small sizes stay in MB."""
        assert format_megabytes(512.0) == "512 MB"

    def test_gigabytes(self) -> None:
        """Sizes from 1024 MB switch to GB."""
        assert format_megabytes(1536.0) == "1.5 GB"


def test_format_frequencies() -> None:
    """Frequencies are joined with slashes; empty lists show a dash."""
    assert format_frequencies([972, 1020, 600]) == "972/1020/600 MHz"
    assert format_frequencies([]) == "-"


class TestFormatAge:
    """Tests for format_age."""

    def test_seconds(self) -> None:
        assert format_age(1000.0, now=1012.0) == "12s ago"

    def test_minutes(self) -> None:
        assert format_age(1000.0, now=1000.0 + 185) == "3m ago"

    def test_hours(self) -> None:
        assert format_age(1000.0, now=1000.0 + 7300) == "2h ago"

    def test_future_timestamp(self) -> None:
        """Clock skew never produces a negative age."""
        assert format_age(1000.0, now=990.0) == "0s ago"


def test_truncate() -> None:
    """Long text is cut with a '..' marker; short text is unchanged."""
    assert truncate("Safari", 10) == "Safari"
    assert truncate("com.apple.WebKit.WebContent", 10) == "com.appl.."
