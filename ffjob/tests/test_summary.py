"""Tests for probe summarization."""

import math
from datetime import timedelta

import pytest

from conftest import probe_document
from ffjob.errors import SummaryError
from ffjob.probe import Probe, ProbeFormat, ProbeStream
from ffjob.summary import Summary, parse_duration, parse_summary


class TestParseDuration:

    def test_seconds_with_fraction(self):
        assert parse_duration("35.968000") == timedelta(seconds=35, microseconds=968000)

    def test_integer_seconds(self):
        assert parse_duration("12") == timedelta(seconds=12)

    def test_empty_is_zero(self):
        assert parse_duration("") == timedelta()

    @pytest.mark.parametrize("value", ["N/A", "abc", "1.2.3", "nan", "inf"])
    def test_not_a_number(self, value):
        with pytest.raises(SummaryError):
            parse_duration(value)

    def test_summary_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_duration("x")


class TestParseSummary:

    def test_video_and_audio(self):
        summary = parse_summary(Probe.from_dict(probe_document(duration="10.5")))
        assert summary == Summary(
            duration=timedelta(seconds=10.5),
            has_video=True,
            has_audio=True,
            width=1280,
            height=720,
        )

    def test_longest_stream_wins(self):
        probe = Probe(streams=[
            ProbeStream(codec_type="audio", duration="9.0"),
            ProbeStream(codec_type="video", duration="10.0", width=640, height=360),
            ProbeStream(codec_type="subtitle", duration="3.0"),
        ])
        summary = parse_summary(probe)
        assert summary.duration == timedelta(seconds=10)
        assert (summary.width, summary.height) == (640, 360)

    def test_format_duration_fallback(self):
        """Streams without a duration fall back to the container duration."""
        probe = Probe(
            streams=[ProbeStream(codec_type="audio")],
            format=ProbeFormat(duration="42.000000"),
        )
        summary = parse_summary(probe)
        assert summary.duration == timedelta(seconds=42)
        assert summary.has_audio
        assert not summary.has_video

    def test_no_duration_anywhere(self):
        summary = parse_summary(Probe())
        assert summary.duration == timedelta()

    def test_bad_stream_duration(self):
        probe = Probe(streams=[ProbeStream(codec_type="video", duration="N/A")])
        with pytest.raises(SummaryError):
            parse_summary(probe)

    def test_bad_format_duration(self):
        probe = Probe(format=ProbeFormat(duration="broken"))
        with pytest.raises(SummaryError):
            parse_summary(probe)

    def test_duration_is_finite(self):
        summary = parse_summary(Probe.from_dict(probe_document(duration="0.000001")))
        assert math.isfinite(summary.duration.total_seconds())
        assert summary.duration == timedelta(microseconds=1)

    def test_longer_audio_sets_duration(self):
        """Video 10.5 s at 1920x1080 plus a 12 s audio stream summarizes to 12 s."""
        probe = Probe(streams=[
            ProbeStream(codec_type="video", duration="10.500000", width=1920, height=1080),
            ProbeStream(codec_type="audio", duration="12.000000"),
        ])
        assert parse_summary(probe) == Summary(
            duration=timedelta(seconds=12),
            has_video=True,
            has_audio=True,
            width=1920,
            height=1080,
        )
