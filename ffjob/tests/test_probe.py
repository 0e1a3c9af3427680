"""Tests for ffprobe output decoding."""

import json

import pytest

from conftest import probe_document
from ffjob.errors import MalformedMetadataError
from ffjob.probe import Probe


class TestProbeFromJson:

    def test_decodes_streams_and_format(self):
        raw = json.dumps(probe_document(duration="35.968000")).encode()
        probe = Probe.from_json(raw)

        video, audio = probe.streams
        assert video.codec_type == "video"
        assert (video.width, video.height) == (1280, 720)
        assert video.disposition.default == 1
        assert audio.channels == 2
        assert audio.sample_rate == "48000"
        assert audio.tags.language == "eng"
        assert probe.format.duration == "35.968000"
        assert probe.format.probe_score == 100
        assert probe.raw == raw

    def test_accepts_str(self):
        probe = Probe.from_json('{"streams": [], "format": {}}')
        assert probe.streams == []
        assert probe.raw == b'{"streams": [], "format": {}}'

    def test_missing_sections_take_defaults(self):
        probe = Probe.from_json(b"{}")
        assert probe.streams == []
        assert probe.format.duration == ""

    def test_unknown_keys_ignored(self):
        probe = Probe.from_json(b'{"streams": [{"codec_type": "data", "extra": [1]}], "chapters": []}')
        assert probe.streams[0].codec_type == "data"

    def test_matroska_duration_tag(self):
        probe = Probe.from_json(b'{"streams": [{"tags": {"DURATION": "00:00:05.000000000"}}]}')
        assert probe.streams[0].tags.duration == "00:00:05.000000000"

    @pytest.mark.parametrize("raw", [
        b"not json",
        b"",
        b"[]",
        b'{"streams": "x"}',
        b'{"streams": [1]}',
        b'{"streams": [{"width": "wide"}]}',
        b'{"format": {"duration": 12.5}}',
        b'{"format": []}',
    ])
    def test_malformed(self, raw):
        with pytest.raises(MalformedMetadataError, match="^decode: "):
            Probe.from_json(raw)
