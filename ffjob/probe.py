"""
Typed view of ``ffprobe -print_format json -show_format -show_streams`` output.

Only the fields ffjob or its callers use are typed; unknown keys are ignored
and missing keys take zero values, since ffprobe omits fields that do not
apply to a stream (``width`` on audio, ``channels`` on video, ...).
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Union

from ffjob.errors import MalformedMetadataError


def _mapping(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise TypeError(f"{key}: expected object, got {type(value).__name__}")
    return value


def _str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TypeError(f"{key}: expected string, got {type(value).__name__}")
    return value


def _int(data: Mapping[str, Any], key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{key}: expected integer, got {type(value).__name__}")
    return value


@dataclass
class ProbeDisposition:
    default: int = 0
    dub: int = 0
    original: int = 0
    comment: int = 0
    lyrics: int = 0
    karaoke: int = 0
    forced: int = 0
    hearing_impaired: int = 0
    visual_impaired: int = 0
    clean_effects: int = 0
    attached_pic: int = 0
    timed_thumbnails: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProbeDisposition":
        return cls(**{name: _int(data, name) for name in cls.__dataclass_fields__})


@dataclass
class StreamTags:
    language: str = ""
    duration: str = ""  # Matroska stores per-stream duration as a DURATION tag

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StreamTags":
        return cls(language=_str(data, "language"), duration=_str(data, "DURATION"))


@dataclass
class ProbeStream:
    """One entry of the ``streams`` array."""
    index: int = 0
    codec_name: str = ""
    codec_long_name: str = ""
    profile: str = ""
    codec_type: str = ""
    codec_tag_string: str = ""
    codec_tag: str = ""
    width: int = 0
    height: int = 0
    coded_width: int = 0
    coded_height: int = 0
    has_b_frames: int = 0
    sample_aspect_ratio: str = ""
    display_aspect_ratio: str = ""
    pix_fmt: str = ""
    level: int = 0
    field_order: str = ""
    refs: int = 0
    r_frame_rate: str = ""
    avg_frame_rate: str = ""
    time_base: str = ""
    start_pts: int = 0
    start_time: str = ""
    duration: str = ""
    bit_rate: str = ""
    sample_fmt: str = ""
    sample_rate: str = ""
    channels: int = 0
    channel_layout: str = ""
    bits_per_sample: int = 0
    disposition: ProbeDisposition = field(default_factory=ProbeDisposition)
    tags: StreamTags = field(default_factory=StreamTags)

    _INT_FIELDS = (
        "index", "width", "height", "coded_width", "coded_height", "has_b_frames",
        "level", "refs", "start_pts", "channels", "bits_per_sample",
    )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProbeStream":
        values: Dict[str, Any] = {}
        for name in cls.__dataclass_fields__:
            if name in ("disposition", "tags"):
                continue
            values[name] = _int(data, name) if name in cls._INT_FIELDS else _str(data, name)
        values["disposition"] = ProbeDisposition.from_dict(_mapping(data, "disposition"))
        values["tags"] = StreamTags.from_dict(_mapping(data, "tags"))
        return cls(**values)


@dataclass
class FormatTags:
    title: str = ""
    encoder: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FormatTags":
        return cls(title=_str(data, "title"), encoder=_str(data, "encoder"))


@dataclass
class ProbeFormat:
    """The ``format`` object: container level information."""
    filename: str = ""
    nb_streams: int = 0
    nb_programs: int = 0
    format_name: str = ""
    format_long_name: str = ""
    start_time: str = ""
    duration: str = ""
    size: str = ""
    bit_rate: str = ""
    probe_score: int = 0
    tags: FormatTags = field(default_factory=FormatTags)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProbeFormat":
        return cls(
            filename=_str(data, "filename"),
            nb_streams=_int(data, "nb_streams"),
            nb_programs=_int(data, "nb_programs"),
            format_name=_str(data, "format_name"),
            format_long_name=_str(data, "format_long_name"),
            start_time=_str(data, "start_time"),
            duration=_str(data, "duration"),
            size=_str(data, "size"),
            bit_rate=_str(data, "bit_rate"),
            probe_score=_int(data, "probe_score"),
            tags=FormatTags.from_dict(_mapping(data, "tags")),
        )


@dataclass
class Probe:
    """Metadata document returned by Runner.probe()."""
    streams: List[ProbeStream] = field(default_factory=list)
    format: ProbeFormat = field(default_factory=ProbeFormat)
    # Undecoded ffprobe output
    raw: bytes = field(default=b"", repr=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Probe":
        streams = data.get("streams") or []
        if not isinstance(streams, list):
            raise TypeError(f"streams: expected array, got {type(streams).__name__}")
        for item in streams:
            if not isinstance(item, Mapping):
                raise TypeError(f"streams: expected object, got {type(item).__name__}")
        return cls(
            streams=[ProbeStream.from_dict(item) for item in streams],
            format=ProbeFormat.from_dict(_mapping(data, "format")),
        )

    @classmethod
    def from_json(cls, raw: Union[bytes, str]) -> "Probe":
        """
        Decode ffprobe JSON output.

        Raises:
            MalformedMetadataError: If raw is not JSON or does not match the schema
        """
        try:
            data = json.loads(raw)
            if not isinstance(data, Mapping):
                raise TypeError(f"expected object, got {type(data).__name__}")
            probe = cls.from_dict(data)
        except (ValueError, TypeError) as e:
            raise MalformedMetadataError(f"decode: {e}") from e
        probe.raw = raw.encode("utf-8") if isinstance(raw, str) else bytes(raw)
        return probe
