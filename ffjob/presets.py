"""Named ffmpeg output argument sets."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List


def default_args() -> List[str]:
    """Remux without re-encoding; ADTS AAC is rewritten for MP4-style containers."""
    return [
        "-y",  # replace
        "-bsf:a", "aac_adtstoasc",
        "-c", "copy",
    ]


@dataclass(frozen=True)
class Variant:
    """An ffmpeg argument set variant."""
    name: str
    args: List[str] = field(default_factory=list)


def all_variants() -> List[Variant]:
    return [
        Variant(name="default", args=default_args()),
        Variant(name="blank", args=[]),
    ]


def get_variant(name: str) -> Variant:
    """
    Look up a variant by name.

    Raises:
        KeyError: If no variant has that name
    """
    for variant in all_variants():
        if variant.name == name:
            return variant
    raise KeyError(name)
