"""Quality preset table.

Maps a quality label to the encoder parameters used for it. Unknown labels
fall back to ``medium``.
"""

from dataclasses import dataclass, asdict
from types import MappingProxyType
from typing import Any, Mapping

DEFAULT_QUALITY = "medium"


@dataclass(frozen=True)
class QualityPreset:
    """Encoding parameters for one quality label."""
    label: str
    video_bitrate: str
    audio_bitrate: str
    resolution: str  # WxH
    compression_level: int  # x264 CRF

    def to_engine_params(self) -> dict[str, Any]:
        params = asdict(self)
        params.pop("label")
        return params


QUALITY_PRESETS: Mapping[str, QualityPreset] = MappingProxyType({
    "low": QualityPreset(
        label="low",
        video_bitrate="500k",
        audio_bitrate="128k",
        resolution="640x480",
        compression_level=28,
    ),
    "medium": QualityPreset(
        label="medium",
        video_bitrate="1500k",
        audio_bitrate="192k",
        resolution="1280x720",
        compression_level=23,
    ),
    "high": QualityPreset(
        label="high",
        video_bitrate="3000k",
        audio_bitrate="256k",
        resolution="1920x1080",
        compression_level=18,
    ),
})


def resolve_preset(quality: str) -> QualityPreset:
    """Look up a preset by label.

    Args:
        quality: Requested quality label

    Returns:
        QualityPreset: The matching preset, or the ``medium`` preset when the
        label is unknown
    """
    return QUALITY_PRESETS.get(quality, QUALITY_PRESETS[DEFAULT_QUALITY])
