from __future__ import annotations

from dataclasses import dataclass

from trimkit.errors import InvalidRequestError
from trimkit.models import AspectRatio


@dataclass(frozen=True, slots=True)
class CropBox:
    """Center crop rectangle inside a source frame."""

    width: int
    height: int
    x: int
    y: int

    def to_filter(self) -> str:
        return f"crop={self.width}:{self.height}:{self.x}:{self.y}"


def center_crop(source_width: int, source_height: int, ratio: AspectRatio) -> CropBox | None:
    """Largest centered crop of the source matching ``ratio``.

    Returns None for ORIGINAL. Both output dimensions are even, never exceed
    the source, and match the target ratio to within one pixel.
    """

    proportions = ratio.proportions
    if proportions is None:
        return None
    if source_width < 2 or source_height < 2:
        raise InvalidRequestError(
            f"Source frame {source_width}x{source_height} is too small to crop"
        )

    ratio_w, ratio_h = proportions
    max_width = _floor_even(source_width)
    max_height = _floor_even(source_height)

    if source_width * ratio_h >= source_height * ratio_w:
        # Source is wider than the target: keep the full height.
        height = max_height
        width = min(_nearest_even(height * ratio_w / ratio_h), max_width)
    else:
        width = max_width
        height = min(_nearest_even(width * ratio_h / ratio_w), max_height)

    width = max(width, 2)
    height = max(height, 2)
    return CropBox(
        width=width,
        height=height,
        x=(source_width - width) // 2,
        y=(source_height - height) // 2,
    )


def _floor_even(value: float) -> int:
    return int(value) // 2 * 2


def _nearest_even(value: float) -> int:
    return int(round(value / 2.0)) * 2
