"""Crop rectangle geometry.

A margin policy turns one detected face box into a crop rectangle that has
the output aspect ratio and lies inside the image:

* ``PaddingPolicy`` pads every side of the box by a fraction of its size,
  grows one dimension to the target ratio, then shifts the rectangle back
  inside the image.
* ``MarginScalePolicy`` scales the box around a center biased toward the
  upper face, grows one dimension to the target ratio, then clamps each edge
  and pushes the opposite edge out to restore the intended extent.

Both policies only ever grow the box to reach the target ratio.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from facecropper.errors import InvalidCropRect

if TYPE_CHECKING:
    from facecropper.detection import FaceCandidate, Point

# Vertical crop center as a fraction of face height, measured from the top.
FACE_CENTER_BIAS: float = 0.45


@dataclass(frozen=True)
class CropRect:
    """Axis-aligned crop region ``[x1, x2) x [y1, y2)`` in image pixels."""

    x1: int
    y1: int
    x2: int
    y2: int

    @classmethod
    def within(cls, x1: int, y1: int, x2: int, y2: int, width: int, height: int) -> CropRect:
        """Build a rectangle, requiring ``0 <= x1 < x2 <= width`` and ``0 <= y1 < y2 <= height``.

        Raises:
            InvalidCropRect: If the bounds are empty or outside the image.
        """
        if not (0 <= x1 < x2 <= width and 0 <= y1 < y2 <= height):
            raise InvalidCropRect(f"invalid crop rectangle ({x1}, {y1}, {x2}, {y2}) for {width}x{height} image")
        return cls(x1, y1, x2, y2)

    @property
    def width(self) -> int:
        return self.x2 - self.x1

    @property
    def height(self) -> int:
        return self.y2 - self.y1


class MarginPolicy(Protocol):
    """Protocol for turning a face box into a crop rectangle."""

    def crop_rect(self, face: FaceCandidate, width: int, height: int) -> CropRect:
        """Compute the crop rectangle for ``face`` inside a ``width`` x ``height`` image.

        Raises:
            InvalidCropRect: If the result would be empty or degenerate.
        """
        ...


def round_half_away(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def clamp(value: int, lo: int, hi: int) -> int:
    return max(lo, min(value, hi))


def eye_angle(left_eye: Point, right_eye: Point) -> float:
    """Angle of the eye line in degrees, positive when the right eye sits lower."""
    return math.degrees(math.atan2(right_eye.y - left_eye.y, right_eye.x - left_eye.x))


def _target_ratio(output_width: int, output_height: int) -> float:
    return output_width / output_height


@dataclass(frozen=True)
class PaddingPolicy:
    """Pad each side of the face box by ``padding_pct`` of its size."""

    padding_pct: float
    output_width: int
    output_height: int

    def crop_rect(self, face: FaceCandidate, width: int, height: int) -> CropRect:
        pct = max(self.padding_pct, 0.0)
        bx, by = int(face.x), int(face.y)
        bw, bh = int(face.width), int(face.height)
        pad_x = round_half_away(bw * pct)
        pad_y = round_half_away(bh * pct)

        x1, y1 = bx - pad_x, by - pad_y
        x2, y2 = bx + bw + pad_x, by + bh + pad_y

        cw, ch = x2 - x1, y2 - y1
        if cw <= 0 or ch <= 0:
            raise InvalidCropRect(f"face box {bw}x{bh} has no area")
        cx, cy = x1 + cw // 2, y1 + ch // 2

        target = _target_ratio(self.output_width, self.output_height)
        current = cw / ch
        if current > target:
            new_h = round_half_away(cw / target)
            y1 = cy - new_h // 2
            y2 = y1 + new_h
        elif current < target:
            new_w = round_half_away(ch * target)
            x1 = cx - new_w // 2
            x2 = x1 + new_w

        # Shift, in this order, without resizing. A later shift may push an
        # already corrected edge back out; the clamp below catches that.
        if x1 < 0:
            x2 -= x1
            x1 = 0
        if y1 < 0:
            y2 -= y1
            y1 = 0
        if x2 > width:
            x1 -= x2 - width
            x2 = width
        if y2 > height:
            y1 -= y2 - height
            y2 = height

        x1, x2 = clamp(x1, 0, width), clamp(x2, 0, width)
        y1, y2 = clamp(y1, 0, height), clamp(y2, 0, height)
        if x2 - x1 <= 1 or y2 - y1 <= 1:
            raise InvalidCropRect(f"crop collapsed to ({x1}, {y1}, {x2}, {y2})")
        return CropRect.within(x1, y1, x2, y2, width, height)


def _place_span(center: float, extent: int, limit: int) -> tuple[int, int]:
    """Place ``extent`` pixels around ``center`` inside ``[0, limit]``.

    Each edge is clamped on its own. When the left (or top) edge was clamped
    the far edge is pushed out to restore the full extent, and vice versa.
    """
    lo = round_half_away(center - extent / 2)
    hi = lo + extent
    clamped_lo, clamped_hi = lo < 0, hi > limit
    lo, hi = clamp(lo, 0, limit), clamp(hi, 0, limit)
    if hi - lo < extent:
        if clamped_lo and not clamped_hi:
            hi = min(limit, lo + extent)
        elif clamped_hi and not clamped_lo:
            lo = max(0, hi - extent)
    return lo, hi


@dataclass(frozen=True)
class MarginScalePolicy:
    """Scale the face box by ``margin_scale_w`` x ``margin_scale_h``."""

    margin_scale_w: float
    margin_scale_h: float
    output_width: int
    output_height: int

    def crop_rect(self, face: FaceCandidate, width: int, height: int) -> CropRect:
        cx = face.x + face.width / 2
        cy = face.y + face.height * FACE_CENTER_BIAS

        box_w = face.width * max(self.margin_scale_w, 0.0)
        box_h = face.height * max(self.margin_scale_h, 0.0)
        if box_w <= 0 and box_h <= 0:
            raise InvalidCropRect(f"scaled face box {box_w:.1f}x{box_h:.1f} has no area")

        target = _target_ratio(self.output_width, self.output_height)
        if box_w > box_h * target:
            box_h = box_w / target
        else:
            box_w = box_h * target

        x1, x2 = _place_span(cx, round_half_away(box_w), width)
        y1, y2 = _place_span(cy, round_half_away(box_h), height)
        if x2 <= x1 or y2 <= y1:
            raise InvalidCropRect(f"crop collapsed to ({x1}, {y1}, {x2}, {y2})")
        return CropRect.within(x1, y1, x2, y2, width, height)
