"""
Oriented-rectangle geometry.

Rectangles come in three flavours: an integer axis-aligned ``Rect``, a
floating ``Rect32f`` anchored at its own top-left corner and rotated about
it, and a centre-based ``Box32f``.  All corner computations return the four
points in traversal order top-left, top-right, bottom-right, bottom-left,
i.e. the images of the unit-square points ``(0,0), (1,0), (1,1), (0,1)``.
"""

import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np

# ---------------------------------------------------------------------------
# Default parameters
# ---------------------------------------------------------------------------
NO_SHEAR = (0.0, 0.0)

UNIT_SQUARE = np.array(
    [[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0]], dtype=np.float64
)


def _rotation(angle):
    """2x2 rotation matrix for *angle* degrees (image coordinates, y down)."""
    rad = math.radians(angle)
    c, s = math.cos(rad), math.sin(rad)
    return np.array([[c, -s], [s, c]], dtype=np.float64)


# ---------------------------------------------------------------------------
# Rectangle types
# ---------------------------------------------------------------------------
@dataclass
class Rect:
    """Integer axis-aligned rectangle."""
    x: int
    y: int
    width: int
    height: int


@dataclass
class Rect32f:
    """Floating rectangle rotated by *angle* degrees about its top-left corner."""
    x: float
    y: float
    width: float
    height: float
    angle: float = 0.0

    def __post_init__(self):
        if self.width < 0 or self.height < 0:
            raise ValueError(
                f"rectangle extents must be non-negative, got {self.width}x{self.height}"
            )
        self.angle = float(self.angle) % 360.0

    @classmethod
    def from_rect(cls, rect: Rect) -> "Rect32f":
        return cls(float(rect.x), float(rect.y), float(rect.width), float(rect.height), 0.0)

    @classmethod
    def from_box(cls, box: "Box32f") -> "Rect32f":
        half = np.array([box.width / 2.0, box.height / 2.0])
        x, y = np.array([box.cx, box.cy]) - _rotation(box.angle) @ half
        return cls(float(x), float(y), box.width, box.height, box.angle)

    def to_rect(self) -> Rect:
        """Round to an integer rectangle; the angle is dropped."""
        return Rect(
            int(round(self.x)),
            int(round(self.y)),
            int(round(self.width)),
            int(round(self.height)),
        )

    def to_box(self) -> "Box32f":
        half = np.array([self.width / 2.0, self.height / 2.0])
        cx, cy = np.array([self.x, self.y]) + _rotation(self.angle) @ half
        return Box32f(float(cx), float(cy), self.width, self.height, self.angle)


@dataclass
class Box32f:
    """Centre-based rotated rectangle."""
    cx: float
    cy: float
    width: float
    height: float
    angle: float = 0.0

    def __post_init__(self):
        if self.width < 0 or self.height < 0:
            raise ValueError(
                f"box extents must be non-negative, got {self.width}x{self.height}"
            )
        self.angle = float(self.angle) % 360.0


# ---------------------------------------------------------------------------
# Corners
# ---------------------------------------------------------------------------
def create_affine(rect: Rect32f, shear: Sequence[float] = NO_SHEAR) -> np.ndarray:
    """Build the 2x3 affine matrix mapping the unit square onto *rect*.

    The linear part is ``R(angle) @ [[width, shear_x], [shear_y, height]]``
    and the translation is the rectangle's top-left corner.
    """
    scale = np.array(
        [[rect.width, shear[0]], [shear[1], rect.height]], dtype=np.float64
    )
    affine = np.empty((2, 3), dtype=np.float64)
    affine[:, :2] = _rotation(rect.angle) @ scale
    affine[:, 2] = (rect.x, rect.y)
    return affine


def rect32f_points(rect: Rect32f, shear: Sequence[float] = NO_SHEAR) -> np.ndarray:
    """Return the four corners of *rect* as a ``(4, 2)`` float array.

    Without shear the corners come from the closed-form rotated box about
    the centre, computed by ``cv2.boxPoints`` in float32, so far from the
    origin they agree with the affine path only to about 1e-3.  With shear
    the full affine matrix is applied to the unit square.
    """
    if shear[0] == 0 and shear[1] == 0:
        box = rect.to_box()
        pts = cv2.boxPoints(((box.cx, box.cy), (box.width, box.height), box.angle))
        # boxPoints starts at the bottom-left corner
        return np.roll(pts.astype(np.float64), -1, axis=0)

    affine = create_affine(rect, shear)
    return UNIT_SQUARE @ affine[:, :2].T + affine[:, 2]


def box32f_points(box: Box32f, shear: Sequence[float] = NO_SHEAR) -> np.ndarray:
    """Corners of a centre-based box."""
    return rect32f_points(Rect32f.from_box(box), shear)


def rect_points(rect: Rect, shear: Sequence[float] = NO_SHEAR) -> np.ndarray:
    """Corners of an integer rectangle."""
    return rect32f_points(Rect32f.from_rect(rect), shear)


# ---------------------------------------------------------------------------
# Point in rectangle
# ---------------------------------------------------------------------------
def point_rect32f_test(rect, pt, measure_dist=False, shear=NO_SHEAR):
    """Test *pt* against the oriented rectangle *rect*.

    Parameters
    ----------
    rect : Rect32f
        Rectangle, possibly rotated.
    pt : tuple[float, float]
        Query point.
    measure_dist : bool
        If False return a positive, negative or zero value when the point is
        inside, outside or on the boundary.  If True return the signed
        distance to the nearest edge (positive inside).
    shear : tuple[float, float]
        Shear deformation of the affine transform.

    Returns
    -------
    float
    """
    contour = rect32f_points(rect, shear).astype(np.float32).reshape(-1, 1, 2)
    return float(
        cv2.pointPolygonTest(contour, (float(pt[0]), float(pt[1])), bool(measure_dist))
    )


def point_rect_test(rect, pt, measure_dist=False):
    """Integer-rectangle variant of :func:`point_rect32f_test`."""
    return point_rect32f_test(Rect32f.from_rect(rect), pt, measure_dist)


# ---------------------------------------------------------------------------
# Cropping
# ---------------------------------------------------------------------------
def crop_image_roi(
    img: np.ndarray,
    rect: Rect32f,
    size: Optional[Tuple[int, int]] = None,
    shear: Sequence[float] = NO_SHEAR,
) -> np.ndarray:
    """Sample the oriented rectangle *rect* of *img* into an upright patch.

    *size* is ``(width, height)`` of the output and defaults to the rounded
    extents of *rect*.  Pixels falling outside *img* are zero.
    """
    if size is None:
        size = (max(1, int(round(rect.width))), max(1, int(round(rect.height))))
    out_w, out_h = size

    # output pixel -> unit square -> source pixel
    warp = create_affine(rect, shear)
    warp[:, 0] /= out_w
    warp[:, 1] /= out_h

    return cv2.warpAffine(
        img,
        warp,
        (out_w, out_h),
        flags=cv2.INTER_LINEAR | cv2.WARP_INVERSE_MAP,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=0,
    )


def extract_patch_with_padding(img, rect):
    """Extract the axis-aligned integer *rect* with zero-padding at edges.

    Returns an image of shape ``(rect.height, rect.width[, channels])``.
    """
    h, w = img.shape[:2]
    x0, y0 = rect.x, rect.y
    x1, y1 = x0 + rect.width, y0 + rect.height

    patch = np.zeros((rect.height, rect.width) + img.shape[2:], dtype=img.dtype)

    sx0, sy0 = max(0, x0), max(0, y0)
    sx1, sy1 = min(w, x1), min(h, y1)

    dx0, dy0 = sx0 - x0, sy0 - y0
    dx1, dy1 = dx0 + (sx1 - sx0), dy0 + (sy1 - sy0)

    if sx1 > sx0 and sy1 > sy0:
        patch[dy0:dy1, dx0:dx1] = img[sy0:sy1, sx0:sx1]

    return patch
