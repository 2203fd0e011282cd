"""
Visualization helpers for particle tracking.

Drawing utilities for annotating frames with the oriented rectangles of
particles.  The corners come from the same geometry used for scoring.
"""

import cv2
import numpy as np

from .geometry import rect32f_points
from .state import get_state


def draw_rect32f(img, rect, color=(0, 255, 0), thickness=1, shear=(0.0, 0.0)):
    """Draw the oriented rectangle *rect* on *img* (in-place)."""
    pts = np.round(rect32f_points(rect, shear)).astype(np.int32).reshape(-1, 1, 2)
    cv2.polylines(img, [pts], True, color, thickness)


def draw_particles(ens, img, color=(0, 255, 0), pid=-1, thickness=1):
    """Draw one particle, or every particle when *pid* is -1 (in-place).

    Parameters
    ----------
    ens : ParticleEnsemble
        Particles to draw.
    img : ndarray
        BGR frame to annotate.
    color : tuple
        BGR colour for the rectangles.
    pid : int
        Particle index, -1 for all.
    thickness : int
        Line thickness.
    """
    ids = range(ens.num_particles) if pid == -1 else [pid]
    for p_id in ids:
        draw_rect32f(img, get_state(ens, p_id).to_rect32f(), color, thickness)
