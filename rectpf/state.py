"""
Rotated-rectangle particle state.

A particle is a 5-dimensional hypothesis ``(x, y, width, height, angle)``
where ``(x, y)`` is the centre of the rectangle and ``angle`` the rotation
about that centre in degrees.  States live as columns of the ensemble's
``num_states x num_particles`` matrix; the accessors below are the only
place that knows the row order.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .config import StateConfig
from .geometry import Box32f, Rect32f

logger = logging.getLogger(__name__)

STATE_FIELDS = ("x", "y", "width", "height", "angle")
NUM_STATES = len(STATE_FIELDS)

# new = dynamics @ current, i.e. current + (current - previous) per dimension
DYNAMICS = 2.0 * np.eye(NUM_STATES)


# ---------------------------------------------------------------------------
# State value
# ---------------------------------------------------------------------------
@dataclass
class ParticleState:
    x: float
    y: float
    width: float
    height: float
    angle: float = 0.0

    def to_vector(self) -> np.ndarray:
        return np.array([getattr(self, name) for name in STATE_FIELDS], dtype=np.float64)

    @classmethod
    def from_vector(cls, vec) -> "ParticleState":
        if len(vec) != NUM_STATES:
            raise ValueError(f"expected {NUM_STATES} state values, got {len(vec)}")
        return cls(*(float(v) for v in vec))

    @classmethod
    def from_config(cls, cfg: StateConfig) -> "ParticleState":
        """Noise standard deviations packed as a state."""
        return cls(cfg.std_x, cfg.std_y, cfg.std_width, cfg.std_height, cfg.std_angle)

    def to_box(self) -> Box32f:
        return Box32f(self.x, self.y, self.width, self.height, self.angle)

    def to_rect32f(self) -> Rect32f:
        return Rect32f.from_box(self.to_box())

    def __str__(self):
        return (
            f"x :{self.x:f} y :{self.y:f} width :{self.width:f} "
            f"height :{self.height:f} angle :{self.angle:f}"
        )


# ---------------------------------------------------------------------------
# Ensemble
# ---------------------------------------------------------------------------
@dataclass
class ParticleEnsemble:
    """Storage shared with the particle-filter engine.

    Attributes
    ----------
    particles : ndarray
        ``(num_states, num_particles)`` current states.
    probs : ndarray
        ``(num_particles,)`` log-likelihoods written by observation models.
    dynamics, std, bound : ndarray or None
        Transition matrix, noise standard deviations and the
        ``(num_states, 3)`` ``{lower, upper, circular}`` bound table, set by
        :func:`config_state`.
    """
    particles: np.ndarray
    probs: np.ndarray
    dynamics: Optional[np.ndarray] = None
    std: Optional[np.ndarray] = None
    bound: Optional[np.ndarray] = None

    @classmethod
    def create(cls, num_particles: int, num_states: int = NUM_STATES) -> "ParticleEnsemble":
        return cls(
            particles=np.zeros((num_states, num_particles), dtype=np.float64),
            probs=np.zeros(num_particles, dtype=np.float64),
        )

    @classmethod
    def from_states(cls, states) -> "ParticleEnsemble":
        ens = cls.create(len(states))
        for i, s in enumerate(states):
            set_state(ens, i, s)
        return ens

    @property
    def num_states(self) -> int:
        return self.particles.shape[0]

    @property
    def num_particles(self) -> int:
        return self.particles.shape[1]


def _check_layout(ens):
    if ens.num_states != NUM_STATES:
        raise ValueError(
            f"ensemble has {ens.num_states} states, rotated-rectangle layout needs {NUM_STATES}"
        )


def get_state(ens: ParticleEnsemble, p_id: int) -> ParticleState:
    """Read particle *p_id* from the ensemble."""
    _check_layout(ens)
    return ParticleState.from_vector(ens.particles[:, p_id])


def set_state(ens: ParticleEnsemble, p_id: int, state: ParticleState) -> None:
    """Write *state* into column *p_id*; no bounds are enforced."""
    _check_layout(ens)
    ens.particles[:, p_id] = state.to_vector()


def iter_states(ens: ParticleEnsemble):
    for p_id in range(ens.num_particles):
        yield p_id, get_state(ens, p_id)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
def constant_velocity(current, previous):
    """Extrapolate each dimension independently: ``2 * current - previous``."""
    return 2.0 * np.asarray(current, dtype=np.float64) - np.asarray(previous, dtype=np.float64)


def config_state(
    ens: ParticleEnsemble, imsize: Tuple[int, int], std: ParticleState
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Install dynamics, noise and bounds for an image of ``(width, height)``.

    The bound table rows are ``lower, upper, circular``; ``lower == upper``
    would mean unbounded.  Angle wraps over ``[0, 360)``.

    Returns
    -------
    dynamics, std, bound : ndarray
    """
    _check_layout(ens)
    width, height = imsize
    dynamics = DYNAMICS.copy()
    stdvec = std.to_vector()
    bound = np.array(
        [
            [0, width - 1, False],
            [0, height - 1, False],
            [1, width, False],
            [1, height, False],
            [0, 360, True],
        ],
        dtype=np.float64,
    )
    ens.dynamics = dynamics
    ens.std = stdvec
    ens.bound = bound
    logger.info("Configured %d particles for %dx%d frames, noise std %s",
                ens.num_particles, width, height, std)
    return dynamics, stdvec, bound


def additional_bound(ens: ParticleEnsemble, imsize: Tuple[int, int]) -> None:
    """Keep each rectangle's extent inside the frame (in place).

    Call after the engine's transition and bounding, before observation.
    Uses every particle's already-updated ``x`` and ``y``.
    """
    _check_layout(ens)
    width, height = imsize
    x, y = ens.particles[0], ens.particles[1]
    np.minimum(ens.particles[2], width - x, out=ens.particles[2])
    np.minimum(ens.particles[3], height - y, out=ens.particles[3])
