"""
Rotated-rectangle particle filter observation core.

Oriented-rectangle geometry, a 5-dimensional particle state with its
dynamics/noise/bound configuration, and PCA-subspace and template-matching
appearance likelihoods built on OpenCV.
"""

from .config import ObservationConfig, StateConfig
from .geometry import (
    Rect,
    Rect32f,
    Box32f,
    create_affine,
    rect32f_points,
    box32f_points,
    rect_points,
    point_rect32f_test,
    point_rect_test,
    crop_image_roi,
    extract_patch_with_padding,
)
from .state import (
    ParticleState,
    ParticleEnsemble,
    get_state,
    set_state,
    config_state,
    additional_bound,
    constant_velocity,
)
from .observation import (
    RectpfError,
    ModelLoadError,
    ModelConfigError,
    ObservationModel,
    PcaObservationModel,
    TemplateObservationModel,
    pca_diffs,
    check_eigenvalues,
    preprocess,
    fit_pca_model,
    save_pca_model,
    load_matrix,
    save_matrix,
)
from .visualization import draw_rect32f, draw_particles
