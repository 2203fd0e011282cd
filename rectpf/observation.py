"""
Appearance observation models.

Two interchangeable likelihoods turn the image under each particle's
rectangle into a log-likelihood written to ``ParticleEnsemble.probs``:

* :class:`PcaObservationModel` scores patches by their distance in and from
  a learned PCA subspace (DIFS + DFFS).
* :class:`TemplateObservationModel` scores patches by their negative L2
  distance to a reference patch.

Both resize patches to a fixed feature size (24x24 by default).
"""

import logging
import os
import threading
from abc import ABC, abstractmethod

import cv2
import numpy as np

from .config import ObservationConfig
from .geometry import crop_image_roi, extract_patch_with_padding
from .state import iter_states

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Default parameters
# ---------------------------------------------------------------------------
DEFAULT_FEATURE_SIZE = (24, 24)
LOG_2PI = np.log(2.0 * np.pi)
# eigenvalues at or below this fraction of the largest are treated as zero
EIGENVALUE_RTOL = 1e-10


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
class RectpfError(Exception):
    """Base class for errors raised by this package."""


class ModelLoadError(RectpfError):
    """A persisted model file is missing or unreadable."""


class ModelConfigError(RectpfError, ValueError):
    """Model matrices are inconsistent or unusable."""


# ---------------------------------------------------------------------------
# Matrix persistence
# ---------------------------------------------------------------------------
def load_matrix(path):
    """Read the first matrix stored in an OpenCV XML/YAML file."""
    if not os.path.isfile(path):
        raise ModelLoadError(f"{path} is not loadable: no such file")
    try:
        fs = cv2.FileStorage(path, cv2.FILE_STORAGE_READ)
        try:
            if not fs.isOpened():
                raise ModelLoadError(f"{path} is not loadable")
            mat = fs.getFirstTopLevelNode().mat()
        finally:
            fs.release()
    except (cv2.error, SystemError) as exc:
        raise ModelLoadError(f"{path} is not loadable: {exc}") from exc
    if mat is None:
        raise ModelLoadError(f"{path} is not loadable: no matrix found")
    return np.asarray(mat, dtype=np.float64)


def save_matrix(path, mat):
    """Write *mat* to an OpenCV XML/YAML file, named after the file stem."""
    name = os.path.splitext(os.path.basename(path))[0]
    fs = cv2.FileStorage(path, cv2.FILE_STORAGE_WRITE)
    try:
        fs.write(name, np.asarray(mat, dtype=np.float64))
    finally:
        fs.release()


# ---------------------------------------------------------------------------
# Feature helpers
# ---------------------------------------------------------------------------
def gauss_norm(mat):
    """Shift to zero mean and scale to unit standard deviation."""
    mean, std = cv2.meanStdDev(mat)
    out = mat - mean[0, 0]
    if std[0, 0] > 0:
        out /= std[0, 0]
    return out


def preprocess(patch, feature_size=DEFAULT_FEATURE_SIZE):
    """Grayscale, resize to *feature_size* ``(w, h)`` and normalise.

    This must match the preprocessing used when the PCA subspace was
    trained.  Returns a float64 array of shape ``(h, w)``.
    """
    if patch.ndim == 3 and patch.shape[2] != 1:
        gray = cv2.cvtColor(patch, cv2.COLOR_BGR2GRAY)
    else:
        gray = patch.reshape(patch.shape[:2])
    resized = cv2.resize(gray, tuple(feature_size), interpolation=cv2.INTER_LINEAR)
    return gauss_norm(resized.astype(np.float64))


def vectorize(normed):
    """Column-major flatten, the layout of the trained subspace."""
    return normed.T.reshape(-1)


# ---------------------------------------------------------------------------
# PCA subspace distances
# ---------------------------------------------------------------------------
def check_eigenvalues(eigenvalues):
    """Raise ModelConfigError unless every eigenvalue is usable as a divisor."""
    eigenvalues = np.asarray(eigenvalues, dtype=np.float64).ravel()
    if eigenvalues.size == 0:
        raise ModelConfigError("model has no eigenvalues")
    floor = EIGENVALUE_RTOL * eigenvalues.max()
    if not np.all(eigenvalues > max(floor, 0.0)):
        raise ModelConfigError(
            f"eigenvalues must be positive and above {floor:.3g}, smallest is {eigenvalues.min():.3g}"
        )


def pca_diffs(samples, mean, eigenvalues, eigenvectors, normalize=False, logprob=True):
    """Moghaddam's DIFS + DFFS likelihood for each column of *samples*.

    Parameters
    ----------
    samples : ndarray
        ``(d, n)`` feature vectors as columns.
    mean : ndarray
        ``(d,)`` subspace mean.
    eigenvalues : ndarray
        At least ``k`` positive eigenvalues in decreasing order.  Values
        beyond the first ``k`` estimate the residual variance.
    eigenvectors : ndarray
        ``(k, d)`` orthonormal basis as rows.
    normalize : bool
        Add the Gaussian normalising constants.
    logprob : bool
        Return log-likelihoods, otherwise likelihoods.

    Returns
    -------
    ndarray
        ``(n,)`` scores, higher for samples closer to the subspace.
    """
    d, _ = samples.shape
    k = eigenvectors.shape[0]
    eigenvalues = np.asarray(eigenvalues, dtype=np.float64).ravel()
    retained = eigenvalues[:k]

    centered = samples - np.asarray(mean, dtype=np.float64).reshape(-1, 1)
    coeffs = eigenvectors @ centered

    difs = np.sum(coeffs ** 2 / retained[:, None], axis=0)
    dffs = np.maximum(np.sum(centered ** 2, axis=0) - np.sum(coeffs ** 2, axis=0), 0.0)

    rho = eigenvalues[k:].mean() if eigenvalues.size > k else retained[-1]

    logp = -0.5 * (difs + dffs / rho)
    if normalize:
        logp -= 0.5 * (k * LOG_2PI + np.sum(np.log(retained)) + (d - k) * (LOG_2PI + np.log(rho)))
    return logp if logprob else np.exp(logp)


# ---------------------------------------------------------------------------
# Observation models
# ---------------------------------------------------------------------------
class ObservationModel(ABC):
    """Common per-particle plumbing for appearance likelihoods."""

    def __init__(self, feature_size=DEFAULT_FEATURE_SIZE):
        self.feature_size = tuple(int(v) for v in feature_size)

    @property
    def feature_dim(self):
        return self.feature_size[0] * self.feature_size[1]

    @staticmethod
    def particle_rects(ens):
        """Yield ``(index, Rect32f)`` for every particle."""
        for p_id, s in iter_states(ens):
            yield p_id, s.to_rect32f()

    @abstractmethod
    def likelihoods(self, ens, frame, reference=None):
        """Return ``(num_particles,)`` log-likelihoods without touching *ens*."""

    def score(self, ens, frame, reference=None):
        """Write one log-likelihood per particle into ``ens.probs``."""
        probs = self.likelihoods(ens, frame, reference)
        ens.probs[:] = probs
        logger.debug("%s scored %d particles, best %.4f",
                     type(self).__name__, probs.size, probs.max() if probs.size else float("nan"))
        return probs


class PcaObservationModel(ObservationModel):
    """DIFS + DFFS likelihood in a PCA appearance subspace.

    The model owns its eigen matrices; release them with :meth:`close` or by
    using the model as a context manager.

    Parameters
    ----------
    eigenvalues : ndarray
        ``k'`` eigenvalues, ``k' >= k``, all above ``EIGENVALUE_RTOL`` times the
        largest.
    eigenvectors : ndarray
        ``(k, d)`` basis with ``d = feature_width * feature_height``.
    mean : ndarray
        ``d`` mean feature vector.
    feature_size : tuple[int, int]
        Patch ``(width, height)``.
    shear : tuple[float, float]
        Shear applied when sampling each particle's rectangle.
    """

    def __init__(self, eigenvalues, eigenvectors, mean,
                 feature_size=DEFAULT_FEATURE_SIZE, shear=(0.0, 0.0)):
        super().__init__(feature_size)
        self.shear = tuple(shear)
        self._lock = threading.RLock()

        eigenvalues = np.asarray(eigenvalues, dtype=np.float64).ravel()
        eigenvectors = np.atleast_2d(np.asarray(eigenvectors, dtype=np.float64))
        mean = np.asarray(mean, dtype=np.float64).ravel()

        k, d = eigenvectors.shape
        if d != self.feature_dim:
            raise ModelConfigError(
                f"eigenvectors have {d} columns, feature size {self.feature_size} needs {self.feature_dim}"
            )
        if mean.size != d:
            raise ModelConfigError(f"mean has {mean.size} entries, expected {d}")
        if eigenvalues.size < k:
            raise ModelConfigError(f"{eigenvalues.size} eigenvalues for {k} eigenvectors")
        check_eigenvalues(eigenvalues)

        self.eigenvalues = eigenvalues
        self.eigenvectors = eigenvectors
        self.mean = mean

    @classmethod
    def load(cls, cfg: ObservationConfig):
        """Load ``pcaval``, ``pcavec`` and ``pcaavg`` from ``cfg.data_dir``."""
        val_path, vec_path, avg_path = cfg.paths()
        eigenvalues = load_matrix(val_path)
        eigenvectors = load_matrix(vec_path)
        mean = load_matrix(avg_path)
        logger.info("Loaded PCA model from %s: %d eigenvectors of dim %d",
                    cfg.data_dir or ".", eigenvectors.shape[0], eigenvectors.shape[1])
        return cls(eigenvalues, eigenvectors, mean, cfg.feature_size, cfg.shear)

    @property
    def closed(self):
        return self.eigenvectors is None

    def close(self):
        with self._lock:
            if self.closed:
                return
            self.eigenvalues = None
            self.eigenvectors = None
            self.mean = None
            logger.info("Released PCA model")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def features(self, ens, frame):
        """Assemble the ``(d, num_particles)`` feature matrix."""
        features = np.empty((self.feature_dim, ens.num_particles), dtype=np.float64)
        for p_id, rect in self.particle_rects(ens):
            patch = crop_image_roi(frame, rect, shear=self.shear)
            features[:, p_id] = vectorize(preprocess(patch, self.feature_size))
        return features

    def likelihoods(self, ens, frame, reference=None):
        with self._lock:
            if self.closed:
                raise RuntimeError("PCA model has been released")
            features = self.features(ens, frame)
            return pca_diffs(features, self.mean, self.eigenvalues, self.eigenvectors)


class TemplateObservationModel(ObservationModel):
    """Negative L2 distance to a reference patch.

    Each particle is cropped as an upright box of the rectangle's width and
    height anchored at its rotated top-left corner; the rotation itself is
    not sampled.
    """

    def __init__(self, feature_size=DEFAULT_FEATURE_SIZE, reference=None):
        super().__init__(feature_size)
        self.reference = None
        if reference is not None:
            self.set_reference(reference)

    def set_reference(self, img):
        """Resize *img* to the feature size and keep it as the reference."""
        self.reference = cv2.resize(img, self.feature_size, interpolation=cv2.INTER_LINEAR)
        return self.reference

    def _check_reference(self, reference, frame):
        if reference is None:
            raise ValueError("template model needs a reference patch")
        w, h = self.feature_size
        if reference.shape[:2] != (h, w):
            raise ValueError(
                f"reference is {reference.shape[1]}x{reference.shape[0]}, expected {w}x{h}"
            )
        if reference.shape[2:] != frame.shape[2:] or reference.dtype != frame.dtype:
            raise ValueError("reference and frame differ in channels or depth")

    def likelihoods(self, ens, frame, reference=None):
        reference = self.reference if reference is None else reference
        self._check_reference(reference, frame)

        probs = np.empty(ens.num_particles, dtype=np.float64)
        for p_id, rect32f in self.particle_rects(ens):
            rect = rect32f.to_rect()
            rect.width = max(1, rect.width)
            rect.height = max(1, rect.height)
            patch = extract_patch_with_padding(frame, rect)
            resized = cv2.resize(patch, self.feature_size, interpolation=cv2.INTER_LINEAR)
            # Gaussian log-likelihood up to scale: exp(-d^2 / sigma^2)
            probs[p_id] = -cv2.norm(resized, reference, cv2.NORM_L2)
        return probs


# ---------------------------------------------------------------------------
# Model learning
# ---------------------------------------------------------------------------
def fit_pca_model(patches, num_components, feature_size=DEFAULT_FEATURE_SIZE):
    """Learn ``(eigenvalues, eigenvectors, mean)`` from training patches.

    Patches go through the same :func:`preprocess` and :func:`vectorize`
    steps as scoring.  Centred data of ``n`` patches spans at most ``n - 1``
    directions, so at least ``num_components + 1`` patches are required.
    """
    if num_components < 1 or num_components >= len(patches):
        raise ModelConfigError(
            f"{num_components} components need at least {num_components + 1} patches, got {len(patches)}"
        )
    data = np.stack([vectorize(preprocess(p, feature_size)) for p in patches])
    mean, eigenvectors, eigenvalues = cv2.PCACompute2(
        data, np.empty((0)), maxComponents=int(num_components)
    )
    check_eigenvalues(eigenvalues)
    logger.info("Fitted PCA model on %d patches, %d components",
                data.shape[0], eigenvectors.shape[0])
    return eigenvalues.ravel(), eigenvectors, mean.ravel()


def save_pca_model(cfg: ObservationConfig, eigenvalues, eigenvectors, mean):
    """Persist a model where :meth:`PcaObservationModel.load` will find it."""
    if cfg.data_dir:
        os.makedirs(cfg.data_dir, exist_ok=True)
    val_path, vec_path, avg_path = cfg.paths()
    save_matrix(val_path, np.asarray(eigenvalues).reshape(-1, 1))
    save_matrix(vec_path, eigenvectors)
    save_matrix(avg_path, np.asarray(mean).reshape(-1, 1))
    logger.info("Saved PCA model to %s", cfg.data_dir or ".")
