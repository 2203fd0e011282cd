"""
Command-line entry point.

``score`` evaluates rectangle hypotheses on one frame with either
observation model; ``learn`` fits a PCA appearance model from a directory
of training patches.
"""

import argparse
import glob
import logging
import os
import sys

import cv2

from .config import ObservationConfig
from .observation import (
    ModelConfigError,
    ModelLoadError,
    PcaObservationModel,
    TemplateObservationModel,
    fit_pca_model,
    save_pca_model,
)
from .state import ParticleEnsemble, ParticleState
from .visualization import draw_particles

logger = logging.getLogger("rectpf")

IMAGE_PATTERNS = ("*.png", "*.jpg", "*.jpeg", "*.bmp", "*.pgm")


def _parse_state(text):
    try:
        values = [float(v) for v in text.split(",")]
        return ParticleState.from_vector(values)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"bad state '{text}': expected x,y,w,h,angle") from exc


def _read_image(path):
    img = cv2.imread(path, cv2.IMREAD_COLOR)
    if img is None:
        logger.error("Could not read image %s", path)
        sys.exit(1)
    return img


def parse_args(argv=None):
    p = argparse.ArgumentParser(prog="rectpf", description="Rotated-rectangle particle observation tools")
    p.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    p.add_argument("--feature-size", type=int, nargs=2, default=(24, 24), metavar=("W", "H"),
                   help="Patch resolution used for scoring (default: 24 24)")
    p.add_argument("--data-dir", default="", help="Directory holding pcaval/pcavec/pcaavg files")
    sub = p.add_subparsers(dest="command", required=True)

    sc = sub.add_parser("score", help="Score particle states on a frame")
    sc.add_argument("frame", help="Image to score")
    sc.add_argument("--state", "-s", type=_parse_state, action="append", required=True,
                    help="Particle state x,y,width,height,angle (repeatable)")
    sc.add_argument("--model", "-m", choices=["pca", "template"], default="pca")
    sc.add_argument("--reference", "-r", help="Reference patch for the template model")
    sc.add_argument("--shear", type=float, nargs=2, default=(0.0, 0.0), metavar=("SX", "SY"))
    sc.add_argument("--draw", help="Write the frame with particles drawn to this path")

    ln = sub.add_parser("learn", help="Fit a PCA model from training patches")
    ln.add_argument("patch_dir", help="Directory of training patch images")
    ln.add_argument("--components", "-k", type=int, default=16)
    return p.parse_args(argv)


def _score(args, cfg):
    frame = _read_image(args.frame)
    ens = ParticleEnsemble.from_states(args.state)

    if args.model == "pca":
        try:
            model = PcaObservationModel.load(cfg)
        except (ModelLoadError, ModelConfigError) as exc:
            logger.error("%s", exc)
            sys.exit(1)
        with model:
            model.score(ens, frame)
    else:
        if not args.reference:
            logger.error("--reference is required for the template model")
            sys.exit(2)
        model = TemplateObservationModel(cfg.feature_size, _read_image(args.reference))
        model.score(ens, frame)

    for s, logp in zip(args.state, ens.probs):
        print(f"{s}  loglik :{logp:f}")

    if args.draw:
        draw_particles(ens, frame, (0, 255, 0))
        cv2.imwrite(args.draw, frame)
        logger.info("Wrote %s", args.draw)


def _learn(args, cfg):
    paths = sorted(p for pat in IMAGE_PATTERNS for p in glob.glob(os.path.join(args.patch_dir, pat)))
    if not paths:
        logger.error("No training patches found in %s", args.patch_dir)
        sys.exit(1)
    patches = [_read_image(p) for p in paths]
    try:
        eigenvalues, eigenvectors, mean = fit_pca_model(patches, args.components, cfg.feature_size)
    except ModelConfigError as exc:
        logger.error("%s", exc)
        sys.exit(1)
    save_pca_model(cfg, eigenvalues, eigenvectors, mean)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cfg = ObservationConfig(
        feature_size=tuple(args.feature_size),
        data_dir=args.data_dir,
        shear=tuple(getattr(args, "shear", (0.0, 0.0))),
    )
    if args.command == "score":
        _score(args, cfg)
    else:
        _learn(args, cfg)


if __name__ == "__main__":
    main()
