import os

import cv2
import numpy as np
import pytest

from rectpf.cli import main
from rectpf.config import ObservationConfig
from rectpf.observation import save_pca_model
from rectpf.state import ParticleEnsemble, ParticleState
from rectpf.visualization import draw_particles


def test_draw_particles(frame):
    canvas = np.zeros_like(frame)
    ens = ParticleEnsemble.from_states([ParticleState(40, 40, 20, 10), ParticleState(100, 80, 30, 30, 45)])

    draw_particles(ens, canvas, (0, 0, 255), pid=0)
    assert canvas[35, 30, 2] == 255      # top-left corner of particle 0
    assert not canvas[60:100, 80:120].any()

    draw_particles(ens, canvas, (0, 0, 255))
    assert canvas[60:100, 80:120].any()


def test_score_template(tmp_path, frame, capsys):
    frame_path = str(tmp_path / "frame.png")
    ref_path = str(tmp_path / "ref.png")
    out_path = str(tmp_path / "drawn.png")
    cv2.imwrite(frame_path, frame)
    cv2.imwrite(ref_path, frame[38:62, 40:70])

    main(["score", frame_path, "-m", "template", "-r", ref_path,
          "-s", "55,50,30,24,0", "-s", "120,90,30,24,0", "--draw", out_path])

    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 2
    assert lines[0].endswith("loglik :-0.000000") or lines[0].endswith("loglik :0.000000")
    assert os.path.isfile(out_path)


def test_learn_then_score_pca(tmp_path, frame, capsys):
    patch_dir = tmp_path / "patches"
    patch_dir.mkdir()
    for i in range(12):
        x, y = 8 * i, 5 * i
        cv2.imwrite(str(patch_dir / f"p{i:02d}.png"), frame[y:y + 24, x:x + 30])
    model_dir = str(tmp_path / "model")

    main(["--data-dir", model_dir, "learn", str(patch_dir), "-k", "3"])
    for name in ("pcaval.xml", "pcavec.xml", "pcaavg.xml"):
        assert os.path.isfile(os.path.join(model_dir, name))

    frame_path = str(tmp_path / "frame.png")
    cv2.imwrite(frame_path, frame)
    main(["--data-dir", model_dir, "score", frame_path, "-s", "60,50,30,24,15"])
    assert "loglik" in capsys.readouterr().out


def test_missing_pca_model_exits(tmp_path, frame):
    frame_path = str(tmp_path / "frame.png")
    cv2.imwrite(frame_path, frame)
    with pytest.raises(SystemExit) as exc:
        main(["--data-dir", str(tmp_path / "nowhere"), "score", frame_path, "-s", "60,50,30,24,0"])
    assert exc.value.code == 1


def test_bad_state_argument(tmp_path):
    with pytest.raises(SystemExit) as exc:
        main(["score", str(tmp_path / "f.png"), "-s", "1,2,3"])
    assert exc.value.code == 2


def test_learn_with_too_few_patches_exits(tmp_path, frame):
    patch_dir = tmp_path / "patches"
    patch_dir.mkdir()
    for i in range(5):
        cv2.imwrite(str(patch_dir / f"p{i}.png"), frame[5 * i:5 * i + 24, 8 * i:8 * i + 30])
    model_dir = tmp_path / "model"

    with pytest.raises(SystemExit) as exc:
        main(["--data-dir", str(model_dir), "learn", str(patch_dir)])
    assert exc.value.code == 1
    assert not model_dir.exists()


def test_degenerate_pca_model_exits(tmp_path, frame):
    model_dir = str(tmp_path / "model")
    save_pca_model(ObservationConfig(data_dir=model_dir),
                   [160.4, 139.3, 94.4, 90.1, 6.5e-15], np.eye(576)[:5], np.zeros(576))
    frame_path = str(tmp_path / "frame.png")
    cv2.imwrite(frame_path, frame)

    with pytest.raises(SystemExit) as exc:
        main(["--data-dir", model_dir, "score", frame_path, "-s", "60,50,30,24,15"])
    assert exc.value.code == 1


def test_malformed_pca_model_exits(tmp_path, frame):
    model_dir = tmp_path / "model"
    model_dir.mkdir()
    for name in ("pcaval.xml", "pcavec.xml", "pcaavg.xml"):
        (model_dir / name).write_text("<opencv_storage><broken")
    frame_path = str(tmp_path / "frame.png")
    cv2.imwrite(frame_path, frame)

    with pytest.raises(SystemExit) as exc:
        main(["--data-dir", str(model_dir), "score", frame_path, "-s", "60,50,30,24,15"])
    assert exc.value.code == 1
