"""Typed configuration blobs for state and observation models."""
import os
from dataclasses import dataclass
from typing import Tuple


# -------------------- Observation --------------------
@dataclass
class ObservationConfig:
    feature_size: Tuple[int, int] = (24, 24)   # (width, height) of every scored patch
    data_dir: str = ""
    data_pcaval: str = "pcaval.xml"
    data_pcavec: str = "pcavec.xml"
    data_pcaavg: str = "pcaavg.xml"
    shear: Tuple[float, float] = (0.0, 0.0)

    def paths(self) -> Tuple[str, str, str]:
        """Eigenvalue, eigenvector and mean file paths, in that order."""
        return (
            os.path.join(self.data_dir, self.data_pcaval),
            os.path.join(self.data_dir, self.data_pcavec),
            os.path.join(self.data_dir, self.data_pcaavg),
        )


# ----------------------- State -----------------------
@dataclass
class StateConfig:
    # Process noise standard deviations
    std_x: float = 3.0          # px
    std_y: float = 3.0          # px
    std_width: float = 1.0      # px
    std_height: float = 1.0     # px
    std_angle: float = 2.0      # deg
