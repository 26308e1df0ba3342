from typing import Sequence

import numpy as np


class StereoMixer:
    """
    Applies per-device balance to a base volume.

    ARCHITECTURAL INVARIANT: No timing logic and no device I/O. Computes the
    effective volume of every device in one pass and clips into [0, 1].
    """

    def mix(self, base_volume: float, factors: Sequence[float]) -> np.ndarray:
        if len(factors) == 0:
            return np.zeros(0, dtype=np.float64)
        # Apply balance in float64 then clip back into the device range
        out = np.asarray(factors, dtype=np.float64) * float(base_volume)
        np.clip(out, 0.0, 1.0, out=out)
        return out

    @staticmethod
    def clamp(value: float) -> float:
        value = float(value)
        if np.isnan(value):
            return 0.0
        return float(np.clip(value, 0.0, 1.0))
