#########################################################################################
##
##                         ESTIMATION CONVERGENCE POLICY
##                               (convergence.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np


# CLASS =================================================================================

@dataclass(frozen=True)
class ConvergenceChecker:
    """Stopping policy for the iterative estimation loop.

    The estimation stops as soon as any of the following holds:

    - ``iteration_count >= max_iterations``
    - the latest RMS residual is below ``min_residual``
    - more than ``iterations_without_improvement`` iterations have passed
      since the lowest RMS residual so far was reached
    - the latest two RMS residuals differ by less than ``min_residual_change``

    Parameters
    ----------
    max_iterations : int
        Unconditional ceiling on the number of completed iterations.
    min_residual_change : float
        Minimum change in RMS residual between two consecutive iterations.
    min_residual : float
        RMS residual below which the estimation is converged.
    iterations_without_improvement : int
        Tolerated number of iterations after the last new RMS minimum.

    Notes
    -----
    The checker is a pure function of its inputs. The loop calling it
    always completes one iteration before asking.
    """

    max_iterations: int = 5
    min_residual_change: float = 0.0
    min_residual: float = 1.0e-20
    iterations_without_improvement: int = 2


    def __post_init__(self) -> None:
        if self.max_iterations < 0:
            raise ValueError(f"max_iterations must be >= 0, got {self.max_iterations}")
        if self.iterations_without_improvement < 0:
            raise ValueError(
                "iterations_without_improvement must be >= 0, "
                f"got {self.iterations_without_improvement}"
            )
        if self.min_residual_change < 0.0:
            raise ValueError(
                f"min_residual_change must be >= 0, got {self.min_residual_change}"
            )
        if self.min_residual < 0.0:
            raise ValueError(f"min_residual must be >= 0, got {self.min_residual}")


    def stop_reason(self, iteration_count: int, rms_history: Sequence[float]) -> str | None:
        """Return why the estimation should stop, or ``None`` to continue.

        Parameters
        ----------
        iteration_count : int
            Number of completed iterations.
        rms_history : sequence of float
            RMS residual of every completed iteration, oldest first.

        Returns
        -------
        str or None
        """
        if iteration_count >= self.max_iterations:
            return "maximum number of iterations reached"

        if len(rms_history) == 0:
            return None

        history = np.asarray(rms_history, dtype=float)

        if history[-1] < self.min_residual:
            return "required residual level achieved"

        # argmin picks the first occurrence, so ties are not new minima
        since_best = history.size - 1 - int(np.argmin(history))
        if since_best > self.iterations_without_improvement:
            return "too many iterations without residual improvement"

        if history.size > 1 and abs(history[-1] - history[-2]) < self.min_residual_change:
            return "residual change below threshold"

        return None


    def should_stop(self, iteration_count: int, rms_history: Sequence[float]) -> bool:
        """True if any stopping condition holds."""
        return self.stop_reason(iteration_count, rms_history) is not None
