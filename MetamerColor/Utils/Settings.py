import os
from dataclasses import dataclass, replace


# Uplifting sample rates
N_UPLIFTING_BOUNDARY_SAMPLES = 128     # color system boundary samples
N_UPLIFTING_MISMATCH_SAMPLES = 256     # mismatch volume samples before a builder converges
N_UPLIFTING_MISMATCH_SAMPLES_ITER = 16  # above, but per advance() call
UPLIFTING_BOUNDARY_SEED = 4

# Qhull can fail on tiny inputs, so the hull needs more than a simplex worth of points
HULL_MIN_POINTS = 6
HULL_MIN_EXTENT = 5e-4


@dataclass
class SolverSettings:
    """Settings passed to the SLSQP solver.

    Iteration counts are kept low on purpose; only a plausible metamer is required,
    not a converged optimum.
    """
    max_iters: int
    ftol: float
    impose_boundedness: bool
    method: str = "SLSQP"

    def with_boundedness(self, impose_boundedness: bool) -> 'SolverSettings':
        return replace(self, impose_boundedness=impose_boundedness)


@dataclass
class BuilderSettings:
    n_samples: int = N_UPLIFTING_MISMATCH_SAMPLES
    n_samples_iter: int = N_UPLIFTING_MISMATCH_SAMPLES_ITER
    hull_min_points: int = HULL_MIN_POINTS
    hull_min_extent: float = HULL_MIN_EXTENT
    n_workers: int = min(8, os.cpu_count() or 1)
    parallel_threshold: int = 16


@dataclass
class TessellationSettings:
    n_boundary_samples: int = N_UPLIFTING_BOUNDARY_SAMPLES
    boundary_seed: int = UPLIFTING_BOUNDARY_SEED
    interior_epsilon: float = 1e-4


SPECTRUM_SOLVER_SETTINGS = SolverSettings(max_iters=10, ftol=1e-3, impose_boundedness=False)
MEASUREMENT_SOLVER_SETTINGS = SolverSettings(max_iters=512, ftol=1e-5, impose_boundedness=True)
BOUNDARY_SOLVER_SETTINGS = SolverSettings(max_iters=128, ftol=1e-3, impose_boundedness=True)

DEFAULT_BUILDER_SETTINGS = BuilderSettings()
DEFAULT_TESSELLATION_SETTINGS = TessellationSettings()
