# Metamer Color - spectral uplifting and metamer mismatch volumes for Python
from .Utils.CustomTypes import *
from .Utils.Settings import SolverSettings, BuilderSettings, TessellationSettings
from .Spectra.Basis import Basis, GenerateCosineBasis
from .Spectra.ColorSystem import ColorSystem, IndirectColorSystem
from .ColorMath.SpectrumSolver import SolveSpectrum, SolveSpectrumCoef, FitSpectrumCoef
from .ColorMath.BoundarySolver import SolveBoundary, SolveIndirectBoundary, SampleColorSolid
from .ColorMath.Geometry import ConvexHull, BuildOptions
from .Constraints import (
    LinearConstraint, NLinearConstraint, MetamericConstraint, MeasurementConstraint,
    DirectColorConstraint, DirectSurfaceConstraint, IndirectSurfaceConstraint,
    ConstraintToDict, ConstraintFromDict
)
from .Uplifting import SceneResources, Uplifting, UpliftingVertex
from .MetamerBuilder import MetamerBuilder, BuilderState
from .UpliftingData import UpliftingData
