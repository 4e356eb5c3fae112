"""
.. package:: ssrmsd
    :platform: Linux, MacOS, Windows
    :synopsis: Differentiable Secondary-Structure RMSD Content for OpenMM
"""

from ._version import __version__  # noqa: F401
from .aggregation import (  # noqa: F401
    Aggregate,
    AltMinimum,
    Highest,
    Lowest,
    SoftMinimum,
    SwitchingMean,
    SwitchingSum,
)
from .alignment import AlignmentType, drmsd, optimal, simple  # noqa: F401
from .collective_variable import CollectiveVariable  # noqa: F401
from .errors import ConfigurationError, GeometryError  # noqa: F401
from .output import CollectiveVariableOutput  # noqa: F401
from .reference_template import (  # noqa: F401
    ReferenceTemplate,
    getTemplate,
    getTemplateNames,
    registerTemplate,
)
from .secondary_structure_rmsd import SecondaryStructureRMSD  # noqa: F401
from .switching_function import RationalSwitchingFunction  # noqa: F401

__all__ = [
    "Aggregate",
    "AlignmentType",
    "AltMinimum",
    "CollectiveVariable",
    "CollectiveVariableOutput",
    "ConfigurationError",
    "GeometryError",
    "Highest",
    "Lowest",
    "RationalSwitchingFunction",
    "ReferenceTemplate",
    "SecondaryStructureRMSD",
    "SoftMinimum",
    "SwitchingMean",
    "SwitchingSum",
    "drmsd",
    "getTemplate",
    "getTemplateNames",
    "optimal",
    "registerTemplate",
    "simple",
]
