"""
Units submodule of SSRMSD

"""

from .units import (  # noqa: F401
    MatrixQuantity,
    Quantity,
    ScalarQuantity,
    Unit,
    as_coordinate_array,
    value_in_md_units,
    value_in_nanometers,
)
