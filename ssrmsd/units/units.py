"""
.. module:: units
   :platform: Linux, MacOS, Windows
   :synopsis: Units of measurement for SSRMSD.

.. classauthor:: Charlles Abreu <craabreu@gmail.com>

"""

import ast
import operator
import typing as t
from numbers import Real

import numpy as np
import openmm
from openmm import unit as mmunit

from ..errors import ConfigurationError
from ..serialization import Serializable

ScalarQuantity = t.Union[mmunit.Quantity, Real]
MatrixQuantity = t.Union[
    mmunit.Quantity, np.ndarray, t.Sequence[openmm.Vec3], t.Sequence[np.ndarray]
]

_OPERATORS = {ast.Mult: operator.mul, ast.Div: operator.truediv, ast.Pow: operator.pow}


def _parse_unit(node: ast.AST) -> t.Any:
    if isinstance(node, ast.Expression):
        return _parse_unit(node.body)
    if isinstance(node, ast.Name):
        unit = getattr(mmunit, node.id, None)
        if not isinstance(unit, mmunit.Unit):
            raise ValueError(f"Unknown unit {node.id}.")
        return unit
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
        return node.value
    if isinstance(node, ast.UnaryOp) and isinstance(node.op, ast.USub):
        return -_parse_unit(node.operand)
    if isinstance(node, ast.BinOp) and type(node.op) in _OPERATORS:
        apply = _OPERATORS[type(node.op)]
        return apply(_parse_unit(node.left), _parse_unit(node.right))
    raise ValueError(f"Invalid unit expression: {ast.dump(node)}.")


class Unit(mmunit.Unit, Serializable):
    """
    Extension of the OpenMM Unit class to allow serialization and deserialization.

    Parameters
    ----------
    data
        A unit, a dictionary of base or scaled units and their exponents, or a
        string such as ``"nanometer"`` or ``"dalton*nanometer**2"``.

    Example
    -------
    >>> from ssrmsd.units import Unit
    >>> Unit("nanometer")
    nm
    """

    def __init__(self, data: t.Union[str, mmunit.Unit, dict]) -> None:
        if isinstance(data, str):
            data = _parse_unit(ast.parse(data, mode="eval"))
        if isinstance(data, mmunit.Unit):
            data = dict(data.iter_base_or_scaled_units())
        super().__init__(data)

    def __repr__(self) -> str:
        return self.get_symbol()

    def __getstate__(self) -> t.Dict[str, str]:
        return {"data": str(self)}

    def __setstate__(self, keywords: t.Dict[str, str]) -> None:
        self.__init__(keywords["data"])


Unit.registerTag("!ssrmsd.Unit")


class Quantity(mmunit.Quantity, Serializable):
    """
    Extension of the OpenMM Quantity class to allow serialization and deserialization.
    """

    def __init__(self, *args: t.Any) -> None:
        if len(args) == 1 and mmunit.is_quantity(args[0]):
            super().__init__(args[0].value_in_unit(args[0].unit), Unit(args[0].unit))
        else:
            super().__init__(*args)

    def __repr__(self):
        return str(self)

    def __getstate__(self) -> t.Dict[str, t.Any]:
        return {"value": self.value, "unit": str(self.unit)}

    def __setstate__(self, keywords: t.Dict[str, t.Any]) -> None:
        self.__init__(keywords["value"], Unit(keywords["unit"]))

    @property
    def value(self) -> t.Any:
        """The value of the quantity."""
        return self._value


Quantity.registerTag("!ssrmsd.Quantity")


def value_in_md_units(quantity: t.Union[ScalarQuantity, MatrixQuantity]) -> t.Any:
    """
    Return the value of a quantity in the MD unit system (e.g. mass in Da, distance in
    nm, time in ps, temperature in K, energy in kJ/mol, angle in rad).

    Parameters
    ----------
    quantity
        The quantity to be converted. Plain numbers are returned unchanged.

    Returns
    -------
    Any
        The value of the quantity in the MD unit system.

    Example
    -------
    >>> from openmm import unit
    >>> from ssrmsd.units import value_in_md_units
    >>> value_in_md_units(2 * unit.angstrom)
    0.2
    >>> value_in_md_units(0.08)
    0.08
    """
    if mmunit.is_quantity(quantity):
        return quantity.value_in_unit_system(mmunit.md_unit_system)
    return quantity


def value_in_nanometers(length: ScalarQuantity, name: str) -> float:
    """
    Return the value of a length in nanometers.

    Parameters
    ----------
    length
        The length. Plain numbers are assumed to be in nanometers.
    name
        What the length stands for, used in error messages.

    Raises
    ------
    ConfigurationError
        If ``length`` is a quantity whose unit is not a length unit.

    Example
    -------
    >>> from openmm import unit
    >>> from ssrmsd.units import value_in_nanometers
    >>> value_in_nanometers(2 * unit.angstrom, "bond length")
    0.2
    >>> value_in_nanometers(1.0 * unit.dalton, "bond length")
    Traceback (most recent call last):
    ...
    ssrmsd.errors.ConfigurationError: The bond length must be a length, not 1.0 Da.
    """
    if mmunit.is_quantity(length):
        if not length.unit.is_compatible(mmunit.nanometers):
            raise ConfigurationError(f"The {name} must be a length, not {length}.")
        return float(length.value_in_unit(mmunit.nanometers))
    return float(length)


def as_coordinate_array(positions: MatrixQuantity) -> np.ndarray:
    """
    Convert atom positions or box vectors to a float array in nanometers.

    Parameters
    ----------
    positions
        An array, a sequence of :OpenMM:`Vec3`, or a quantity wrapping either of
        them. Plain numbers are assumed to be in nanometers.

    Returns
    -------
    numpy.ndarray
        The positions as an array of shape ``(numAtoms, 3)``, or whatever shape the
        input had if it was not a list of 3D points.

    Example
    -------
    >>> import openmm
    >>> from openmm import unit
    >>> from ssrmsd.units import as_coordinate_array
    >>> as_coordinate_array([openmm.Vec3(1, 2, 3)] * unit.angstrom)
    array([[0.1, 0.2, 0.3]])
    """
    if mmunit.is_quantity(positions):
        positions = positions.value_in_unit(mmunit.nanometers)
    return np.array(positions, dtype=float, ndmin=2)
