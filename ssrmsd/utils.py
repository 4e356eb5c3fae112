"""
.. module:: utils
   :platform: Linux, MacOS, Windows
   :synopsis: Utility functions for SSRMSD

.. moduleauthor:: Charlles Abreu <craabreu@gmail.com>

"""

import functools
import inspect
import typing as t

import numpy as np
import openmm
from openmm import app as mmapp
from openmm import unit as mmunit

from .serialization import SerializableResidue
from .units import Quantity, Unit, as_coordinate_array


def read_context(
    context: openmm.Context, getBoxVectors: bool = False
) -> t.Tuple[np.ndarray, t.Optional[np.ndarray]]:
    """
    Read the current atom positions (and, optionally, the periodic box vectors)
    from an :OpenMM:`Context`.

    Parameters
    ----------
    context
        The context to be read.
    getBoxVectors
        Whether to read the periodic box vectors as well.

    Returns
    -------
    numpy.ndarray
        The positions in nanometers, with shape ``(numAtoms, 3)``.
    numpy.ndarray or None
        The box vectors in nanometers, with shape ``(3, 3)``, or ``None`` if they
        were not requested.
    """
    state = context.getState(getPositions=True)
    positions = as_coordinate_array(state.getPositions(asNumpy=True))
    if not getBoxVectors:
        return positions, None
    box_vectors = as_coordinate_array(state.getPeriodicBoxVectors(asNumpy=True))
    return positions, box_vectors


def get_particle_masses(system: openmm.System) -> np.ndarray:
    """
    Get the masses of all particles in an :OpenMM:`System`, in daltons.
    """
    return np.array(
        [
            system.getParticleMass(index).value_in_unit(mmunit.dalton)
            for index in range(system.getNumParticles())
        ]
    )


def compute_effective_mass(gradient: np.ndarray, masses: np.ndarray) -> float:
    r"""
    Compute the effective mass of a collective variable from its gradient with
    respect to all atom positions.

    .. math::

        m_\mathrm{eff}({\bf r}) = \left(
            \sum_{i=1}^N \frac{1}{m_i} \left\| \frac{dq}{d{\bf r}_i} \right\|^2
        \right)^{-1}

    Parameters
    ----------
    gradient
        The gradient of the collective variable, with shape ``(numAtoms, 3)``.
    masses
        The masses of all atoms.

    Returns
    -------
    float
        The effective mass, which is infinite when the gradient vanishes.

    Example
    -------
    >>> import numpy as np
    >>> from ssrmsd.utils import compute_effective_mass
    >>> gradient = np.array([[1.0, 0.0, 0.0], [0.0, 0.0, 0.0]])
    >>> compute_effective_mass(gradient, np.array([12.0, 16.0]))
    12.0
    """
    squared_gradients = np.sum(np.square(gradient), axis=1)
    nonzeros = np.nonzero(squared_gradients)[0]
    if nonzeros.size == 0:
        return np.inf
    return float(1.0 / np.sum(squared_gradients[nonzeros] / masses[nonzeros]))


def preprocess_args(func: t.Callable) -> t.Callable:
    """
    A decorator that converts instances of unserializable classes to their
    serializable counterparts.

    Parameters
    ----------
        func
            The function to be decorated.

    Returns
    -------
        The decorated function.

    Example
    -------
    >>> from ssrmsd import units, utils
    >>> from openmm import unit as mmunit
    >>> @utils.preprocess_args
    ... def function(data):
    ...     return data
    >>> assert isinstance(function(mmunit.angstrom), units.Unit)
    >>> assert isinstance(function(5 * mmunit.angstrom), units.Quantity)
    >>> seq = [mmunit.angstrom, mmunit.nanometer]
    >>> assert isinstance(function(seq), list)
    >>> assert all(isinstance(item, units.Unit) for item in function(seq))
    >>> assert function((1, 2)) == (1, 2)
    """
    signature = inspect.signature(func)

    def convert(data: t.Any) -> t.Any:  # pylint: disable=too-many-return-statements
        if isinstance(data, np.integer):
            return int(data)
        if isinstance(data, np.floating):
            return float(data)
        if isinstance(data, np.ndarray):
            return convert(data.tolist())
        if isinstance(data, mmunit.Quantity):
            value = data.value_in_unit(data.unit)
            if isinstance(value, np.ndarray):
                value = value.tolist()
            return Quantity(value, Unit(data.unit))
        if isinstance(data, mmunit.Unit):
            return Unit(data)
        if isinstance(data, mmapp.Residue):
            return SerializableResidue(data)
        if isinstance(data, range):
            return list(data)
        if isinstance(data, t.Sequence) and not isinstance(data, str):
            return type(data)(map(convert, data))
        if isinstance(data, t.Dict):
            return type(data)((key, convert(value)) for key, value in data.items())
        return data

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        bound = signature.bind(*args, **kwargs)
        for name, data in bound.arguments.items():
            bound.arguments[name] = convert(data)
        return func(*bound.args, **bound.kwargs)

    return wrapper
