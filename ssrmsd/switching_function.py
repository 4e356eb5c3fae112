"""
.. class:: RationalSwitchingFunction
   :platform: Linux, MacOS, Windows
   :synopsis: Smooth step function of a structural distance

.. classauthor:: Charlles Abreu <craabreu@gmail.com>

"""

import typing as t

import numpy as np
from openmm import unit as mmunit

from .errors import ConfigurationError
from .serialization import Serializable
from .units import Quantity, ScalarQuantity, value_in_nanometers

# |u - 1| below which the limit at u = 1 is used
_POLE_TOLERANCE = 1.0e-8


class RationalSwitchingFunction(Serializable):
    r"""
    A rational switching function that maps small distances to one and large ones
    to zero:

    .. math::

        s(d) = \frac{1 - u^n}{1 - u^m}, \qquad u = \frac{d - d_0}{r_0}

    with :math:`s(d) = 1` for :math:`d \leq d_0`. The removable singularity at
    :math:`u = 1` is replaced by its limit :math:`n/m`, and the function is
    evaluated as :math:`s = (v^m - v^{m-n})/(v^m - 1)`, with :math:`v = 1/u`,
    when :math:`u > 1`, so that large exponents do not overflow.

    Parameters
    ----------
    r0
        The scale of the switching function.
    d0
        The distance below which the function is exactly one.
    n
        The exponent of the numerator.
    m
        The exponent of the denominator.

    Raises
    ------
    ConfigurationError
        If ``r0``, ``n``, or ``m`` is not positive, or if ``d0`` is negative.

    Example
    -------
    >>> from openmm import unit
    >>> from ssrmsd import RationalSwitchingFunction
    >>> function = RationalSwitchingFunction(1.0 * unit.angstrom)
    >>> function
    RationalSwitchingFunction(r0=0.1, d0=0.0, n=8, m=12)
    >>> values, _ = function([0.0, 0.1, 10.0])
    >>> values.round(6).tolist()
    [1.0, 0.666667, 0.0]
    """

    def __init__(
        self,
        r0: ScalarQuantity = Quantity(0.08 * mmunit.nanometers),
        d0: ScalarQuantity = Quantity(0.0 * mmunit.nanometers),
        n: int = 8,
        m: int = 12,
    ) -> None:
        r0 = value_in_nanometers(r0, "switching scale r0")
        d0 = value_in_nanometers(d0, "switching offset d0")
        if r0 <= 0:
            raise ConfigurationError(
                f"The switching scale r0 must be positive, not {r0}."
            )
        if d0 < 0:
            raise ConfigurationError("The switching offset d0 cannot be negative.")
        if n <= 0 or m <= 0:
            raise ConfigurationError(
                f"The switching exponents must be positive, not n={n} and m={m}."
            )
        self._r0 = r0
        self._d0 = d0
        self._n = n
        self._m = m

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}"
            f"(r0={self._r0}, d0={self._d0}, n={self._n}, m={self._m})"
        )

    def __eq__(self, other: object) -> bool:
        return isinstance(other, RationalSwitchingFunction) and (
            self.__getstate__() == other.__getstate__()
        )

    def __getstate__(self) -> t.Dict[str, t.Any]:
        return {"r0": self._r0, "d0": self._d0, "n": self._n, "m": self._m}

    def __setstate__(self, keywords: t.Dict[str, t.Any]) -> None:
        self.__init__(**keywords)

    def __call__(
        self, distances: t.Union[float, t.Sequence[float], np.ndarray]
    ) -> t.Tuple[np.ndarray, np.ndarray]:
        """
        Evaluate the switching function and its derivative.

        Parameters
        ----------
        distances
            The distances, in nanometers.

        Returns
        -------
        numpy.ndarray
            The values of :math:`s(d)`.
        numpy.ndarray
            The derivatives :math:`ds/dd`, per nanometer.
        """
        n, m = self._n, self._m
        u = np.atleast_1d(np.asarray(distances, dtype=float) - self._d0) / self._r0
        values = np.ones_like(u)
        derivatives = np.zeros_like(u)

        pole = np.abs(u - 1) < _POLE_TOLERANCE
        values[pole] = n / m
        derivatives[pole] = 0.5 * n * (n - m) / m

        inner = (u > 0) & (u < 1) & ~pole
        x = u[inner]
        numerator, denominator = 1 - x**n, 1 - x**m
        values[inner] = numerator / denominator
        derivatives[inner] = (
            -n * x ** (n - 1) * denominator + m * x ** (m - 1) * numerator
        ) / denominator**2

        outer = (u > 1) & ~pole
        v = 1 / u[outer]
        vm, vmn = v**m, v ** (m - n)
        values[outer] = (vm - vmn) / (vm - 1)
        derivatives[outer] = (
            m * v ** (m + 1) - n * v * vm * vmn - (m - n) * v * vmn
        ) / (vm - 1) ** 2

        return values, derivatives / self._r0

    def getR0(self) -> float:
        """Get the scale :math:`r_0`, in nanometers."""
        return self._r0

    def getD0(self) -> float:
        """Get the offset :math:`d_0`, in nanometers."""
        return self._d0

    def getExponents(self) -> t.Tuple[int, int]:
        """Get the exponents :math:`n` and :math:`m`."""
        return self._n, self._m


RationalSwitchingFunction.registerTag("!ssrmsd.RationalSwitchingFunction")
