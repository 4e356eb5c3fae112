"""
.. module:: aggregation
   :platform: Linux, MacOS, Windows
   :synopsis: Reduction of per-window distances into scalar outputs

.. moduleauthor:: Charlles Abreu <craabreu@gmail.com>

"""

import typing as t

import numpy as np
from openmm import unit as mmunit
from scipy import special

from .errors import ConfigurationError
from .serialization import Serializable
from .switching_function import RationalSwitchingFunction


class Aggregate(Serializable):
    """
    Abstract class for the reductions of per-window distances into a single value.

    Every aggregate maps the distances :math:`d_1, \\ldots, d_W` of all windows to
    a value :math:`q` and returns the partial derivatives :math:`\\partial q /
    \\partial d_w`, which are later chained through the derivatives of each
    distance with respect to the atom positions.

    Parameters
    ----------
    label
        The name of the output produced by this aggregate.
    """

    #: Whether windows known to have a negligible contribution can be skipped.
    allowsSkipping: bool = False

    #: The unit of measurement of the aggregate value.
    unit: mmunit.Unit = mmunit.nanometers

    def __init__(self, label: str) -> None:
        if not label:
            raise ConfigurationError(
                f"A {self.__class__.__name__} aggregate requires a label."
            )
        self._label = label

    def __repr__(self) -> str:
        arguments = ", ".join(f"{k}={v!r}" for k, v in self.__getstate__().items())
        return f"{self.__class__.__name__}({arguments})"

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and self.__getstate__() == other.__getstate__()

    def __getstate__(self) -> t.Dict[str, t.Any]:
        return {"label": self._label}

    def __setstate__(self, keywords: t.Dict[str, t.Any]) -> None:
        self.__init__(**keywords)

    def getLabel(self) -> str:
        """
        Get the name of the output produced by this aggregate.
        """
        return self._label

    def __call__(
        self,
        distances: np.ndarray,
        switchingFunction: RationalSwitchingFunction,
        active: np.ndarray,
    ) -> t.Tuple[float, np.ndarray]:
        """
        Reduce the window distances.

        Parameters
        ----------
        distances
            The distances of all windows, in nanometers.
        switchingFunction
            The switching function to use if the aggregate has none of its own.
        active
            A boolean mask of the windows that were actually evaluated. Entries of
            ``distances`` outside this mask are meaningless.

        Returns
        -------
        float
            The aggregate value.
        numpy.ndarray
            The derivatives of the value with respect to each window distance.
        """
        raise NotImplementedError


class SwitchingSum(Aggregate):
    r"""
    The sum of a switching function over all windows:

    .. math::

        q = \sum_{w=1}^W s(d_w)

    This is a smooth count of the windows that match the reference template.
    Windows that were not evaluated contribute zero.

    Parameters
    ----------
    switchingFunction
        The switching function. If ``None``, the one of the collective variable is
        used.
    label
        The name of the output.
    """

    allowsSkipping = True
    unit = mmunit.dimensionless

    def __init__(
        self,
        switchingFunction: t.Optional[RationalSwitchingFunction] = None,
        label: str = "sum",
    ) -> None:
        super().__init__(label)
        self._switching_function = switchingFunction

    def __getstate__(self) -> t.Dict[str, t.Any]:
        return {"switchingFunction": self._switching_function, "label": self._label}

    def getSwitchingFunction(self) -> t.Optional[RationalSwitchingFunction]:
        """
        Get the switching function of this aggregate, if it has one.
        """
        return self._switching_function

    def _switch(
        self,
        distances: np.ndarray,
        switchingFunction: RationalSwitchingFunction,
        active: np.ndarray,
    ) -> t.Tuple[np.ndarray, np.ndarray]:
        function = self._switching_function or switchingFunction
        values = np.zeros(len(distances))
        derivatives = np.zeros(len(distances))
        values[active], derivatives[active] = function(distances[active])
        return values, derivatives

    def __call__(self, distances, switchingFunction, active):
        values, derivatives = self._switch(distances, switchingFunction, active)
        return float(np.sum(values)), derivatives


SwitchingSum.registerTag("!ssrmsd.SwitchingSum")


class SwitchingMean(SwitchingSum):
    r"""
    The mean of a switching function over all windows:

    .. math::

        q = \frac{1}{W} \sum_{w=1}^W s(d_w)

    Windows that were not evaluated contribute zero but still count in :math:`W`.

    Parameters
    ----------
    switchingFunction
        The switching function. If ``None``, the one of the collective variable is
        used.
    label
        The name of the output.
    """

    def __init__(
        self,
        switchingFunction: t.Optional[RationalSwitchingFunction] = None,
        label: str = "mean",
    ) -> None:
        super().__init__(switchingFunction, label)

    def __call__(self, distances, switchingFunction, active):
        values, derivatives = self._switch(distances, switchingFunction, active)
        return float(np.mean(values)), derivatives / len(distances)


SwitchingMean.registerTag("!ssrmsd.SwitchingMean")


class SoftMinimum(Aggregate):
    r"""
    A smooth minimum of the window distances:

    .. math::

        q = \frac{\beta}{\ln \sum_{w=1}^W e^{\beta / d_w}}

    which approaches the smallest distance as :math:`\beta` grows. If any distance
    is zero, so is the value, with vanishing derivatives.

    Parameters
    ----------
    beta
        The smoothing parameter, in nanometers.
    label
        The name of the output.

    Raises
    ------
    ConfigurationError
        If ``beta`` is missing or not positive.
    """

    def __init__(self, beta: t.Optional[float] = None, label: str = "min") -> None:
        super().__init__(label)
        if beta is None or beta <= 0:
            raise ConfigurationError(
                f"{self.__class__.__name__} requires a positive beta, not {beta}."
            )
        self._beta = float(beta)

    def __getstate__(self) -> t.Dict[str, t.Any]:
        return {"beta": self._beta, "label": self._label}

    def __call__(self, distances, switchingFunction, active):
        if np.any(distances == 0):
            return 0.0, np.zeros(len(distances))
        exponents = self._beta / distances
        value = self._beta / special.logsumexp(exponents)
        weights = special.softmax(exponents)
        return float(value), value**2 * weights / distances**2


SoftMinimum.registerTag("!ssrmsd.SoftMinimum")


class AltMinimum(SoftMinimum):
    r"""
    An alternative smooth minimum of the window distances:

    .. math::

        q = -\frac{1}{\beta} \ln \sum_{w=1}^W e^{-\beta d_w}

    which approaches the smallest distance as :math:`\beta` grows.

    Parameters
    ----------
    beta
        The smoothing parameter, in inverse nanometers.
    label
        The name of the output.

    Raises
    ------
    ConfigurationError
        If ``beta`` is missing or not positive.
    """

    def __init__(self, beta: t.Optional[float] = None, label: str = "altmin") -> None:
        super().__init__(beta, label)

    def __call__(self, distances, switchingFunction, active):
        exponents = -self._beta * distances
        value = -special.logsumexp(exponents) / self._beta
        return float(value), special.softmax(exponents)


AltMinimum.registerTag("!ssrmsd.AltMinimum")


class Lowest(Aggregate):
    """
    The smallest window distance. Ties are resolved in favor of the window that
    comes first.
    """

    def __init__(self, label: str = "lowest") -> None:
        super().__init__(label)

    def _select(self, distances: np.ndarray) -> int:
        return int(np.argmin(distances))

    def __call__(self, distances, switchingFunction, active):
        index = self._select(distances)
        derivatives = np.zeros(len(distances))
        derivatives[index] = 1.0
        return float(distances[index]), derivatives


Lowest.registerTag("!ssrmsd.Lowest")


class Highest(Lowest):
    """
    The largest window distance. Ties are resolved in favor of the window that
    comes first.
    """

    def __init__(self, label: str = "highest") -> None:
        super().__init__(label)

    def _select(self, distances: np.ndarray) -> int:
        return int(np.argmax(distances))


Highest.registerTag("!ssrmsd.Highest")
