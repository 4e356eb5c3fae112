"""
.. class:: CollectiveVariableOutput
   :platform: Linux, MacOS, Windows
   :synopsis: Values and derivatives produced by one evaluation

.. classauthor:: Charlles Abreu <craabreu@gmail.com>

"""

import typing as t

import numpy as np


class CollectiveVariableOutput:
    """
    The result of evaluating a secondary-structure collective variable for one set
    of coordinates.

    Only the atoms that belong to at least one window are stored. Their
    derivatives are kept in a compact array whose rows follow the order of
    :meth:`getAtoms`.

    Parameters
    ----------
    values
        The value of each output, keyed by output name, in insertion order.
    atoms
        The sorted indices of all atoms that belong to at least one window.
    derivatives
        The derivatives of each output with respect to the positions of ``atoms``,
        with shape ``(len(atoms), 3)``.
    virials
        The virial contribution of each output, with shape ``(3, 3)``.
    distances
        The distance of every window to the reference, in nanometers, with
        ``NaN`` for windows that were skipped.
    degenerate
        Whether each window had a zero-gradient fallback.
    """

    def __init__(
        self,
        values: t.Dict[str, float],
        atoms: np.ndarray,
        derivatives: t.Dict[str, np.ndarray],
        virials: t.Dict[str, np.ndarray],
        distances: np.ndarray,
        degenerate: np.ndarray,
    ) -> None:
        self._values = dict(values)
        self._atoms = np.asarray(atoms, dtype=int)
        self._derivatives = dict(derivatives)
        self._virials = dict(virials)
        self._distances = np.asarray(distances, dtype=float)
        self._degenerate = np.asarray(degenerate, dtype=bool)

    def __repr__(self) -> str:
        values = ", ".join(f"{name}={value}" for name, value in self._values.items())
        return f"{self.__class__.__name__}({values})"

    def _resolve(self, output: t.Optional[str]) -> str:
        if output is None:
            return next(iter(self._values))
        if output not in self._values:
            raise KeyError(
                f"Unknown output {output}. "
                f"Available outputs are {', '.join(self._values)}."
            )
        return output

    def getOutputNames(self) -> t.List[str]:
        """
        Get the names of all outputs, in the order they were requested.
        """
        return list(self._values)

    def getValue(self, output: t.Optional[str] = None) -> float:
        """
        Get the value of an output. The first output is used if none is named.
        """
        return self._values[self._resolve(output)]

    def getAtoms(self) -> np.ndarray:
        """
        Get the sorted indices of all atoms that belong to at least one window.
        """
        return self._atoms

    def getDerivatives(self, output: t.Optional[str] = None) -> np.ndarray:
        """
        Get the derivatives of an output with respect to the positions of the
        atoms returned by :meth:`getAtoms`.
        """
        return self._derivatives[self._resolve(output)]

    def getVirial(self, output: t.Optional[str] = None) -> np.ndarray:
        r"""
        Get the virial contribution :math:`-\sum_i {\bf r}_i \otimes \partial q /
        \partial {\bf r}_i` of an output, with shape ``(3, 3)``.
        """
        return self._virials[self._resolve(output)]

    def getWindowDistances(self) -> np.ndarray:
        """
        Get the distance of every window to the reference template, in nanometers.
        Skipped windows have a ``NaN`` distance.
        """
        return self._distances

    def getNumDegenerateWindows(self) -> int:
        """
        Get the number of windows whose distance was too small for its gradient
        to be defined.
        """
        return int(np.count_nonzero(self._degenerate))

    def getGradient(
        self, output: t.Optional[str] = None, numAtoms: t.Optional[int] = None
    ) -> np.ndarray:
        """
        Get the derivatives of an output with respect to the positions of all atoms
        in the host system.

        Parameters
        ----------
        output
            The name of the output. The first output is used if ``None``.
        numAtoms
            The number of atoms in the host system. If ``None``, the smallest
            number that includes all window atoms is used.

        Returns
        -------
        numpy.ndarray
            The gradient, with shape ``(numAtoms, 3)``.
        """
        if numAtoms is None:
            numAtoms = int(self._atoms[-1]) + 1 if self._atoms.size else 0
        gradient = np.zeros((numAtoms, 3))
        self.addToBuffer(gradient, output)
        return gradient

    def addToBuffer(
        self, buffer: np.ndarray, output: t.Optional[str] = None, scale: float = 1.0
    ) -> None:
        """
        Add the scaled derivatives of an output to a per-atom buffer of the host,
        such as a force or gradient array.

        To apply a bias potential :math:`U(q)`, for instance, the forces are updated
        with ``scale`` equal to :math:`-dU/dq`.

        Parameters
        ----------
        buffer
            An array of shape ``(numAtoms, 3)``, modified in place.
        output
            The name of the output. The first output is used if ``None``.
        scale
            The factor by which the derivatives are multiplied.

        Example
        -------
        >>> import numpy as np
        >>> from ssrmsd.output import CollectiveVariableOutput
        >>> output = CollectiveVariableOutput(
        ...     {"sum": 1.0},
        ...     np.array([1]),
        ...     {"sum": np.array([[1.0, 2.0, 3.0]])},
        ...     {"sum": np.zeros((3, 3))},
        ...     np.array([0.0]),
        ...     np.array([False]),
        ... )
        >>> forces = np.ones((2, 3))
        >>> output.addToBuffer(forces, "sum", -2.0)
        >>> forces
        array([[ 1.,  1.,  1.],
               [-1., -3., -5.]])
        """
        np.add.at(buffer, self._atoms, scale * self.getDerivatives(output))
