"""
.. module:: alignment
   :platform: Linux, MacOS, Windows
   :synopsis: Structural distance between a window of atoms and a reference

.. moduleauthor:: Charlles Abreu <craabreu@gmail.com>

"""

import typing as t

import numpy as np

from .errors import ConfigurationError
from .serialization import Serializable

DEGENERACY_TOLERANCE = 1.0e-7


class AlignmentType(Serializable):
    """
    The manner in which a window is compared to the reference template. There are
    only three alignment types, available as the module attributes :data:`optimal`,
    :data:`simple`, and :data:`drmsd`.
    """

    yaml_tag = "!ssrmsd.AlignmentType"

    def __init__(self, name: str) -> None:
        if name not in ("optimal", "simple", "drmsd"):
            raise ConfigurationError(
                f"Unknown alignment type {name}. "
                "Valid types are optimal, simple, and drmsd."
            )
        self.name = name

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, AlignmentType) and self.name == other.name

    def __hash__(self) -> int:
        return hash(self.name)

    def __getstate__(self) -> dict:
        return {"name": self.name}

    def __setstate__(self, state: dict) -> None:
        self.__init__(state["name"])


AlignmentType.registerTag("!ssrmsd.AlignmentType")


optimal: AlignmentType = AlignmentType("optimal")
simple: AlignmentType = AlignmentType("simple")
drmsd: AlignmentType = AlignmentType("drmsd")


class AlignmentResult(t.NamedTuple):
    """
    The outcome of comparing one window with the reference template.

    Attributes
    ----------
    distance
        The structural distance, in nanometers.
    derivatives
        The derivatives of the distance with respect to the window atom positions,
        with shape ``(K, 3)``.
    virial
        The virial-like tensor :math:`-\\sum_i {\\bf r}_i \\otimes \\partial d /
        \\partial {\\bf r}_i`.
    degenerate
        Whether the distance was too small for its gradient to have a defined
        direction, in which case the derivatives were set to zero.
    """

    distance: float
    derivatives: np.ndarray
    virial: np.ndarray
    degenerate: bool


class Aligner:
    r"""
    Computes the distance between the positions of a window of :math:`K` atoms and
    a reference template, together with its derivatives.

    With the ``optimal`` type, the distance is the weighted RMSD after the
    rotation and translation that minimize it:

    .. math::

        d({\bf r}) = \sqrt{
            \sum_{i=1}^K w_i \left\|
                \hat{\bf r}_i - {\bf A}\hat{\bf r}_i^{\rm ref}
            \right\|^2
        }

    where :math:`\hat{\bf r}_i` is a position relative to the weighted centroid
    and :math:`{\bf A}` is the Kabsch rotation, obtained from the singular value
    decomposition of the cross-covariance matrix. A proper rotation is always
    enforced: when the best orthogonal matrix would be a reflection, the singular
    vector of smallest singular value is flipped. Since the RMSD is stationary
    with respect to :math:`{\bf A}` at the optimum, the gradient is obtained with
    the rotation held fixed:

    .. math::

        \frac{\partial d}{\partial {\bf r}_i} =
            \frac{w_i}{d}\left(\hat{\bf r}_i - {\bf A}\hat{\bf r}_i^{\rm ref}\right)

    With the ``simple`` type, :math:`{\bf A}` is the identity, so that only the
    centroids are aligned.

    With the ``drmsd`` type, no alignment is needed:

    .. math::

        d({\bf r}) = \sqrt{
            \frac{1}{P} \sum_{(i,j)} \left(r_{ij} - r_{ij}^{\rm ref}\right)^2
        }

    where the sum runs over the :math:`P` pairs :math:`i < j` whose reference
    distance :math:`r_{ij}^{\rm ref}` exceeds ``bondLength``.

    When :math:`d` falls below :data:`DEGENERACY_TOLERANCE`, its gradient is set
    to zero and the result is flagged as degenerate.

    Parameters
    ----------
    reference
        The reference coordinates, in nanometers, with shape ``(K, 3)``.
    alignmentType
        One of :data:`optimal`, :data:`simple`, or :data:`drmsd`.
    weights
        Positive weights of the ``K`` atoms, such as their masses. They are
        normalized to sum up to one. If ``None``, all atoms have the same weight.
        Not allowed with ``drmsd``.
    bondLength
        The reference distance, in nanometers, below which an atom pair is left
        out of the ``drmsd`` sum.

    Raises
    ------
    ConfigurationError
        If weights are not valid for the alignment type, or if no atom pair is
        left for the ``drmsd`` sum.

    Example
    -------
    >>> import numpy as np
    >>> from ssrmsd import alignment
    >>> reference = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0], [0, 0, 1]], float)
    >>> aligner = alignment.Aligner(reference, alignment.optimal)
    >>> result = aligner.align(reference + 1.0)
    >>> round(result.distance, 6), result.degenerate
    (0.0, True)
    """

    def __init__(
        self,
        reference: np.ndarray,
        alignmentType: AlignmentType,
        weights: t.Optional[t.Sequence[float]] = None,
        bondLength: float = 0.0,
    ) -> None:
        reference = np.array(reference, dtype=float)
        num_atoms = len(reference)
        self._type = alignmentType
        if alignmentType == drmsd:
            if weights is not None:
                raise ConfigurationError(
                    "Atom weights cannot be used with the drmsd alignment type."
                )
            first, second = np.triu_indices(num_atoms, k=1)
            distances = np.linalg.norm(reference[first] - reference[second], axis=1)
            keep = distances > bondLength
            if not np.any(keep):
                raise ConfigurationError(
                    f"No atom pair of the reference is farther apart than the bond "
                    f"length ({bondLength} nm)."
                )
            self._first = first[keep]
            self._second = second[keep]
            self._target_distances = distances[keep]
            self._align = self._alignDistances
        else:
            if weights is None:
                weights = np.full(num_atoms, 1.0 / num_atoms)
            else:
                weights = np.array(weights, dtype=float)
                if weights.shape != (num_atoms,) or np.any(weights <= 0):
                    raise ConfigurationError(
                        f"Exactly {num_atoms} positive atom weights are required."
                    )
                weights = weights / np.sum(weights)
            self._weights = weights
            self._centered_reference = reference - weights @ reference
            self._align = (
                self._alignOptimal if alignmentType == optimal else self._alignSimple
            )

    def getAlignmentType(self) -> AlignmentType:
        """
        Get the alignment type.
        """
        return self._type

    def align(self, coords: np.ndarray) -> AlignmentResult:
        """
        Compare the positions of a window of atoms with the reference.

        Parameters
        ----------
        coords
            The window atom positions, in nanometers, with shape ``(K, 3)``.

        Returns
        -------
        AlignmentResult
            The distance and its derivatives.
        """
        return self._align(coords)

    def _result(
        self, distance: float, gradientNumerator: np.ndarray, coords: np.ndarray
    ) -> AlignmentResult:
        if distance < DEGENERACY_TOLERANCE:
            derivatives = np.zeros_like(coords)
            return AlignmentResult(distance, derivatives, np.zeros((3, 3)), True)
        derivatives = gradientNumerator / distance
        return AlignmentResult(distance, derivatives, -coords.T @ derivatives, False)

    def _alignSimple(self, coords: np.ndarray) -> AlignmentResult:
        centered = coords - self._weights @ coords
        displacements = centered - self._centered_reference
        return self._weightedRMSD(centered, displacements)

    def _alignOptimal(self, coords: np.ndarray) -> AlignmentResult:
        centered = coords - self._weights @ coords
        covariance = self._centered_reference.T @ (self._weights[:, None] * centered)
        u, _, vt = np.linalg.svd(covariance)
        if np.linalg.det(vt.T @ u.T) < 0:
            vt[-1, :] = -vt[-1, :]
        rotation = vt.T @ u.T
        displacements = centered - self._centered_reference @ rotation.T
        return self._weightedRMSD(centered, displacements)

    def _weightedRMSD(
        self, centered: np.ndarray, displacements: np.ndarray
    ) -> AlignmentResult:
        weighted = self._weights[:, None] * displacements
        msd = np.sum(weighted * displacements)
        return self._result(float(np.sqrt(max(msd, 0.0))), weighted, centered)

    def _alignDistances(self, coords: np.ndarray) -> AlignmentResult:
        deltas = coords[self._first] - coords[self._second]
        distances = np.linalg.norm(deltas, axis=1)
        differences = distances - self._target_distances
        value = float(np.sqrt(np.mean(differences**2)))
        with np.errstate(divide="ignore", invalid="ignore"):
            factors = np.where(distances > 0, differences / distances, 0.0)
        pair_terms = (factors / len(distances))[:, None] * deltas
        numerator = np.zeros_like(coords)
        np.add.at(numerator, self._first, pair_terms)
        np.add.at(numerator, self._second, -pair_terms)
        return self._result(value, numerator, coords)
