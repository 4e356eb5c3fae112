"""
.. class:: SecondaryStructureRMSD
   :platform: Linux, MacOS, Windows
   :synopsis: Secondary-structure RMSD content of backbone chains

.. classauthor:: Charlles Abreu <craabreu@gmail.com>

"""

import logging
import typing as t
from concurrent.futures import ThreadPoolExecutor

import numpy as np
from openmm import unit as mmunit

from . import alignment
from .aggregation import Aggregate, SwitchingSum
from .chain_segmenter import ChainSpec, segmentChains
from .collective_variable import CollectiveVariable
from .errors import ConfigurationError, GeometryError
from .output import CollectiveVariableOutput
from .pbc import make_whole, validate_box_vectors
from .reference_template import ReferenceTemplate, getTemplate
from .switching_function import RationalSwitchingFunction
from .units import (
    MatrixQuantity,
    Quantity,
    ScalarQuantity,
    Unit,
    as_coordinate_array,
    value_in_md_units,
    value_in_nanometers,
)
from .window_generator import Window, generateWindows

logger = logging.getLogger(__name__)


class SecondaryStructureRMSD(CollectiveVariable):
    r"""
    The secondary-structure RMSD content of one or more backbone chains.

    Every chain is scanned with overlapping windows of :math:`K` consecutive
    backbone atoms, starting at each residue boundary, where :math:`K` is the
    number of atoms in a reference template. The structural distance
    :math:`d_w` between each window :math:`w` and the template is computed with
    one of three alignment types (see :class:`~ssrmsd.alignment.Aligner`):

    * ``optimal``: the RMSD after optimal rotation and translation.
    * ``simple``: the RMSD after translation only.
    * ``drmsd``: the RMSD of all interatomic distances farther apart than a
      bond length in the template.

    The window distances are then reduced to one or more outputs, such as the
    smooth count of windows that match the template:

    .. math::

        q({\bf r}) = \sum_{w=1}^W s\left(d_w({\bf r})\right)

    where :math:`s(d)` is a :class:`~ssrmsd.RationalSwitchingFunction`. The other
    available reductions are listed in :mod:`ssrmsd.aggregation`.

    The derivatives of every output with respect to the atom positions are
    computed analytically. Atoms shared by overlapping windows receive the sum of
    the contributions of all windows they belong to.

    Two optional shortcuts avoid aligning windows that cannot contribute to a
    switching sum or mean. With ``strandsCutoff``, a window is skipped whenever the
    distance between the centroid of its first :math:`\lfloor K/2 \rfloor` atoms
    and the centroid of the remaining ones exceeds the cutoff. With
    ``neighborListStride``, all windows are evaluated only every that many calls,
    and in between only the windows whose switching value was at least
    ``neighborListTolerance`` at the last full evaluation are aligned. Skipped
    windows contribute exactly zero.

    Parameters
    ----------
    chains
        The backbone chains. Each chain is either a sequence of atom indices or a
        sequence of residues, ordered from the first residue to the last one. The
        number of atoms in a chain must be a multiple of the number of atoms per
        residue in the template.
    template
        The reference template or the name of a registered one (see
        :func:`ssrmsd.getTemplateNames`).
    alignmentType
        The alignment type, which must be one of ``alignment.optimal``,
        ``alignment.simple``, or ``alignment.drmsd``, or the name of one of them.
    switchingFunction
        The switching function applied to the window distances. If ``None``, a
        :class:`~ssrmsd.RationalSwitchingFunction` with default parameters is used.
    aggregates
        The reductions of the window distances into outputs. If ``None``, a single
        :class:`~ssrmsd.aggregation.SwitchingSum` is used.
    strandsCutoff
        The distance between the two halves of a window above which the window is
        skipped. If ``None``, no window is skipped for this reason.
    pbc
        Whether to make each window whole under periodic boundary conditions before
        aligning it. This is off by default, so box vectors are only needed when it
        is requested.
    neighborListStride
        The number of evaluations between full evaluations of all windows. If zero,
        all windows are evaluated every time.
    neighborListTolerance
        The smallest switching value for which a window is kept in the neighbor
        list.
    masses
        The masses of all atoms of the host system, used to weight the ``optimal``
        and ``simple`` alignments. If ``None``, all atoms have the same weight.
    bondLength
        The reference distance below which an atom pair is left out of the
        ``drmsd`` alignment.
    numThreads
        The number of threads used to align the windows.
    name
        The name of the collective variable.

    Raises
    ------
    ConfigurationError
        If the arguments are inconsistent.

    Example
    -------
    >>> import numpy as np
    >>> import ssrmsd
    >>> template = ssrmsd.getTemplate("alpha_plus_cis")
    >>> cv = ssrmsd.SecondaryStructureRMSD([range(25)], template)
    >>> cv.getNumWindows()
    3
    >>> positions = np.zeros((25, 3))
    >>> positions[:15] = template.getPositions()
    >>> positions[15:] = template.getPositions()[5:] + [10.0, 0.0, 0.0]
    >>> output = cv.evaluate(positions)
    >>> round(output.getValue(), 4)
    1.0
    >>> output.getDerivatives().shape
    (25, 3)
    """

    def __init__(  # pylint: disable=too-many-arguments,too-many-locals
        self,
        chains: t.Sequence[ChainSpec],
        template: t.Union[str, ReferenceTemplate],
        alignmentType: t.Union[str, alignment.AlignmentType] = alignment.drmsd,
        switchingFunction: t.Optional[RationalSwitchingFunction] = None,
        aggregates: t.Optional[t.Sequence[Aggregate]] = None,
        strandsCutoff: t.Optional[ScalarQuantity] = None,
        pbc: bool = False,
        neighborListStride: int = 0,
        neighborListTolerance: float = 1.0e-4,
        masses: t.Optional[t.Sequence[ScalarQuantity]] = None,
        bondLength: ScalarQuantity = Quantity(0.17 * mmunit.nanometers),
        numThreads: int = 1,
        name: str = "secondary_structure_rmsd",
    ) -> None:
        reference = getTemplate(template) if isinstance(template, str) else template
        alignment_type = (
            alignment.AlignmentType(alignmentType)
            if isinstance(alignmentType, str)
            else alignmentType
        )
        if not isinstance(alignment_type, alignment.AlignmentType):
            raise ConfigurationError(
                f"Invalid alignment type {alignmentType!r}. "
                "Use alignment.optimal, alignment.simple, or alignment.drmsd."
            )
        residue_size = reference.getResidueSize()
        chain_list = segmentChains(
            chains, residue_size, reference.getNumAtoms(), reference.getAtomNames()
        )
        windows = generateWindows(chain_list, residue_size, reference.getNumAtoms())
        function = switchingFunction or RationalSwitchingFunction()
        aggregate_list = [SwitchingSum()] if aggregates is None else list(aggregates)
        self._checkAggregates(aggregate_list, strandsCutoff, neighborListStride)
        cutoff = (
            None
            if strandsCutoff is None
            else value_in_nanometers(strandsCutoff, "strands cutoff")
        )
        if cutoff is not None and cutoff <= 0:
            raise ConfigurationError("The strands cutoff must be positive.")
        if neighborListStride < 0 or neighborListTolerance < 0:
            raise ConfigurationError(
                "The neighbor-list stride and tolerance cannot be negative."
            )
        if numThreads < 1:
            raise ConfigurationError("The number of threads must be at least one.")

        bond_length = value_in_nanometers(bondLength, "bond length")
        if masses is None:
            shared = alignment.Aligner(
                reference.getPositions(), alignment_type, bondLength=bond_length
            )
            aligners = [shared] * len(windows)
        else:
            mass_values = np.array([value_in_md_units(mass) for mass in masses])
            highest_index = max(max(chain.atoms) for chain in chain_list)
            if len(mass_values) <= highest_index:
                raise ConfigurationError(
                    f"{len(mass_values)} masses were given, but the chains contain "
                    f"atom index {highest_index}."
                )
            aligners = [
                alignment.Aligner(
                    reference.getPositions(),
                    alignment_type,
                    mass_values[list(window.atoms)],
                    bond_length,
                )
                for window in windows
            ]

        self._template = reference
        self._alignment_type = alignment_type
        self._switching_function = function
        self._aggregates = aggregate_list
        self._strands_cutoff = cutoff
        self._pbc = pbc
        self._nl_stride = neighborListStride
        self._nl_tolerance = neighborListTolerance
        self._num_threads = numThreads
        self._chains = chain_list
        self._windows = windows
        self._aligners = aligners
        window_atoms = np.array([window.atoms for window in windows], dtype=int)
        self._window_atoms = window_atoms
        self._atoms = np.unique(window_atoms)
        self._window_rows = np.searchsorted(self._atoms, window_atoms)
        self._num_evaluations = 0
        self._neighbor_list: t.Optional[np.ndarray] = None
        self._degeneracy_reported = False

        self._registerCV(
            name,
            Unit(aggregate_list[0].unit),
            chains=chains,
            template=template,
            alignmentType=alignmentType,
            switchingFunction=switchingFunction,
            aggregates=aggregates,
            strandsCutoff=strandsCutoff,
            pbc=pbc,
            neighborListStride=neighborListStride,
            neighborListTolerance=neighborListTolerance,
            masses=masses,
            bondLength=bondLength,
            numThreads=numThreads,
        )
        logger.info(
            "%s: %d chain(s), %d window(s), template %s, %s alignment",
            name,
            len(chain_list),
            len(windows),
            reference.getName(),
            alignment_type.name,
        )

    @staticmethod
    def _checkAggregates(
        aggregates: t.List[Aggregate],
        strandsCutoff: t.Optional[ScalarQuantity],
        neighborListStride: int,
    ) -> None:
        if not aggregates:
            raise ConfigurationError("At least one aggregate must be requested.")
        labels = [aggregate.getLabel() for aggregate in aggregates]
        duplicates = sorted({label for label in labels if labels.count(label) > 1})
        if duplicates:
            raise ConfigurationError(
                f"Duplicate output labels: {', '.join(duplicates)}."
            )
        if strandsCutoff is None and neighborListStride == 0:
            return
        for aggregate in aggregates:
            if not aggregate.allowsSkipping:
                raise ConfigurationError(
                    "A strands cutoff or a neighbor list can only be used with "
                    f"switching sums and means, not with {type(aggregate).__name__}."
                )

    def _usesPeriodicBoundaryConditions(self) -> bool:
        return self._pbc

    def getNumWindows(self) -> int:
        """
        Get the number of windows in all chains.
        """
        return len(self._windows)

    def getWindows(self) -> t.List[Window]:
        """
        Get all windows, ordered by chain and then by residue offset.
        """
        return list(self._windows)

    def getTemplate(self) -> ReferenceTemplate:
        """
        Get the reference template.
        """
        return self._template

    def getAlignmentType(self) -> alignment.AlignmentType:
        """
        Get the alignment type.
        """
        return self._alignment_type

    def getSwitchingFunction(self) -> RationalSwitchingFunction:
        """
        Get the switching function applied by aggregates that have none of their
        own.
        """
        return self._switching_function

    def getOutputNames(self) -> t.List[str]:
        return [aggregate.getLabel() for aggregate in self._aggregates]

    def getOutputUnit(self, output: t.Optional[str] = None) -> Unit:
        if output is None:
            return Unit(self._aggregates[0].unit)
        for aggregate in self._aggregates:
            if aggregate.getLabel() == output:
                return Unit(aggregate.unit)
        raise KeyError(
            f"Unknown output {output}. "
            f"Available outputs are {', '.join(self.getOutputNames())}."
        )

    def resetNeighborList(self) -> None:
        """
        Force all windows to be evaluated in the next call to :meth:`evaluate`.
        """
        self._neighbor_list = None

    def _readCoordinates(
        self, positions: MatrixQuantity, boxVectors: t.Optional[MatrixQuantity]
    ) -> t.Tuple[np.ndarray, t.Optional[np.ndarray]]:
        coords = as_coordinate_array(positions)
        if coords.ndim != 2 or coords.shape[1] != 3:
            raise GeometryError(
                f"Positions must have shape (numAtoms, 3), not {coords.shape}."
            )
        if len(coords) <= self._atoms[-1]:
            raise GeometryError(
                f"{len(coords)} positions were given, but the chains contain "
                f"atom index {self._atoms[-1]}."
            )
        if not np.all(np.isfinite(coords[self._atoms])):
            raise GeometryError("Non-finite positions found in the chain atoms.")
        if not self._pbc:
            return coords, None
        if boxVectors is None:
            raise GeometryError("Periodic boundary conditions require box vectors.")
        return coords, validate_box_vectors(as_coordinate_array(boxVectors))

    def _evaluateWindow(
        self, index: int, coords: np.ndarray, box: t.Optional[np.ndarray]
    ) -> t.Optional[alignment.AlignmentResult]:
        window_coords = coords[self._window_atoms[index]]
        if box is not None:
            window_coords = make_whole(window_coords, box)
        if self._strands_cutoff is not None:
            half = len(window_coords) // 2
            separation = np.linalg.norm(
                window_coords[:half].mean(axis=0) - window_coords[half:].mean(axis=0)
            )
            if separation > self._strands_cutoff:
                return None
        return self._aligners[index].align(window_coords)

    def _candidateWindows(self) -> t.Tuple[np.ndarray, bool]:
        num_windows = len(self._windows)
        if self._nl_stride == 0:
            return np.arange(num_windows), False
        refresh = (
            self._neighbor_list is None
            or self._num_evaluations % self._nl_stride == 0
        )
        if refresh:
            logger.debug("%s: refreshing the neighbor list", self.getName())
            return np.arange(num_windows), True
        return np.flatnonzero(self._neighbor_list), False

    def _updateNeighborList(self, distances: np.ndarray, active: np.ndarray) -> None:
        keep = np.zeros(len(distances), dtype=bool)
        for aggregate in self._aggregates:
            function = aggregate.getSwitchingFunction() or self._switching_function
            values, _ = function(distances[active])
            keep[active] |= values >= self._nl_tolerance
        self._neighbor_list = keep
        logger.debug(
            "%s: %d of %d windows kept in the neighbor list",
            self.getName(),
            np.count_nonzero(keep),
            len(keep),
        )

    def evaluate(
        self,
        positions: MatrixQuantity,
        boxVectors: t.Optional[MatrixQuantity] = None,
    ) -> CollectiveVariableOutput:
        """
        Evaluate all outputs and their derivatives for given atom positions.

        Parameters
        ----------
        positions
            The positions of all atoms of the host system, with shape
            ``(numAtoms, 3)``. Plain numbers are assumed to be in nanometers.
        boxVectors
            The periodic box vectors, required if ``pbc`` is True.

        Returns
        -------
        CollectiveVariableOutput
            The values, derivatives, and virial contributions of all outputs.

        Raises
        ------
        GeometryError
            If the positions are malformed or non-finite, or if a window cannot be
            made whole under periodic boundary conditions.
        """
        coords, box = self._readCoordinates(positions, boxVectors)
        candidates, refresh = self._candidateWindows()

        if self._num_threads > 1 and len(candidates) > 1:
            with ThreadPoolExecutor(max_workers=self._num_threads) as executor:
                results = list(
                    executor.map(
                        lambda index: self._evaluateWindow(index, coords, box),
                        candidates,
                    )
                )
        else:
            results = [self._evaluateWindow(index, coords, box) for index in candidates]

        num_windows = len(self._windows)
        distances = np.full(num_windows, np.nan)
        degenerate = np.zeros(num_windows, dtype=bool)
        evaluated = []
        for index, result in zip(candidates, results):
            if result is not None:
                distances[index] = result.distance
                degenerate[index] = result.degenerate
                evaluated.append((index, result))
        active = ~np.isnan(distances)

        if refresh:
            self._updateNeighborList(distances, active)
        self._num_evaluations += 1

        if np.any(degenerate) and not self._degeneracy_reported:
            logger.warning(
                "%s: window distance below %g nm, derivatives set to zero",
                self.getName(),
                alignment.DEGENERACY_TOLERANCE,
            )
            self._degeneracy_reported = True

        indices = np.array([index for index, _ in evaluated], dtype=int)
        rows = self._window_rows[indices].ravel()
        window_derivatives = np.array([result.derivatives for _, result in evaluated])
        window_virials = np.array([result.virial for _, result in evaluated])

        values, derivatives, virials = {}, {}, {}
        for aggregate in self._aggregates:
            label = aggregate.getLabel()
            value, factors = aggregate(distances, self._switching_function, active)
            factors = factors[indices]
            values[label] = value
            derivatives[label] = np.zeros((len(self._atoms), 3))
            virials[label] = np.zeros((3, 3))
            if indices.size > 0:
                np.add.at(
                    derivatives[label],
                    rows,
                    (factors[:, None, None] * window_derivatives).reshape(-1, 3),
                )
                virials[label] = np.einsum("w,wij->ij", factors, window_virials)

        return CollectiveVariableOutput(
            values, self._atoms, derivatives, virials, distances, degenerate
        )


SecondaryStructureRMSD.registerTag("!ssrmsd.SecondaryStructureRMSD")
