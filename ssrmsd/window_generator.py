"""
.. module:: window_generator
   :platform: Linux, MacOS, Windows
   :synopsis: Enumeration of residue windows along backbone chains

.. moduleauthor:: Charlles Abreu <craabreu@gmail.com>

"""

import typing as t

from .chain_segmenter import BackboneChain


class Window(t.NamedTuple):
    """
    A contiguous group of atoms from a single chain, with as many residues as the
    reference template. It is a view into the chain and owns no atoms.

    Attributes
    ----------
    chain
        The chain from which the window is taken.
    chainIndex
        The position of the chain in the list of declared chains.
    residueOffset
        The index of the first window residue within the chain.
    residueSize
        The number of atoms per residue.
    size
        The number of atoms in the window.
    """

    chain: BackboneChain
    chainIndex: int
    residueOffset: int
    residueSize: int
    size: int

    @property
    def start(self) -> int:
        """Position of the first window atom in the flattened index space."""
        return self.chain.offset + self.residueOffset * self.residueSize

    @property
    def stop(self) -> int:
        """Position past the last window atom in the flattened index space."""
        return self.start + self.size

    @property
    def atoms(self) -> t.Tuple[int, ...]:
        """The host indices of the window atoms."""
        first = self.residueOffset * self.residueSize
        return self.chain.atoms[first : first + self.size]


def countWindows(numResidues: int, referenceResidues: int) -> int:
    """
    Count the windows that fit in a chain.

    Parameters
    ----------
    numResidues
        The number of residues in the chain.
    referenceResidues
        The number of residues spanned by the reference template.

    Example
    -------
    >>> from ssrmsd.window_generator import countWindows
    >>> countWindows(5, 3), countWindows(3, 3), countWindows(2, 3)
    (3, 1, 0)
    """
    return max(0, numResidues - referenceResidues + 1)


def generateWindows(
    chains: t.Sequence[BackboneChain], residueSize: int, referenceSize: int
) -> t.List[Window]:
    """
    Enumerate all windows of ``referenceSize`` atoms that start at a residue
    boundary and do not cross a chain boundary.

    Windows are ordered by chain, in declaration order, and then by increasing
    residue offset. Consecutive windows of a chain overlap by
    ``referenceSize - residueSize`` atoms.

    Parameters
    ----------
    chains
        The validated backbone chains.
    residueSize
        The number of atoms per residue.
    referenceSize
        The number of atoms in the reference template.

    Example
    -------
    >>> from ssrmsd.chain_segmenter import segmentChains
    >>> from ssrmsd.window_generator import generateWindows
    >>> chains = segmentChains([range(25)], 5, 15)
    >>> [(w.residueOffset, w.start, w.stop) for w in generateWindows(chains, 5, 15)]
    [(0, 0, 15), (1, 5, 20), (2, 10, 25)]
    """
    reference_residues = referenceSize // residueSize
    return [
        Window(chain, index, offset, residueSize, referenceSize)
        for index, chain in enumerate(chains)
        for offset in range(
            countWindows(chain.getNumResidues(residueSize), reference_residues)
        )
    ]
