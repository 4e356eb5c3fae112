"""
.. module:: chain_segmenter
   :platform: Linux, MacOS, Windows
   :synopsis: Validation and partitioning of backbone chains

.. moduleauthor:: Charlles Abreu <craabreu@gmail.com>

"""

import typing as t
from numbers import Integral

from openmm import app as mmapp

from .errors import ConfigurationError
from .serialization import SerializableResidue

Residue = t.Union[mmapp.topology.Residue, SerializableResidue]
ChainSpec = t.Union[t.Sequence[int], t.Sequence[Residue]]


class BackboneChain(t.NamedTuple):
    """
    An immutable sequence of backbone atoms.

    Attributes
    ----------
    atoms
        The indices of the chain atoms in the host system, ordered from the first
        residue to the last one.
    offset
        The position of the first chain atom in the flattened sequence of all chains.
    """

    atoms: t.Tuple[int, ...]
    offset: int

    def getNumResidues(self, residueSize: int) -> int:
        """
        Get the number of residues in this chain.
        """
        return len(self.atoms) // residueSize


def _getResidueAtoms(residue: Residue, atomNames: t.Sequence[str]) -> t.List[int]:
    if isinstance(residue, mmapp.topology.Residue):
        residue = SerializableResidue(residue)
    atom_list = []
    for name in atomNames:
        try:
            atom_list.append(residue.getAtomIndex(name))
        except KeyError as error:
            raise ConfigurationError(
                f"Atom {name} not found in residue {residue.name}{residue.id}"
            ) from error
    return atom_list


def _isResidue(item: t.Any) -> bool:
    return isinstance(item, (mmapp.topology.Residue, SerializableResidue))


def _isAtomIndex(item: t.Any) -> bool:
    return isinstance(item, Integral) and not isinstance(item, bool)


def segmentChains(
    chains: t.Sequence[ChainSpec],
    residueSize: int,
    referenceSize: int,
    atomNames: t.Optional[t.Sequence[str]] = None,
) -> t.List[BackboneChain]:
    """
    Validate a list of backbone chains and place them one after the other in a
    flattened index space.

    Parameters
    ----------
    chains
        The declared chains. Each one is either a sequence of atom indices or a
        sequence of residues. In the latter case, the atoms named in ``atomNames``
        are taken from each residue, in that order.
    residueSize
        The number of backbone atoms per residue.
    referenceSize
        The number of atoms in the reference template. No chain can be shorter.
    atomNames
        The names of the backbone atoms of each residue.

    Returns
    -------
    List[BackboneChain]
        The validated chains, in declaration order.

    Raises
    ------
    ConfigurationError
        If no chain is given, or if any chain is empty, mixes residues with other
        items, contains an item that is not an atom index or has a negative one,
        repeats an atom, is not made of whole residues, or is shorter than the
        reference template.

    Example
    -------
    >>> from ssrmsd.chain_segmenter import segmentChains
    >>> chains = segmentChains([range(25), range(30, 45)], 5, 15)
    >>> [chain.offset for chain in chains]
    [0, 25]
    >>> segmentChains([range(15), []], 5, 15)
    Traceback (most recent call last):
    ...
    ssrmsd.errors.ConfigurationError: Chain 2 is empty.
    """
    if len(chains) == 0:
        raise ConfigurationError("At least one backbone chain must be declared.")
    segmented = []
    offset = 0
    for number, chain in enumerate(chains, start=1):
        chain = list(chain)
        num_residues = sum(map(_isResidue, chain))
        if 0 < num_residues < len(chain):
            raise ConfigurationError(
                f"Chain {number} mixes residues with other items."
            )
        if num_residues:
            if atomNames is None:
                raise ConfigurationError(
                    f"Chain {number} is made of residues, but the reference template "
                    "does not define atom names."
                )
            chain = sum((_getResidueAtoms(residue, atomNames) for residue in chain), [])
        elif not all(map(_isAtomIndex, chain)):
            raise ConfigurationError(
                f"Chain {number} contains items that are neither residues nor "
                "integer atom indices."
            )
        atoms = tuple(map(int, chain))
        if len(atoms) == 0:
            raise ConfigurationError(f"Chain {number} is empty.")
        if min(atoms) < 0:
            raise ConfigurationError(
                f"Chain {number} contains negative atom indices."
            )
        if len(set(atoms)) != len(atoms):
            raise ConfigurationError(f"Chain {number} contains repeated atoms.")
        if len(atoms) % residueSize != 0:
            raise ConfigurationError(
                f"Chain {number} has {len(atoms)} atoms, "
                f"which is not a multiple of {residueSize}."
            )
        if len(atoms) < referenceSize:
            raise ConfigurationError(
                f"Chain {number} has {len(atoms)} atoms, but at least "
                f"{referenceSize} are needed to fit the reference template."
            )
        segmented.append(BackboneChain(atoms, offset))
        offset += len(atoms)
    return segmented
