"""
.. class:: ReferenceTemplate
   :platform: Linux, MacOS, Windows
   :synopsis: Ideal coordinates of a secondary-structure motif

.. classauthor:: Charlles Abreu <craabreu@gmail.com>

"""

import typing as t
from importlib import resources

import numpy as np
from openmm import unit as mmunit

from .errors import ConfigurationError
from .serialization import Serializable
from .units import MatrixQuantity, as_coordinate_array

PEPTOID_BACKBONE_ATOMS = ("CLP", "OL", "NL", "CA", "CB1")

PEPTOID_MOTIFS = (
    "alpha_plus_cis",
    "alpha_plus_trans",
    "alpha_minus_cis",
    "alpha_minus_trans",
    "alpha_d_plus_cis",
    "alpha_d_plus_trans",
    "alpha_d_minus_trans",
    "c7beta_plus_cis",
    "c7beta_plus_trans",
    "c7beta_minus_cis",
    "c7beta_minus_trans",
)


class ReferenceTemplate(Serializable):
    r"""
    The ideal configuration of a group of :math:`K` backbone atoms spanning
    :math:`K/R` consecutive residues, where :math:`R` is the number of backbone
    atoms taken from each residue.

    A template is immutable: its coordinates are stored in a read-only array
    and there are no setters.

    Parameters
    ----------
    name
        The name of the motif.
    positions
        The :math:`K` reference coordinates. Plain numbers are assumed to be in
        nanometers.
    residueSize
        The number :math:`R` of atoms per residue.
    atomNames
        The names of the :math:`R` atoms of each residue, in the order they appear
        in ``positions``. Only needed for selecting atoms from residues.

    Raises
    ------
    ConfigurationError
        If the template is empty, if it does not contain 3D points, or if the number
        of points is not a multiple of ``residueSize``.

    Example
    -------
    >>> import ssrmsd
    >>> template = ssrmsd.getTemplate("alpha_plus_cis")
    >>> template.getNumAtoms(), template.getNumResidues()
    (15, 3)
    >>> template.getAtomNames()
    ('CLP', 'OL', 'NL', 'CA', 'CB1')
    """

    def __init__(
        self,
        name: str,
        positions: MatrixQuantity,
        residueSize: int,
        atomNames: t.Optional[t.Sequence[str]] = None,
    ) -> None:
        coords = as_coordinate_array(positions)
        if coords.size == 0:
            raise ConfigurationError(f"Reference template {name} is empty.")
        if coords.ndim != 2 or coords.shape[1] != 3:
            raise ConfigurationError(
                f"Reference template {name} must be a list of 3D points, "
                f"not an array of shape {coords.shape}."
            )
        if residueSize < 1:
            raise ConfigurationError(
                "The number of atoms per residue must be a positive integer."
            )
        if len(coords) % residueSize != 0:
            raise ConfigurationError(
                f"Reference template {name} has {len(coords)} atoms, which is not "
                f"a multiple of {residueSize} atoms per residue."
            )
        if atomNames is not None:
            atomNames = tuple(atomNames)
            if len(atomNames) != residueSize:
                raise ConfigurationError(
                    f"Reference template {name} needs {residueSize} atom names, "
                    f"but {len(atomNames)} were given."
                )
        coords.setflags(write=False)
        self._name = name
        self._positions = coords
        self._residue_size = int(residueSize)
        self._atom_names = atomNames

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}({self._name!r}, "
            f"{self.getNumResidues()} residues)"
        )

    def __eq__(self, other: object) -> bool:
        return (
            isinstance(other, ReferenceTemplate)
            and self._name == other._name
            and self._residue_size == other._residue_size
            and self._atom_names == other._atom_names
            and np.array_equal(self._positions, other._positions)
        )

    def __hash__(self) -> int:
        return hash((self._name, self._residue_size, self._positions.tobytes()))

    def __getstate__(self) -> t.Dict[str, t.Any]:
        return {
            "name": self._name,
            "positions": self._positions.tolist(),
            "residueSize": self._residue_size,
            "atomNames": None if self._atom_names is None else list(self._atom_names),
        }

    def __setstate__(self, keywords: t.Dict[str, t.Any]) -> None:
        self.__init__(**keywords)

    def getName(self) -> str:
        """
        Get the name of the motif.
        """
        return self._name

    def getPositions(self) -> np.ndarray:
        """
        Get the reference coordinates, in nanometers, as a read-only array of
        shape ``(K, 3)``. Pass a copy to code that needs a writable buffer.
        """
        return self._positions

    def getNumAtoms(self) -> int:
        """
        Get the number :math:`K` of atoms in the template.
        """
        return len(self._positions)

    def getResidueSize(self) -> int:
        """
        Get the number :math:`R` of atoms per residue.
        """
        return self._residue_size

    def getNumResidues(self) -> int:
        """
        Get the number :math:`K/R` of residues spanned by the template.
        """
        return len(self._positions) // self._residue_size

    def getAtomNames(self) -> t.Optional[t.Tuple[str, ...]]:
        """
        Get the names of the atoms taken from each residue, if known.
        """
        return self._atom_names


ReferenceTemplate.registerTag("!ssrmsd.ReferenceTemplate")


_templates: t.Dict[str, ReferenceTemplate] = {}


def _loadPeptoidTemplate(name: str) -> ReferenceTemplate:
    positions = np.loadtxt(
        str(resources.files("ssrmsd").joinpath("data").joinpath(f"{name}.csv")),
        delimiter=",",
    )
    return ReferenceTemplate(
        name,
        mmunit.Quantity(positions, mmunit.angstroms),
        len(PEPTOID_BACKBONE_ATOMS),
        PEPTOID_BACKBONE_ATOMS,
    )


def registerTemplate(template: ReferenceTemplate, overwrite: bool = False) -> None:
    """
    Make a reference template available by name.

    Parameters
    ----------
    template
        The template to be registered under ``template.getName()``.
    overwrite
        Whether to replace a previously registered template with the same name.

    Raises
    ------
    ConfigurationError
        If the name is already taken and ``overwrite`` is False.
    """
    name = template.getName()
    if not overwrite and (name in _templates or name in PEPTOID_MOTIFS):
        raise ConfigurationError(f"A template named {name} is already registered.")
    _templates[name] = template


def getTemplate(name: str) -> ReferenceTemplate:
    """
    Get a registered reference template by name.

    The peptoid motifs listed in :data:`PEPTOID_MOTIFS` are always available. Their
    coordinates are stored in angstroms and converted to nanometers on loading.

    Parameters
    ----------
    name
        The name of the motif.

    Raises
    ------
    ConfigurationError
        If no template with this name exists.
    """
    if name not in _templates:
        if name not in PEPTOID_MOTIFS:
            raise ConfigurationError(
                f"Unknown reference template {name}. "
                f"Available templates are: {', '.join(getTemplateNames())}."
            )
        _templates[name] = _loadPeptoidTemplate(name)
    return _templates[name]


def getTemplateNames() -> t.List[str]:
    """
    Get the names of all available reference templates.

    Example
    -------
    >>> import ssrmsd
    >>> "c7beta_plus_trans" in ssrmsd.getTemplateNames()
    True
    """
    return sorted(set(PEPTOID_MOTIFS) | set(_templates))
