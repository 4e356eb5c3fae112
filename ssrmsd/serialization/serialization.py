"""
.. module:: serialization
   :platform: Linux, MacOS, Windows
   :synopsis: Serialization of SSRMSD objects

.. moduleauthor:: Charlles Abreu <craabreu@gmail.com>

"""

import typing as t

import yaml
from openmm import app as mmapp


class Serializable(yaml.YAMLObject):
    """
    A mixin class that allows serialization and deserialization of objects with PyYAML.
    """

    @classmethod
    def registerTag(cls, tag: str) -> None:
        """
        Register a class for serialization and deserialization with PyYAML.

        Parameters
        ----------
        tag
            The YAML tag to be used for this class.
        """
        cls.yaml_tag = tag
        yaml.SafeDumper.add_representer(cls, cls.to_yaml)
        yaml.SafeLoader.add_constructor(tag, cls.from_yaml)


class SerializableResidue(Serializable):
    r"""
    A serializable snapshot of an OpenMM residue, keeping only what is needed to
    pick backbone atoms by name.
    """

    def __init__(  # pylint: disable=super-init-not-called
        self, residue: t.Union[mmapp.topology.Residue, "SerializableResidue"]
    ) -> None:
        self.name = residue.name
        self.index = residue.index
        self.id = residue.id
        if isinstance(residue, mmapp.topology.Residue):
            self._atoms = {atom.name: atom.index for atom in residue.atoms()}
        else:
            self._atoms = dict(residue._atoms)

    def __getstate__(self) -> t.Dict[str, t.Any]:
        return self.__dict__

    def __setstate__(self, keywords: t.Dict[str, t.Any]) -> None:
        self.__dict__.update(keywords)

    def __len__(self) -> int:
        return len(self._atoms)

    def getAtomIndex(self, name: str) -> int:
        """
        Get the index of the atom with a given name.

        Raises
        ------
        KeyError
            If there is no such atom in the residue.
        """
        return self._atoms[name]


SerializableResidue.registerTag("!ssrmsd.Residue")


def serialize(obj: t.Any, iostream: t.IO) -> None:
    """
    Serializes an ssrmsd object.

    Parameters
    ----------
    obj
        The ssrmsd object to be serialized
    iostream
        A text stream in write mode

    Example
    =======
    >>> import io
    >>> from ssrmsd import serialization, switching_function
    >>> function = switching_function.RationalSwitchingFunction(0.1, 0.0, 6, 12)
    >>> iostream = io.StringIO()
    >>> serialization.serialize(function, iostream)
    >>> print(iostream.getvalue())
    !ssrmsd.RationalSwitchingFunction
    d0: 0.0
    m: 12
    n: 6
    r0: 0.1
    <BLANKLINE>
    """
    iostream.write(yaml.safe_dump(obj))


def deserialize(iostream: t.IO) -> t.Any:
    """
    Deserializes an ssrmsd object.

    Parameters
    ----------
    iostream
        A text stream in read mode containing the object to be deserialized

    Returns
    -------
    t.Any
        An instance of any ssrmsd class

    Example
    -------
    >>> import io
    >>> from ssrmsd import serialization, switching_function
    >>> function = switching_function.RationalSwitchingFunction(0.1, 0.0, 6, 12)
    >>> iostream = io.StringIO()
    >>> serialization.serialize(function, iostream)
    >>> iostream.seek(0)
    0
    >>> serialization.deserialize(iostream)
    RationalSwitchingFunction(r0=0.1, d0=0.0, n=6, m=12)
    """
    return yaml.safe_load(iostream.read())
