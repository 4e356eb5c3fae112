"""
.. class:: CollectiveVariable
   :platform: Linux, MacOS, Windows
   :synopsis: An abstract class with common attributes and method for all CVs

.. moduleauthor:: Charlles Abreu <craabreu@gmail.com>

"""

import typing as t

import numpy as np
import openmm
import yaml
from openmm import unit as mmunit

from .output import CollectiveVariableOutput
from .serialization import Serializable
from .units import MatrixQuantity, Quantity, Unit
from .utils import (
    compute_effective_mass,
    get_particle_masses,
    preprocess_args,
    read_context,
)


class CollectiveVariable(Serializable):
    r"""
    An abstract class with common attributes and method for all CVs evaluated from
    atom coordinates. Subclasses must implement :meth:`evaluate` and may produce
    several named outputs, each with its own unit.
    """

    _unit: Unit = Unit("dimensionless")
    _args: t.Dict[str, t.Any] = {}
    _name: str = ""

    def __getstate__(self) -> t.Dict[str, t.Any]:
        return self._args

    def __setstate__(self, keywords: t.Dict[str, t.Any]) -> None:
        self.__init__(**keywords)

    def __copy__(self) -> "CollectiveVariable":
        return yaml.safe_load(yaml.safe_dump(self))

    def __deepcopy__(self, _) -> "CollectiveVariable":
        return yaml.safe_load(yaml.safe_dump(self))

    @preprocess_args
    def _registerCV(
        self,
        name: str,
        cvUnit: Unit,
        **kwargs: t.Any,
    ) -> None:
        """
        Register the newly created CollectiveVariable subclass instance.

        This method must always be called from Subclass.__init__.

        Parameters
        ----------
        name
            The name of this collective variable.
        cvUnit
            The unit of measurement of the first output of this collective variable.
            It must be a unit in the MD unit system (mass in Da, distance in nm, time
            in ps, temperature in K, energy in kJ/mol, angle in rad).
        kwargs
            The keyword arguments needed to construct this collective variable
        """
        self._name = name
        self._unit = cvUnit
        self._args = {"name": name}
        self._args.update(kwargs)

    def _usesPeriodicBoundaryConditions(self) -> bool:
        return False

    def getName(self) -> str:
        """
        Get the name of this collective variable.
        """
        return self._name

    def getOutputNames(self) -> t.List[str]:
        """
        Get the names of the outputs of this collective variable.
        """
        return [self._name]

    def getOutputUnit(self, output: t.Optional[str] = None) -> Unit:
        """
        Get the unit of measurement of an output of this collective variable.
        """
        return self._unit

    def getUnit(self) -> Unit:
        """
        Get the unit of measurement of the first output of this collective variable.
        """
        return self.getOutputUnit()

    def getMassUnit(self, output: t.Optional[str] = None) -> Unit:
        """
        Get the unit of measurement of the effective mass of an output of this
        collective variable.
        """
        length_per_unit = mmunit.nanometers / self.getOutputUnit(output)
        return Unit(mmunit.dalton * length_per_unit**2)

    def evaluate(
        self,
        positions: MatrixQuantity,
        boxVectors: t.Optional[MatrixQuantity] = None,
    ) -> CollectiveVariableOutput:
        """
        Evaluate this collective variable and its derivatives for given atom
        positions.

        Parameters
        ----------
        positions
            The positions of all atoms of the host system.
        boxVectors
            The periodic box vectors, required only if periodic boundary conditions
            are used.

        Returns
        -------
        CollectiveVariableOutput
            The values, derivatives, and virial contributions of all outputs.
        """
        raise NotImplementedError

    def _evaluateContext(self, context: openmm.Context) -> CollectiveVariableOutput:
        positions, box_vectors = read_context(
            context, self._usesPeriodicBoundaryConditions()
        )
        return self.evaluate(positions, box_vectors)

    def getValue(
        self, context: openmm.Context, output: t.Optional[str] = None
    ) -> Quantity:
        """
        Evaluate an output of this collective variable at a given :OpenMM:`Context`.

        Parameters
        ----------
        context
            The context at which this collective variable should be evaluated.
        output
            The name of the output. The first one is used if ``None``.

        Returns
        -------
        Quantity
            The value of the output at the given context.
        """
        value = self._evaluateContext(context).getValue(output)
        return Quantity(value, self.getOutputUnit(output))

    def getValues(self, context: openmm.Context) -> t.Dict[str, Quantity]:
        """
        Evaluate all outputs of this collective variable at a given
        :OpenMM:`Context`.

        Returns
        -------
        Dict[str, Quantity]
            The value of every output, keyed by output name.
        """
        result = self._evaluateContext(context)
        return {
            name: Quantity(result.getValue(name), self.getOutputUnit(name))
            for name in result.getOutputNames()
        }

    def getDerivatives(
        self, context: openmm.Context, output: t.Optional[str] = None
    ) -> np.ndarray:
        """
        Compute the derivatives of an output of this collective variable with
        respect to the positions of all atoms in a given :OpenMM:`Context`.

        Returns
        -------
        numpy.ndarray
            The derivatives, with shape ``(numAtoms, 3)``, in units of the output
            per nanometer.
        """
        return self._evaluateContext(context).getGradient(
            output, context.getSystem().getNumParticles()
        )

    def getEffectiveMass(
        self, context: openmm.Context, output: t.Optional[str] = None
    ) -> Quantity:
        r"""
        Compute the effective mass of an output of this collective variable at a
        given :OpenMM:`Context`.

        The effective mass of a collective variable :math:`q({\bf r})` is defined as
        :cite:`Chipot_2007`:

        .. math::

            m_\mathrm{eff}({\bf r}) = \left(
                \sum_{i=1}^N \frac{1}{m_i} \left\| \frac{dq}{d{\bf r}_i} \right\|^2
            \right)^{-1}

        Parameters
        ----------
        context
            The context at which this collective variable's effective mass should be
            evaluated.
        output
            The name of the output. The first one is used if ``None``.

        Returns
        -------
        Quantity
            The effective mass of the output at the given context.
        """
        masses = get_particle_masses(context.getSystem())
        return Quantity(
            compute_effective_mass(self.getDerivatives(context, output), masses),
            self.getMassUnit(output),
        )
