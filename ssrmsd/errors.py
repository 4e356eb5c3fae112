"""
.. module:: errors
   :platform: Linux, MacOS, Windows
   :synopsis: Exceptions raised by SSRMSD

.. moduleauthor:: Charlles Abreu <craabreu@gmail.com>

"""


class ConfigurationError(ValueError):
    """
    Raised at construction time when chains, reference template, switching
    parameters, or requested outputs are inconsistent. An object whose
    construction raised this error is never usable.
    """


class GeometryError(RuntimeError):
    """
    Raised during an evaluation when the coordinates cannot be turned into a
    well-defined set of windows, e.g. when periodic unwrapping is ambiguous.
    """
