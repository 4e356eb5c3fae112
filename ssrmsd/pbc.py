"""
.. module:: pbc
   :platform: Linux, MacOS, Windows
   :synopsis: Periodic-boundary unwrapping of atom windows

.. moduleauthor:: Charlles Abreu <craabreu@gmail.com>

"""

import numpy as np

from .errors import GeometryError


def validate_box_vectors(boxVectors: np.ndarray) -> np.ndarray:
    """
    Check that box vectors are in the reduced form used by OpenMM, that is,
    :math:`{\\bf a} = (a_x, 0, 0)`, :math:`{\\bf b} = (b_x, b_y, 0)`, and
    :math:`{\\bf c} = (c_x, c_y, c_z)`, with :math:`a_x, b_y, c_z > 0`.

    Raises
    ------
    GeometryError
        If the box vectors are missing, malformed, or degenerate.
    """
    if boxVectors is None:
        raise GeometryError("Periodic boundary conditions require box vectors.")
    box = np.asarray(boxVectors, dtype=float)
    if box.shape != (3, 3) or not np.all(np.isfinite(box)):
        raise GeometryError("Box vectors must be a finite 3x3 matrix.")
    if box[0, 1] != 0 or box[0, 2] != 0 or box[1, 2] != 0:
        raise GeometryError("Box vectors must be in reduced (lower-triangular) form.")
    if np.any(np.diag(box) <= 0):
        raise GeometryError("Box vectors must have positive diagonal elements.")
    return box


def make_whole(coords: np.ndarray, boxVectors: np.ndarray) -> np.ndarray:
    """
    Unwrap a contiguous group of atoms so that every atom is at the nearest
    periodic image of the previous one.

    Since unwrapping only adds lattice translations, the derivatives of any
    function of the unwrapped coordinates are also its derivatives with respect to
    the original ones.

    Parameters
    ----------
    coords
        The coordinates of the atoms, ordered along the backbone.
    boxVectors
        The periodic box vectors, in OpenMM's reduced form.

    Returns
    -------
    numpy.ndarray
        The unwrapped coordinates. The first atom is kept in place.

    Raises
    ------
    GeometryError
        If the box is invalid or if two consecutive atoms are separated by more than
        half of the smallest box height, in which case the nearest image is not a
        reliable choice.

    Example
    -------
    >>> import numpy as np
    >>> from ssrmsd.pbc import make_whole
    >>> box = np.diag([2.0, 2.0, 2.0])
    >>> make_whole(np.array([[1.9, 0.0, 0.0], [0.1, 0.0, 0.0]]), box)
    array([[1.9, 0. , 0. ],
           [2.1, 0. , 0. ]])
    """
    box = validate_box_vectors(boxVectors)
    deltas = np.diff(coords, axis=0)
    for axis in (2, 1, 0):
        deltas -= np.outer(np.round(deltas[:, axis] / box[axis, axis]), box[axis])
    half_height = 0.5 * np.min(np.diag(box))
    lengths = np.linalg.norm(deltas, axis=1)
    too_long = np.flatnonzero(lengths >= half_height)
    if too_long.size > 0:
        i = too_long[0]
        raise GeometryError(
            f"Window atoms {i} and {i + 1} are {lengths[i]:.4f} nm apart, which makes "
            f"their nearest periodic image ambiguous (half box height is "
            f"{half_height:.4f} nm)."
        )
    return np.vstack([coords[:1], coords[:1] + np.cumsum(deltas, axis=0)])
