"""
Serialization subpackage of SSRMSD

"""

from .serialization import (  # noqa: F401
    Serializable,
    SerializableResidue,
    deserialize,
    serialize,
)
