"""In-memory 3MF models, an XML reader and writer for model parts, and the beam lattice extension."""

__version__ = "0.1.0"
__all__ = ["beamlattice", "core", "decoder", "encoder", "mferrors"]