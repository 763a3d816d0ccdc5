"""Beam lattice extension: beams and beam sets attached to mesh objects."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Optional

from . import mferrors
from .core import Extension, Mesh, Model, Object, parse_object_type
from .decoder import ElementDecoder, _parse_float, _parse_uint, register_extension
from .encoder import XmlWriter, format_float

NAMESPACE = "http://schemas.microsoft.com/3dmanufacturing/beamlattice/2017/02"

DEFAULT_EXTENSION = Extension(NAMESPACE, "b", False)

LATTICE_OBJ_TYPE = mferrors.SpecViolation(
    "MUST only be added to a mesh object of type model or solidsupport"
)
LATTICE_CLIPPED_NO_MESH = mferrors.SpecViolation(
    "if clipping mode is not equal to none, a clippingmesh resource MUST be specified"
)
LATTICE_INVALID_MESH = mferrors.SpecViolation(
    "the clippingmesh and representationmesh MUST be a mesh object of type model "
    "and MUST NOT contain a beamlattice"
)
LATTICE_SAME_VERTEX = mferrors.SpecViolation("a beam MUST consist of two distinct vertex indices")
LATTICE_BEAM_R2 = mferrors.SpecViolation("r2 MUST not be defined, if r1 is not defined")


class ClipMode(IntEnum):
    """Clipping modes of a beam lattice."""

    NONE = 0
    INSIDE = 1
    OUTSIDE = 2

    def __str__(self) -> str:
        return self.name.lower()


class CapMode(IntEnum):
    """Capping modes of beam ends."""

    SPHERE = 0
    HEMISPHERE = 1
    BUTT = 2

    def __str__(self) -> str:
        return self.name.lower()


_CLIP_MODES = {str(mode): mode for mode in ClipMode}
_CAP_MODES = {str(mode): mode for mode in CapMode}
_LATTICE_OBJECT_TYPES = (parse_object_type("model"), parse_object_type("solidsupport"))


def parse_clip_mode(s: str) -> ClipMode:
    """The clip mode named ``s``; raises ValueError for unknown names."""
    try:
        return _CLIP_MODES[s]
    except KeyError:
        raise ValueError(f"unknown clip mode {s!r}") from None


def parse_cap_mode(s: str) -> CapMode:
    """The cap mode named ``s``; raises ValueError for unknown names."""
    try:
        return _CAP_MODES[s]
    except KeyError:
        raise ValueError(f"unknown cap mode {s!r}") from None


@dataclass
class Beam:
    """A single beam between two vertices."""

    indices: tuple = (0, 0)
    radius: tuple = (0.0, 0.0)
    cap_mode: tuple = (CapMode.SPHERE, CapMode.SPHERE)


@dataclass
class BeamSet:
    """A named group of beam references."""

    refs: list = field(default_factory=list)
    name: str = ""
    identifier: str = ""


@dataclass
class BeamLattice:
    """The beam lattice attached to a mesh."""

    clip_mode: ClipMode = ClipMode.NONE
    clipping_mesh_id: int = 0
    representation_mesh_id: int = 0
    beams: list = field(default_factory=list)
    beam_sets: list = field(default_factory=list)
    min_length: float = 0.0
    radius: float = 0.0
    cap_mode: CapMode = CapMode.SPHERE

    def marshal(self, writer: XmlWriter, precision: int) -> None:
        """Write the lattice element and its children to ``writer``."""
        attrs = [
            ("minlength", format_float(self.min_length, precision)),
            ("radius", format_float(self.radius, precision)),
        ]
        if self.clip_mode != ClipMode.NONE:
            attrs.append(("clippingmode", str(self.clip_mode)))
        if self.clipping_mesh_id:
            attrs.append(("clippingmesh", str(self.clipping_mesh_id)))
        if self.representation_mesh_id:
            attrs.append(("representationmesh", str(self.representation_mesh_id)))
        if self.cap_mode != CapMode.SPHERE:
            attrs.append(("cap", str(self.cap_mode)))
        writer.start((NAMESPACE, "beamlattice"), attrs)
        self._marshal_beams(writer, precision)
        self._marshal_beam_sets(writer)
        writer.end((NAMESPACE, "beamlattice"))

    def _marshal_beams(self, writer: XmlWriter, precision: int) -> None:
        writer.start((NAMESPACE, "beams"), [])
        writer.auto_close = True
        for beam in self.beams:
            attrs = [("v1", str(beam.indices[0])), ("v2", str(beam.indices[1]))]
            for name, radius in zip(("r1", "r2"), beam.radius):
                if radius > 0 and radius != self.radius:
                    attrs.append((name, format_float(radius, precision)))
            for name, cap in zip(("cap1", "cap2"), beam.cap_mode):
                if cap != self.cap_mode:
                    attrs.append((name, str(cap)))
            writer.start((NAMESPACE, "beam"), attrs)
        writer.auto_close = False
        writer.end((NAMESPACE, "beams"))

    def _marshal_beam_sets(self, writer: XmlWriter) -> None:
        writer.start((NAMESPACE, "beamsets"), [])
        for beam_set in self.beam_sets:
            attrs = []
            if beam_set.name:
                attrs.append(("name", beam_set.name))
            if beam_set.identifier:
                attrs.append(("identifier", beam_set.identifier))
            writer.start((NAMESPACE, "beamset"), attrs)
            writer.auto_close = True
            for ref in beam_set.refs:
                writer.start((NAMESPACE, "ref"), [("index", str(ref))])
            writer.auto_close = False
            writer.end((NAMESPACE, "beamset"))
        writer.end((NAMESPACE, "beamsets"))


def get_beam_lattice(mesh: Mesh) -> Optional[BeamLattice]:
    """The beam lattice attached to ``mesh``, or None."""
    return next((a for a in mesh.any_elements if isinstance(a, BeamLattice)), None)


class _BeamLatticeDecoder(ElementDecoder):
    def __init__(self):
        self.lattice = BeamLattice()

    def element(self) -> BeamLattice:
        return self.lattice

    def start(self, attrs):
        lattice = self.lattice
        errs = None
        for (space, local), value in attrs:
            if space:
                continue
            if local == "radius":
                lattice.radius, ok = _parse_float(value)
                if not ok:
                    errs = mferrors.append(errs, mferrors.ParseAttrError(local, True))
            elif local in ("minlength", "precision"):
                lattice.min_length, ok = _parse_float(value)
                if not ok:
                    errs = mferrors.append(errs, mferrors.ParseAttrError(local, True))
            elif local in ("clippingmode", "clipping"):
                try:
                    lattice.clip_mode = parse_clip_mode(value)
                except ValueError:
                    lattice.clip_mode = ClipMode.NONE
                    errs = mferrors.append(errs, mferrors.ParseAttrError(local, False))
            elif local == "clippingmesh":
                lattice.clipping_mesh_id, ok = _parse_uint(value)
                if not ok:
                    errs = mferrors.append(errs, mferrors.ParseAttrError(local, False))
            elif local == "representationmesh":
                lattice.representation_mesh_id, ok = _parse_uint(value)
                if not ok:
                    errs = mferrors.append(errs, mferrors.ParseAttrError(local, False))
            elif local == "cap":
                try:
                    lattice.cap_mode = parse_cap_mode(value)
                except ValueError:
                    lattice.cap_mode = CapMode.SPHERE
                    errs = mferrors.append(errs, mferrors.ParseAttrError(local, False))
        return errs

    def child(self, space, local):
        if space == NAMESPACE:
            if local == "beams":
                return -1, _BeamsDecoder(self.lattice)
            if local == "beamsets":
                return -1, _BeamSetsDecoder(self.lattice)
        return -1, None


class _BeamsDecoder(ElementDecoder):
    def __init__(self, lattice: BeamLattice):
        self.lattice = lattice

    def child(self, space, local):
        if space == NAMESPACE and local == "beam":
            return len(self.lattice.beams), _BeamDecoder(self.lattice)
        return -1, None


class _BeamDecoder(ElementDecoder):
    def __init__(self, lattice: BeamLattice):
        self.lattice = lattice

    def start(self, attrs):
        indices = [0, 0]
        radius = [0.0, 0.0]
        caps: list = [None, None]
        errs = None
        for (space, local), value in attrs:
            if space:
                continue
            if local in ("v1", "v2"):
                slot = int(local[-1]) - 1
                indices[slot], ok = _parse_uint(value)
                if not ok:
                    errs = mferrors.append(errs, mferrors.ParseAttrError(local, True))
            elif local in ("r1", "r2"):
                slot = int(local[-1]) - 1
                radius[slot], ok = _parse_float(value)
                if not ok:
                    errs = mferrors.append(errs, mferrors.ParseAttrError(local, False))
            elif local in ("cap1", "cap2"):
                try:
                    caps[int(local[-1]) - 1] = parse_cap_mode(value)
                except ValueError:
                    pass
        if radius[0] == 0:
            radius[0] = self.lattice.radius
        if radius[1] == 0:
            radius[1] = radius[0]
        cap_mode = tuple(self.lattice.cap_mode if cap is None else cap for cap in caps)
        self.lattice.beams.append(Beam(tuple(indices), tuple(radius), cap_mode))
        return errs


class _BeamSetsDecoder(ElementDecoder):
    def __init__(self, lattice: BeamLattice):
        self.lattice = lattice

    def child(self, space, local):
        if space == NAMESPACE and local == "beamset":
            return len(self.lattice.beam_sets), _BeamSetDecoder(self.lattice)
        return -1, None


class _BeamSetDecoder(ElementDecoder):
    def __init__(self, lattice: BeamLattice):
        self.lattice = lattice
        self.beam_set = BeamSet()

    def start(self, attrs):
        for (space, local), value in attrs:
            if space:
                continue
            if local == "name":
                self.beam_set.name = value
            elif local == "identifier":
                self.beam_set.identifier = value
        return None

    def child(self, space, local):
        if space == NAMESPACE and local == "ref":
            return len(self.beam_set.refs), _BeamRefDecoder(self.beam_set)
        return -1, None

    def end(self):
        self.lattice.beam_sets.append(self.beam_set)


class _BeamRefDecoder(ElementDecoder):
    def __init__(self, beam_set: BeamSet):
        self.beam_set = beam_set

    def start(self, attrs):
        index = 0
        err = None
        for (space, local), value in attrs:
            if space == "" and local == "index":
                index, ok = _parse_uint(value)
                if not ok:
                    err = mferrors.ParseAttrError(local, True)
                break
        self.beam_set.refs.append(index)
        return err


def _find_resources(model: Model, path: str):
    try:
        return model.find_resources(path)
    except (LookupError, ValueError):
        return None


def _validate_ref_mesh(model: Model, path: str, mesh_id: int, self_id: int):
    if mesh_id == self_id:
        return mferrors.RECURSION
    resources = _find_resources(model, path)
    if resources is None:
        return None
    for obj in resources.objects:
        if obj.id == self_id:
            return mferrors.MISSING_RESOURCE
        if obj.id == mesh_id:
            if (
                obj.mesh is None
                or obj.type != _LATTICE_OBJECT_TYPES[0]
                or get_beam_lattice(obj.mesh) is not None
            ):
                return LATTICE_INVALID_MESH
            break
    return None


def validate_object(model: Model, path: str, obj: Object) -> Optional[BaseException]:
    """Check the beam lattice of ``obj``.

    Returns every violation found, located under ``mesh/beamlattice``, or
    None when the object has no lattice or the lattice is valid.
    """
    if obj.mesh is None:
        return None
    lattice = get_beam_lattice(obj.mesh)
    if lattice is None:
        return None

    errs = None
    if obj.type not in _LATTICE_OBJECT_TYPES:
        errs = mferrors.append(errs, LATTICE_OBJ_TYPE)
    if lattice.min_length == 0:
        errs = mferrors.append(errs, mferrors.MissingFieldError("minlength"))
    if lattice.radius == 0:
        errs = mferrors.append(errs, mferrors.MissingFieldError("radius"))
    if lattice.clip_mode == ClipMode.NONE and lattice.clipping_mesh_id == 0:
        errs = mferrors.append(errs, LATTICE_CLIPPED_NO_MESH)
    if lattice.clipping_mesh_id:
        errs = mferrors.append(
            errs, _validate_ref_mesh(model, path, lattice.clipping_mesh_id, obj.id)
        )
    if lattice.representation_mesh_id:
        errs = mferrors.append(
            errs, _validate_ref_mesh(model, path, lattice.representation_mesh_id, obj.id)
        )

    vertex_count = len(obj.mesh.vertices.vertex)
    for i, beam in enumerate(lattice.beams):
        first, second = beam.indices
        if first == second:
            errs = mferrors.append(errs, mferrors.wrap_index(LATTICE_SAME_VERTEX, "beam", i))
        elif first >= vertex_count or second >= vertex_count:
            errs = mferrors.append(
                errs, mferrors.wrap_index(mferrors.INDEX_OUT_OF_BOUNDS, "beam", i)
            )
        r1, r2 = beam.radius
        if r1 != 0 and r1 != lattice.radius and r1 != r2:
            errs = mferrors.append(errs, mferrors.wrap_index(LATTICE_BEAM_R2, "beam", i))
    for i, beam_set in enumerate(lattice.beam_sets):
        if any(ref >= len(beam_set.refs) for ref in beam_set.refs):
            errs = mferrors.append(
                errs, mferrors.wrap_index(mferrors.INDEX_OUT_OF_BOUNDS, "beamset", i)
            )
    if errs is not None:
        errs = mferrors.wrap(mferrors.wrap(errs, "beamlattice"), "mesh")
    return errs


class BeamLatticeSpec:
    """Decoding and validation hooks of the beam lattice extension."""

    def element_decoder(self, namespace: str, local: str) -> Optional[ElementDecoder]:
        if namespace == NAMESPACE and local == "beamlattice":
            return _BeamLatticeDecoder()
        return None

    def validate(self, model: Model, path: str, obj: Any) -> Optional[BaseException]:
        if isinstance(obj, Object):
            return validate_object(model, path, obj)
        return None


register_extension(NAMESPACE, BeamLatticeSpec())