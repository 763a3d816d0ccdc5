"""In-memory model of a 3MF document and its core resources."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, BinaryIO, Iterable, Iterator, NamedTuple, Optional, Protocol, runtime_checkable

NAMESPACE = "http://schemas.microsoft.com/3dmanufacturing/core/2015/02"

REL_TYPE_3D_MODEL = "http://schemas.microsoft.com/3dmanufacturing/2013/01/3dmodel"
REL_TYPE_THUMBNAIL = (
    "http://schemas.openxmlformats.org/package/2006/relationships/metadata/thumbnail"
)
REL_TYPE_PRINT_TICKET = "http://schemas.microsoft.com/3dmanufacturing/2013/01/printticket"
REL_TYPE_MUST_PRESERVE = (
    "http://schemas.openxmlformats.org/package/2006/relationships/mustpreserve"
)

DEFAULT_MODEL_PATH = "/3D/3dmodel.model"
DEFAULT_PRINT_TICKET_NAME = "/3D/Metadata/Model_PT.xml"
DEFAULT_3D_TEXTURES_DIR = "/3D/Textures/"
DEFAULT_3D_OTHER_DIR = "/3D/Other/"
DEFAULT_METADATA_DIR = "/Metadata/"

CONTENT_TYPE_3D_MODEL = "application/vnd.ms-package.3dmanufacturing-3dmodel+xml"
CONTENT_TYPE_PRINT_TICKET = "application/vnd.ms-printing.printticket+xml"

NS_XML = "http://www.w3.org/XML/1998/namespace"
NS_XMLNS = "http://www.w3.org/2000/xmlns/"

_MAX_FLOAT32 = 3.4028234663852886e38


class Units(IntEnum):
    """Units a model can be expressed in."""

    MILLIMETER = 0
    MICROMETER = 1
    CENTIMETER = 2
    INCH = 3
    FOOT = 4
    METER = 5

    def __str__(self) -> str:
        return _UNIT_NAMES[self]


_UNIT_NAMES = {
    Units.MILLIMETER: "millimeter",
    Units.MICROMETER: "micron",
    Units.CENTIMETER: "centimeter",
    Units.INCH: "inch",
    Units.FOOT: "foot",
    Units.METER: "meter",
}


class ObjectType(IntEnum):
    """Kinds of objects a model can hold."""

    MODEL = 0
    OTHER = 1
    SUPPORT = 2
    SOLID_SUPPORT = 3
    SURFACE = 4

    def __str__(self) -> str:
        return _OBJECT_TYPE_NAMES[self]


_OBJECT_TYPE_NAMES = {
    ObjectType.MODEL: "model",
    ObjectType.OTHER: "other",
    ObjectType.SUPPORT: "support",
    ObjectType.SOLID_SUPPORT: "solidsupport",
    ObjectType.SURFACE: "surface",
}


def parse_units(s: str) -> Units:
    """Return the unit named ``s``; raise ValueError for unknown names."""
    for unit, name in _UNIT_NAMES.items():
        if name == s:
            return unit
    raise ValueError(f"unknown unit {s!r}")


def parse_object_type(s: str) -> ObjectType:
    """Return the object type named ``s``; raise ValueError for unknown names."""
    for kind, name in _OBJECT_TYPE_NAMES.items():
        if name == s:
            return kind
    raise ValueError(f"unknown object type {s!r}")


class Point3D(NamedTuple):
    """A point in model space."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


@dataclass(frozen=True)
class Box:
    """An axis-aligned bounding box."""

    min: Point3D = Point3D()
    max: Point3D = Point3D()

    def _extend(self, other: Box) -> Box:
        return Box(
            Point3D(*(min(a, b) for a, b in zip(self.min, other.min))),
            Point3D(*(max(a, b) for a, b in zip(self.max, other.max))),
        )


_EMPTY_BOX = Box()


def _limit_box() -> Box:
    return Box(
        Point3D(_MAX_FLOAT32, _MAX_FLOAT32, _MAX_FLOAT32),
        Point3D(-_MAX_FLOAT32, -_MAX_FLOAT32, -_MAX_FLOAT32),
    )


def _bounds(points: Iterable[Point3D]) -> Box:
    axes = list(zip(*points))
    return Box(Point3D(*(min(a) for a in axes)), Point3D(*(max(a) for a in axes)))


def _format_number(value: float) -> str:
    text = repr(float(value))
    return text[:-2] if text.endswith(".0") else text


@dataclass(frozen=True)
class Matrix:
    """A 4x4 affine transform stored row by row; translation lives in the last row."""

    values: tuple = (0.0,) * 16

    def __post_init__(self) -> None:
        values = tuple(float(v) for v in self.values)
        if len(values) != 16:
            raise ValueError("a matrix holds exactly 16 values")
        object.__setattr__(self, "values", values)

    @classmethod
    def identity(cls) -> Matrix:
        return cls((1, 0, 0, 0, 0, 1, 0, 0, 0, 0, 1, 0, 0, 0, 0, 1))

    def _mul(self, other: Matrix) -> Matrix:
        a, b = self.values, other.values
        return Matrix(
            tuple(
                sum(a[row * 4 + k] * b[k * 4 + col] for k in range(4))
                for row in range(4)
                for col in range(4)
            )
        )

    def translate(self, x: float, y: float, z: float) -> Matrix:
        """This transform followed by a translation."""
        return self._mul(Matrix((1, 0, 0, 0, 0, 1, 0, 0, 0, 0, 1, 0, x, y, z, 1)))

    def _mul_point(self, p: Point3D) -> Point3D:
        m = self.values
        return Point3D(
            m[0] * p.x + m[4] * p.y + m[8] * p.z + m[12],
            m[1] * p.x + m[5] * p.y + m[9] * p.z + m[13],
            m[2] * p.x + m[6] * p.y + m[10] * p.z + m[14],
        )

    def mul_box(self, box: Box) -> Box:
        """Bounding box of ``box`` after the transform; a zero matrix acts as identity."""
        if not any(self.values) or self == _IDENTITY:
            return box
        corners = [
            self._mul_point(Point3D(x, y, z))
            for x in (box.min.x, box.max.x)
            for y in (box.min.y, box.max.y)
            for z in (box.min.z, box.max.z)
        ]
        return _bounds(corners)

    def __str__(self) -> str:
        return " ".join(
            _format_number(self.values[i]) for i in (0, 1, 2, 4, 5, 6, 8, 9, 10, 12, 13, 14)
        )


_IDENTITY = Matrix.identity()
_ZERO = Matrix()


@runtime_checkable
class _ObjectPather(Protocol):
    def object_path(self) -> str: ...


def _attr_object_path(any_attr: Iterable[Any]) -> str:
    for attr in any_attr:
        if isinstance(attr, _ObjectPather):
            path = attr.object_path()
            if path:
                return path
    return ""


@dataclass
class UnknownAttrs:
    """Attributes of a namespace that no registered extension handles."""

    space: str
    attrs: list = field(default_factory=list)  # (local name, value) pairs


@dataclass
class UnknownTokens:
    """XML content of a namespace that no registered extension handles.

    Each token is ``("start", (space, local), [((space, local), value), ...])``,
    ``("end", (space, local))`` or ``("text", data)``.
    """

    tokens: list = field(default_factory=list)


@dataclass
class Metadata:
    """A metadata entry; ``namespace`` holds the declared prefix, if any."""

    name: str = ""
    value: str = ""
    type: str = ""
    preserve: bool = False
    namespace: str = ""


@dataclass
class MetadataGroup:
    metadata: list = field(default_factory=list)
    any_attr: list = field(default_factory=list)


@dataclass
class Attachment:
    """A non-model part stored in the package."""

    stream: Optional[BinaryIO] = None
    path: str = ""
    content_type: str = ""


@dataclass
class Relationship:
    """A dependency on the part at ``path``; an empty ``id`` is chosen on encoding."""

    path: str = ""
    type: str = ""
    id: str = ""


@dataclass
class Extension:
    """A namespace declared on the model."""

    namespace: str = ""
    local_name: str = ""
    is_required: bool = False


@dataclass
class Base:
    """A base material; ``color`` is an (r, g, b, a) tuple."""

    name: str = ""
    color: tuple = (0, 0, 0, 0)
    any_attr: list = field(default_factory=list)


@dataclass
class BaseMaterials:
    """A base materials resource."""

    id: int = 0
    materials: list = field(default_factory=list)
    any_attr: list = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.materials)

    def identify(self) -> int:
        return self.id


@dataclass
class UnknownAsset(UnknownTokens):
    """A resource of a namespace that no registered extension handles."""

    id: int = 0

    def identify(self) -> int:
        return self.id


@dataclass
class Triangle:
    """A mesh triangle: vertex indices and property references."""

    v1: int = 0
    v2: int = 0
    v3: int = 0
    pid: int = 0
    p1: int = 0
    p2: int = 0
    p3: int = 0
    any_attr: list = field(default_factory=list)


@dataclass
class Vertices:
    vertex: list = field(default_factory=list)
    any_attr: list = field(default_factory=list)


@dataclass
class Triangles:
    triangle: list = field(default_factory=list)
    any_attr: list = field(default_factory=list)


@dataclass
class Mesh:
    """A triangle mesh; triangle orientation follows vertex order."""

    vertices: Vertices = field(default_factory=Vertices)
    triangles: Triangles = field(default_factory=Triangles)
    any_attr: list = field(default_factory=list)
    any_elements: list = field(default_factory=list)

    def bounding_box(self) -> Box:
        if not self.vertices.vertex:
            return Box()
        return _bounds(self.vertices.vertex)


@dataclass
class MeshBuilder:
    """Adds vertices to a mesh, optionally reusing vertices at the same position."""

    mesh: Mesh
    calculate_connectivity: bool = True
    _known: dict = field(default_factory=dict, init=False, repr=False, compare=False)

    def add_vertex(self, node: Point3D) -> int:
        """Add ``node`` and return its index."""
        node = Point3D(*node)
        if self.calculate_connectivity and node in self._known:
            return self._known[node]
        self.mesh.vertices.vertex.append(node)
        index = len(self.mesh.vertices.vertex) - 1
        if self.calculate_connectivity:
            self._known[node] = index
        return index


@dataclass
class Component:
    """A reference to another object with a transform."""

    object_id: int = 0
    transform: Matrix = field(default_factory=Matrix)
    any_attr: list = field(default_factory=list)

    def object_path(self, default_path: str) -> str:
        """The path set by an extension attribute, else ``default_path``."""
        return _attr_object_path(self.any_attr) or default_path

    def has_transform(self) -> bool:
        return self.transform != _ZERO and self.transform != _IDENTITY


@dataclass
class Components:
    component: list = field(default_factory=list)
    any_attr: list = field(default_factory=list)


@dataclass
class Object:
    """A model object made of a mesh or of components."""

    id: int = 0
    name: str = ""
    part_number: str = ""
    thumbnail: str = ""
    pid: int = 0
    pindex: int = 0
    type: ObjectType = ObjectType.MODEL
    metadata: MetadataGroup = field(default_factory=MetadataGroup)
    mesh: Optional[Mesh] = None
    components: Optional[Components] = None
    any_attr: list = field(default_factory=list)


def _object_box(obj: Object, model: Model, path: str) -> Box:
    if obj.mesh is not None:
        return obj.mesh.bounding_box()
    if obj.components is None or not obj.components.component:
        return Box()
    box = _limit_box()
    for comp in obj.components.component:
        target = model.find_object(comp.object_path(path), comp.object_id)
        if target is None:
            continue
        cbox = _object_box(target, model, path)
        if cbox != _EMPTY_BOX:
            box = box._extend(comp.transform.mul_box(cbox))
    return box


@dataclass
class Item:
    """A build item: an object to manufacture."""

    object_id: int = 0
    transform: Matrix = field(default_factory=Matrix)
    part_number: str = ""
    metadata: MetadataGroup = field(default_factory=MetadataGroup)
    any_attr: list = field(default_factory=list)

    def object_path(self) -> str:
        """The path set by an extension attribute, else an empty string."""
        return _attr_object_path(self.any_attr)

    def has_transform(self) -> bool:
        return self.transform != _ZERO and self.transform != _IDENTITY

    def bounding_box(self, model: Model) -> Box:
        """Untransformed bounding box of the referenced object."""
        path = self.object_path()
        obj = model.find_object(path, self.object_id)
        if obj is None:
            return Box()
        return _object_box(obj, model, path)


@dataclass
class Build:
    items: list = field(default_factory=list)
    any_attr: list = field(default_factory=list)


@dataclass
class Resources:
    """The assets and objects of a model part."""

    assets: list = field(default_factory=list)
    objects: list = field(default_factory=list)
    any_attr: list = field(default_factory=list)

    def unused_id(self) -> int:
        """The lowest ID not used by any asset or object."""
        if not self.assets and not self.objects:
            return 1
        ids = sorted(
            [0]
            + [asset.identify() for asset in self.assets]
            + [obj.id for obj in self.objects]
        )
        lowest = next((i for i, value in enumerate(ids) if value != i), 0)
        return lowest or ids[-1] + 1

    def find_object(self, id: int) -> Optional[Object]:
        return next((obj for obj in self.objects if obj.id == id), None)

    def find_asset(self, id: int) -> Any:
        return next((asset for asset in self.assets if asset.identify() == id), None)


@dataclass
class ChildModel:
    """The content of a non-root model part."""

    resources: Resources = field(default_factory=Resources)
    relationships: list = field(default_factory=list)
    any_elements: list = field(default_factory=list)


@dataclass
class Model:
    """A 3MF document: the root model part plus its children and attachments."""

    path: str = ""
    language: str = ""
    units: Units = Units.MILLIMETER
    thumbnail: str = ""
    resources: Resources = field(default_factory=Resources)
    build: Build = field(default_factory=Build)
    attachments: list = field(default_factory=list)
    extensions: list = field(default_factory=list)
    metadata: list = field(default_factory=list)
    children: dict = field(default_factory=dict)
    root_relationships: list = field(default_factory=list)
    relationships: list = field(default_factory=list)
    any_elements: list = field(default_factory=list)
    any_attr: list = field(default_factory=list)

    def path_or_default(self) -> str:
        return self.path or DEFAULT_MODEL_PATH

    def bounding_box(self) -> Box:
        """Bounding box of all build items, with their transforms applied."""
        if not self.build.items:
            return Box()
        box = _limit_box()
        for item in self.build.items:
            path = item.object_path()
            obj = self.find_object(path, item.object_id)
            if obj is None:
                continue
            ibox = _object_box(obj, self, path)
            if ibox != _EMPTY_BOX:
                box = box._extend(item.transform.mul_box(ibox))
        return box

    def find_resources(self, path: str) -> Optional[Resources]:
        if not path or path == self.path or (not self.path and path == DEFAULT_MODEL_PATH):
            return self.resources
        child = self.children.get(path)
        return child.resources if child is not None else None

    def find_asset(self, path: str, id: int) -> Any:
        resources = self.find_resources(path)
        return resources.find_asset(id) if resources is not None else None

    def find_object(self, path: str, id: int) -> Optional[Object]:
        resources = self.find_resources(path)
        return resources.find_object(id) if resources is not None else None

    def walk_assets(self) -> Iterator[tuple[str, Any]]:
        """Yield (path, asset): children in path order, then the root with path ''."""
        for path in sorted(self.children):
            for asset in self.children[path].resources.assets:
                yield path, asset
        for asset in self.resources.assets:
            yield "", asset

    def walk_objects(self) -> Iterator[tuple[str, Object]]:
        """Yield (path, object): children in path order, then the root with path ''."""
        for path in sorted(self.children):
            for obj in self.children[path].resources.objects:
                yield path, obj
        for obj in self.resources.objects:
            yield "", obj