"""Decoding of 3MF model parts from XML.

The parser walks the document with a stack of element decoders. Each decoder
receives the attributes of its element through ``start``, hands out decoders
for its children through ``child``, receives character data through ``text``
and is told about the closing tag through ``end``.

Extensions plug in through ``register_extension``. A registered spec may
provide ``element_decoder(namespace, local)`` returning a decoder with an
``element()`` method, and ``attr_group(parent_local)`` returning an object
with ``space`` and ``unmarshal_attr(local, value)``.

Every problem found while decoding is collected; ``unmarshal_model`` raises
them together as an ``ErrorList`` once the whole document has been read.
"""

from __future__ import annotations

from typing import Any, Optional, Union
from xml.parsers import expat

from . import mferrors
from .core import (
    NAMESPACE,
    NS_XML,
    Base,
    BaseMaterials,
    Component,
    Components,
    Extension,
    Item,
    Matrix,
    Mesh,
    Metadata,
    Model,
    Object,
    Point3D,
    Resources,
    Triangle,
    UnknownAsset,
    UnknownAttrs,
    UnknownTokens,
    parse_object_type,
    parse_units,
)

_MAX_UINT32 = 0xFFFFFFFF
_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}

_extensions: dict[str, Any] = {}


def register_extension(namespace: str, spec: Any) -> None:
    """Make ``spec`` handle the elements and attributes of ``namespace``."""
    _extensions[namespace] = spec


def load_extension(namespace: str) -> Optional[Any]:
    """The spec registered for ``namespace``, or None."""
    return _extensions.get(namespace)


def _parse_uint(value: str) -> tuple[int, bool]:
    if not value or not value.isascii() or not value.isdigit():
        return 0, False
    number = int(value)
    if number > _MAX_UINT32:
        return _MAX_UINT32, False
    return number, True


def _parse_float(value: str) -> tuple[float, bool]:
    if not value or value != value.strip() or "_" in value:
        return 0.0, False
    try:
        return float(value), True
    except ValueError:
        return 0.0, False


def _parse_matrix(value: str) -> Optional[Matrix]:
    parts = value.split()
    if len(parts) != 12:
        return None
    numbers = []
    for part in parts:
        number, ok = _parse_float(part)
        if not ok:
            return None
        numbers.append(number)
    m = numbers
    return Matrix((m[0], m[1], m[2], 0, m[3], m[4], m[5], 0,
                   m[6], m[7], m[8], 0, m[9], m[10], m[11], 1))


def _parse_rgba(value: str) -> tuple:
    digits = value[1:]
    if not value.startswith("#") or len(digits) not in (6, 8):
        raise ValueError(f"invalid color {value!r}")
    try:
        channels = [int(digits[i:i + 2], 16) for i in range(0, len(digits), 2)]
    except ValueError as exc:
        raise ValueError(f"invalid color {value!r}") from exc
    if len(channels) == 3:
        channels.append(255)
    return tuple(channels)


def _group_space(group: Any) -> Optional[str]:
    space = getattr(group, "space", None)
    return space if space is not None else getattr(group, "namespace", None)


def _add_any_attr(any_attr: list, space: str, local: str, value: str, parent: str):
    group = next((g for g in any_attr if _group_space(g) == space), None)
    if group is None:
        spec = load_extension(space)
        factory = getattr(spec, "attr_group", None) if spec is not None else None
        group = factory(parent) if factory is not None else None
        if group is None:
            group = UnknownAttrs(space)
        any_attr.append(group)
    if isinstance(group, UnknownAttrs):
        group.attrs.append((local, value))
        return None
    return group.unmarshal_attr(local, value)


def _collect_any_attrs(any_attr: list, attrs, parent: str):
    errs = None
    for (space, local), value in attrs:
        errs = mferrors.append(errs, _add_any_attr(any_attr, space, local, value, parent))
    return errs


class ElementDecoder:
    """Base element decoder: ignores attributes, children and text."""

    def start(self, attrs) -> Optional[BaseException]:
        return None

    def child(self, space: str, local: str) -> tuple[int, Optional["ElementDecoder"]]:
        return -1, None

    def text(self, data: str) -> None:
        pass

    def end(self) -> None:
        pass


class _TokenRecorder(ElementDecoder):
    def __init__(self, tokens: list, name: tuple):
        self.tokens = tokens
        self.name = name

    def start(self, attrs):
        self.tokens.append(("start", self.name, list(attrs)))
        return None

    def child(self, space, local):
        return -1, _TokenRecorder(self.tokens, (space, local))

    def text(self, data):
        if data.strip():
            self.tokens.append(("text", data))

    def end(self):
        self.tokens.append(("end", self.name))


class _UnknownElementDecoder(_TokenRecorder):
    def __init__(self, space: str, local: str):
        self.unknown = UnknownTokens()
        super().__init__(self.unknown.tokens, (space, local))

    def element(self):
        return self.unknown


def _new_element_decoder(space: str, local: str):
    spec = load_extension(space)
    if spec is not None:
        return spec.element_decoder(space, local)
    return _UnknownElementDecoder(space, local)


class _UnknownAssetDecoder(_TokenRecorder):
    def __init__(self, resources: Resources, space: str, local: str):
        self.resources = resources
        self.asset = UnknownAsset()
        super().__init__(self.asset.tokens, (space, local))

    def start(self, attrs):
        super().start(attrs)
        for (space, local), value in attrs:
            if space == "" and local == "id":
                self.asset.id, ok = _parse_uint(value)
                if not ok:
                    return mferrors.ParseAttrError(local, True)
                break
        return None

    def end(self):
        super().end()
        self.resources.assets.append(self.asset)


class _TopLevelDecoder(ElementDecoder):
    def __init__(self, model: Model, is_root: bool, path: str):
        self.model = model
        self.is_root = is_root
        self.path = path

    def child(self, space, local):
        if space == NAMESPACE and local == "model":
            return -1, _ModelDecoder(self.model, self.is_root, self.path)
        return -1, None


class _ModelDecoder(ElementDecoder):
    def __init__(self, model: Model, is_root: bool, path: str):
        self.model = model
        self.is_root = is_root
        self.path = path

    def child(self, space, local):
        model = self.model
        if space == NAMESPACE:
            if local == "resources":
                return -1, _ResourcesDecoder(model, model.find_resources(self.path))
            if local == "build" and self.is_root:
                return -1, _BuildDecoder(model)
            if local == "metadata" and self.is_root:
                return len(model.metadata), _MetadataDecoder(model, model.metadata)
            return -1, None
        dec = _new_element_decoder(space, local)
        if dec is not None:
            model.any_elements.append(dec.element())
        return -1, dec

    def start(self, attrs):
        if not self.is_root:
            return None
        model = self.model
        errs = None
        required: list[str] = []
        for (space, local), value in attrs:
            if space == "":
                if local == "unit":
                    try:
                        model.units = parse_units(value)
                    except ValueError:
                        errs = mferrors.append(errs, mferrors.ParseAttrError(local, False))
                elif local == "thumbnail":
                    model.thumbnail = value
                elif local == "requiredextensions":
                    required = value.split()
            elif space == NS_XML:
                if local == "lang":
                    model.language = value
            elif space == "xmlns":
                model.extensions.append(Extension(value, local, False))
            else:
                errs = mferrors.append(
                    errs, _add_any_attr(model.any_attr, space, local, value, "model")
                )
        for name in required:
            ext = next((e for e in model.extensions if e.local_name == name), None)
            if ext is not None:
                ext.is_required = True
        return errs


class _MetadataGroupDecoder(ElementDecoder):
    def __init__(self, model: Model, group):
        self.model = model
        self.group = group

    def child(self, space, local):
        if space == NAMESPACE and local == "metadata":
            return len(self.group.metadata), _MetadataDecoder(self.model, self.group.metadata)
        return -1, None

    def start(self, attrs):
        return _collect_any_attrs(self.group.any_attr, attrs, "metadatagroup")


class _MetadataDecoder(ElementDecoder):
    def __init__(self, model: Model, target: list):
        self.model = model
        self.target = target
        self.metadata = Metadata()

    def start(self, attrs):
        for (space, local), value in attrs:
            if space != "":
                continue
            if local == "name":
                prefix, sep, rest = value.partition(":")
                declared = any(e.local_name == prefix for e in self.model.extensions)
                if sep and declared:
                    self.metadata.namespace, self.metadata.name = prefix, rest
                else:
                    self.metadata.name = value
            elif local == "type":
                self.metadata.type = value
            elif local == "preserve":
                self.metadata.preserve = value in _TRUE
        return None

    def text(self, data):
        self.metadata.value = data

    def end(self):
        self.target.append(self.metadata)


class _BuildDecoder(ElementDecoder):
    def __init__(self, model: Model):
        self.model = model

    def child(self, space, local):
        if space == NAMESPACE and local == "item":
            return len(self.model.build.items), _ItemDecoder(self.model)
        return -1, None

    def start(self, attrs):
        return _collect_any_attrs(self.model.build.any_attr, attrs, "build")


class _ItemDecoder(ElementDecoder):
    def __init__(self, model: Model):
        self.model = model
        self.item = Item()

    def child(self, space, local):
        if space == NAMESPACE and local == "metadatagroup":
            return -1, _MetadataGroupDecoder(self.model, self.item.metadata)
        return -1, None

    def start(self, attrs):
        errs = None
        for (space, local), value in attrs:
            if space != "":
                errs = mferrors.append(
                    errs, _add_any_attr(self.item.any_attr, space, local, value, "item")
                )
            elif local == "objectid":
                self.item.object_id, ok = _parse_uint(value)
                if not ok:
                    errs = mferrors.append(errs, mferrors.ParseAttrError(local, True))
            elif local == "partnumber":
                self.item.part_number = value
            elif local == "transform":
                matrix = _parse_matrix(value)
                if matrix is None:
                    errs = mferrors.append(errs, mferrors.ParseAttrError(local, False))
                else:
                    self.item.transform = matrix
        return errs

    def end(self):
        self.model.build.items.append(self.item)


class _ResourcesDecoder(ElementDecoder):
    def __init__(self, model: Model, resources: Resources):
        self.model = model
        self.resources = resources

    def start(self, attrs):
        return _collect_any_attrs(self.resources.any_attr, attrs, "resources")

    def child(self, space, local):
        resources = self.resources
        if space == NAMESPACE:
            if local == "object":
                return len(resources.objects), _ObjectDecoder(self.model, resources)
            if local == "basematerials":
                return len(resources.assets), _BaseMaterialsDecoder(resources)
            return -1, None
        spec = load_extension(space)
        index = len(resources.assets)
        if spec is not None:
            dec = spec.element_decoder(space, local)
            if dec is not None:
                resources.assets.append(dec.element())
            return index, dec
        return index, _UnknownAssetDecoder(resources, space, local)


class _BaseMaterialsDecoder(ElementDecoder):
    def __init__(self, resources: Resources):
        self.resources = resources
        self.resource = BaseMaterials()

    def child(self, space, local):
        if space == NAMESPACE and local == "base":
            return len(self.resource.materials), _BaseDecoder(self.resource)
        return -1, None

    def start(self, attrs):
        errs = None
        for (space, local), value in attrs:
            if space != "":
                errs = mferrors.append(
                    errs,
                    _add_any_attr(self.resource.any_attr, space, local, value, "basematerials"),
                )
            elif local == "id":
                self.resource.id, ok = _parse_uint(value)
                if not ok:
                    errs = mferrors.append(errs, mferrors.ParseAttrError(local, True))
        return errs

    def end(self):
        self.resources.assets.append(self.resource)


class _BaseDecoder(ElementDecoder):
    def __init__(self, resource: BaseMaterials):
        self.resource = resource

    def start(self, attrs):
        base = Base()
        errs = None
        for (space, local), value in attrs:
            if space != "":
                errs = mferrors.append(
                    errs, _add_any_attr(base.any_attr, space, local, value, "base")
                )
            elif local == "name":
                base.name = value
            elif local == "displaycolor":
                try:
                    base.color = _parse_rgba(value)
                except ValueError:
                    errs = mferrors.append(errs, mferrors.ParseAttrError(local, True))
        self.resource.materials.append(base)
        return errs


class _ObjectDecoder(ElementDecoder):
    def __init__(self, model: Model, resources: Resources):
        self.model = model
        self.resources = resources
        self.resource = Object()

    def child(self, space, local):
        if space == NAMESPACE:
            if local == "mesh":
                return -1, _MeshDecoder(self.resource)
            if local == "components":
                return -1, _ComponentsDecoder(self.resource)
            if local == "metadatagroup":
                return -1, _MetadataGroupDecoder(self.model, self.resource.metadata)
        return -1, None

    def start(self, attrs):
        errs = None
        for (space, local), value in attrs:
            if space == "":
                errs = mferrors.append(errs, self._core_attr(local, value))
            else:
                errs = mferrors.append(
                    errs, _add_any_attr(self.resource.any_attr, space, local, value, "object")
                )
        return errs

    def _core_attr(self, local: str, value: str):
        obj = self.resource
        if local == "id":
            obj.id, ok = _parse_uint(value)
            return None if ok else mferrors.ParseAttrError(local, True)
        if local == "type":
            try:
                obj.type = parse_object_type(value)
            except ValueError:
                return mferrors.ParseAttrError(local, False)
        elif local == "thumbnail":
            obj.thumbnail = value
        elif local == "name":
            obj.name = value
        elif local == "partnumber":
            obj.part_number = value
        elif local == "pid":
            obj.pid, ok = _parse_uint(value)
            return None if ok else mferrors.ParseAttrError(local, False)
        elif local == "pindex":
            obj.pindex, ok = _parse_uint(value)
            return None if ok else mferrors.ParseAttrError(local, False)
        return None

    def end(self):
        self.resources.objects.append(self.resource)


class _MeshDecoder(ElementDecoder):
    def __init__(self, resource: Object):
        self.resource = resource

    def start(self, attrs):
        self.resource.mesh = Mesh()
        return _collect_any_attrs(self.resource.mesh.any_attr, attrs, "mesh")

    def child(self, space, local):
        mesh = self.resource.mesh
        if space == NAMESPACE:
            if local == "vertices":
                return -1, _VerticesDecoder(mesh)
            if local == "triangles":
                return -1, _TrianglesDecoder(self.resource)
            return -1, None
        dec = _new_element_decoder(space, local)
        if dec is not None:
            mesh.any_elements.append(dec.element())
        return -1, dec


class _VerticesDecoder(ElementDecoder):
    def __init__(self, mesh: Mesh):
        self.mesh = mesh

    def start(self, attrs):
        return _collect_any_attrs(self.mesh.vertices.any_attr, attrs, "vertices")

    def child(self, space, local):
        if space == NAMESPACE and local == "vertex":
            return len(self.mesh.vertices.vertex), _VertexDecoder(self.mesh)
        return -1, None


class _VertexDecoder(ElementDecoder):
    def __init__(self, mesh: Mesh):
        self.mesh = mesh

    def start(self, attrs):
        coords = {"x": 0.0, "y": 0.0, "z": 0.0}
        errs = None
        for (space, local), value in attrs:
            if space != "":
                continue
            number, ok = _parse_float(value)
            if not ok:
                errs = mferrors.append(errs, mferrors.ParseAttrError(local, True))
            if local in coords:
                coords[local] = number
        self.mesh.vertices.vertex.append(Point3D(coords["x"], coords["y"], coords["z"]))
        return errs


class _TrianglesDecoder(ElementDecoder):
    def __init__(self, resource: Object):
        self.resource = resource

    def start(self, attrs):
        return _collect_any_attrs(self.resource.mesh.triangles.any_attr, attrs, "triangles")

    def child(self, space, local):
        if space == NAMESPACE and local == "triangle":
            mesh = self.resource.mesh
            return len(mesh.triangles.triangle), _TriangleDecoder(
                mesh, self.resource.pid, self.resource.pindex
            )
        return -1, None


class _TriangleDecoder(ElementDecoder):
    def __init__(self, mesh: Mesh, default_pid: int, default_pindex: int):
        self.mesh = mesh
        self.default_pid = default_pid
        self.default_pindex = default_pindex

    def start(self, attrs):
        tri = Triangle()
        props: dict[str, int] = {}
        errs = None
        for (space, local), value in attrs:
            if space != "":
                errs = mferrors.append(
                    errs, _add_any_attr(tri.any_attr, space, local, value, "triangle")
                )
                continue
            number, ok = _parse_uint(value)
            required = True
            if local in ("v1", "v2", "v3"):
                setattr(tri, local, number)
            elif local in ("pid", "p1", "p2", "p3"):
                props[local] = number
                required = False
            if not ok:
                errs = mferrors.append(errs, mferrors.ParseAttrError(local, required))
        tri.p1 = props.get("p1", self.default_pindex)
        tri.p2 = props.get("p2", tri.p1)
        tri.p3 = props.get("p3", tri.p1)
        tri.pid = props.get("pid", self.default_pid)
        self.mesh.triangles.triangle.append(tri)
        return errs


class _ComponentsDecoder(ElementDecoder):
    def __init__(self, resource: Object):
        self.resource = resource

    def start(self, attrs):
        components = Components()
        errs = _collect_any_attrs(components.any_attr, attrs, "components")
        self.resource.components = components
        return errs

    def child(self, space, local):
        if space == NAMESPACE and local == "component":
            return len(self.resource.components.component), _ComponentDecoder(self.resource)
        return -1, None


class _ComponentDecoder(ElementDecoder):
    def __init__(self, resource: Object):
        self.resource = resource

    def start(self, attrs):
        comp = Component()
        errs = None
        for (space, local), value in attrs:
            if space != "":
                errs = mferrors.append(
                    errs, _add_any_attr(comp.any_attr, space, local, value, "component")
                )
            elif local == "objectid":
                comp.object_id, ok = _parse_uint(value)
                if not ok:
                    errs = mferrors.append(errs, mferrors.ParseAttrError(local, True))
            elif local == "transform":
                matrix = _parse_matrix(value)
                if matrix is None:
                    errs = mferrors.append(errs, mferrors.ParseAttrError(local, False))
                else:
                    comp.transform = matrix
        self.resource.components.component.append(comp)
        return errs


class _Parser:
    def __init__(self, root: ElementDecoder):
        self.frames: list[tuple[Optional[ElementDecoder], str, int]] = [(root, "", -1)]
        self.scopes: list[dict[str, str]] = [{}]
        self.errors: Optional[BaseException] = None
        self.pending: list[str] = []

    @staticmethod
    def _resolve_attr(name: str, scope: dict) -> tuple[str, str]:
        if ":" not in name:
            return "", name
        prefix, local = name.split(":", 1)
        if prefix == "xmlns":
            return "xmlns", local
        if prefix == "xml":
            return NS_XML, local
        return scope.get(prefix, prefix), local

    def _flush(self) -> None:
        if self.pending:
            dec = self.frames[-1][0]
            if dec is not None:
                dec.text("".join(self.pending))
            self.pending = []

    def start(self, name: str, attr_list: list) -> None:
        pairs = list(zip(attr_list[::2], attr_list[1::2]))
        scope = dict(self.scopes[-1])
        for attr, value in pairs:
            if attr == "xmlns":
                scope[""] = value
            elif attr.startswith("xmlns:"):
                scope[attr[6:]] = value
        self.scopes.append(scope)
        prefix, _, local = name.rpartition(":")
        space = scope.get(prefix, prefix) if prefix else scope.get("", "")
        attrs = [(self._resolve_attr(attr, scope), value) for attr, value in pairs]
        self._flush()
        parent = self.frames[-1][0]
        if parent is None:
            self.frames.append((None, local, -1))
            return
        index, dec = parent.child(space, local)
        self.frames.append((dec, local, index))
        if dec is not None:
            self._report(dec.start(attrs))

    def end(self, name: str) -> None:
        self._flush()
        dec, _, _ = self.frames.pop()
        self.scopes.pop()
        if dec is not None:
            dec.end()

    def chars(self, data: str) -> None:
        self.pending.append(data)

    def _report(self, err: Optional[BaseException]) -> None:
        if err is None:
            return
        for _, local, index in reversed(self.frames[1:]):
            err = mferrors.wrap_index(err, local, index)
        self.errors = mferrors.append(self.errors, err)


def unmarshal_model(data: Union[bytes, str], model: Model) -> Model:
    """Decode the root model part ``data`` into ``model`` and return it.

    Raises ``ErrorList`` with every attribute problem found, and ValueError
    when the XML is malformed.
    """
    parser = _Parser(_TopLevelDecoder(model, True, model.path))
    xml_parser = expat.ParserCreate()
    xml_parser.ordered_attributes = True
    xml_parser.buffer_text = True
    xml_parser.StartElementHandler = parser.start
    xml_parser.EndElementHandler = parser.end
    xml_parser.CharacterDataHandler = parser.chars
    if isinstance(data, str):
        data = data.encode("utf-8")
    try:
        xml_parser.Parse(data, True)
    except expat.ExpatError as exc:
        raise ValueError(f"malformed model: {exc}") from exc
    if parser.errors is not None:
        raise parser.errors
    return model