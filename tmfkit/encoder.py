"""Encoding of 3MF model parts to XML."""

from __future__ import annotations

import math
import re
import struct
from decimal import Decimal
from typing import Any, Iterable, Iterator, Union

from .core import (
    NAMESPACE,
    NS_XML,
    REL_TYPE_THUMBNAIL,
    BaseMaterials,
    Components,
    Mesh,
    MetadataGroup,
    Model,
    Object,
    ObjectType,
    Relationship,
    Resources,
    UnknownAttrs,
    UnknownTokens,
)

DEFAULT_FLOAT_PRECISION = 4

_NCNAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_.-]*$")
_MAX_FLOAT32 = 3.4028234663852886e38

Name = Union[str, tuple]


def _split(name: Name) -> tuple:
    if isinstance(name, str):
        return "", name
    space, local = name
    return space, local


def _escape_attr(value: str) -> str:
    return (
        value.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("\t", "&#x9;")
        .replace("\n", "&#xA;")
        .replace("\r", "&#xD;")
    )


def _escape_text(value: str) -> str:
    return (
        value.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace("\r", "&#xD;")
    )


class XmlWriter:
    """Streams XML elements into a string, resolving namespaces to prefixes.

    Names are plain local names or ``(namespace, local)`` pairs. While
    ``auto_close`` is set, started elements are written self-closed and must
    not be ended.
    """

    def __init__(self, float_precision: int = DEFAULT_FLOAT_PRECISION):
        self.float_precision = float_precision
        self.auto_close = False
        self.relationships: list[Relationship] = []
        self._parts: list[str] = []
        self._open: list[str] = []
        self._scopes: list[tuple[dict, str]] = [({}, "")]
        self._generated = 0

    def add_relationship(self, rel: Relationship) -> None:
        self.relationships.append(rel)

    def start(self, name: Name, attrs: Iterable = ()) -> None:
        """Write the start tag of ``name`` with ``attrs`` as (name, value) pairs."""
        known, default = self._scopes[-1]
        prefixes = dict(known)
        pairs = [(_split(attr_name), str(value)) for attr_name, value in attrs]
        for (space, local), value in pairs:
            if space == "" and local == "xmlns":
                default = value
            elif space == "xmlns":
                prefixes[value] = local
        declarations: list[tuple[str, str]] = []

        def prefix_for(space: str) -> str:
            if space in prefixes:
                return prefixes[space]
            if _NCNAME.match(space) and space not in ("xml", "xmlns"):
                return space
            self._generated += 1
            prefix = f"ns{self._generated}"
            prefixes[space] = prefix
            declarations.append((f"xmlns:{prefix}", space))
            return prefix

        space, local = _split(name)
        qname = local if space in ("", default) else f"{prefix_for(space)}:{local}"
        rendered = []
        for (attr_space, attr_local), value in pairs:
            if attr_space == "":
                qattr = attr_local
            elif attr_space == "xmlns":
                qattr = f"xmlns:{attr_local}"
            elif attr_space == NS_XML:
                qattr = f"xml:{attr_local}"
            else:
                qattr = f"{prefix_for(attr_space)}:{attr_local}"
            rendered.append((qattr, value))
        rendered.extend(declarations)
        body = "".join(f' {q}="{_escape_attr(v)}"' for q, v in rendered)
        if self.auto_close:
            self._parts.append(f"<{qname}{body}/>")
            return
        self._parts.append(f"<{qname}{body}>")
        self._open.append(qname)
        self._scopes.append((prefixes, default))

    def end(self, name: Name) -> None:
        """Write the end tag of the innermost open element, which must be ``name``."""
        if not self._open:
            raise ValueError("no open element to end")
        _, local = _split(name)
        qname = self._open[-1]
        if qname.rpartition(":")[2] != local:
            raise ValueError(f"cannot end {local!r} while {qname!r} is open")
        self._open.pop()
        self._scopes.pop()
        self._parts.append(f"</{qname}>")

    def text(self, value: str) -> None:
        """Write escaped character data."""
        self._parts.append(_escape_text(value))

    def getvalue(self) -> str:
        return "".join(self._parts)


def _to_float32(value: float) -> float:
    if math.isnan(value) or math.isinf(value):
        return value
    if abs(value) > _MAX_FLOAT32:
        return math.copysign(math.inf, value)
    return struct.unpack("<f", struct.pack("<f", value))[0]


def format_float(value: float, precision: int) -> str:
    """Format ``value`` as a single-precision number without exponent.

    A negative ``precision`` uses the fewest digits that identify the value.
    """
    x = _to_float32(float(value))
    if math.isnan(x):
        return "NaN"
    if math.isinf(x):
        return "+Inf" if x > 0 else "-Inf"
    if precision >= 0:
        return f"{x:.{precision}f}"
    for digits in range(1, 18):
        text = f"{x:.{digits}g}"
        if _to_float32(float(text)) == x:
            break
    return format(Decimal(text), "f")


def _format_color(color: tuple) -> str:
    r, g, b, a = color
    text = f"#{r:02X}{g:02X}{b:02X}"
    return text if a == 255 else text + f"{a:02X}"


def _any_attrs(any_attr: Iterable[Any]) -> Iterator[tuple]:
    for group in any_attr:
        if isinstance(group, UnknownAttrs):
            for local, value in group.attrs:
                yield (group.space, local), value
        else:
            marshal = getattr(group, "marshal_attrs", None)
            if marshal is not None:
                yield from marshal()


def _write_tokens(writer: XmlWriter, tokens: Iterable[tuple]) -> None:
    auto_close = writer.auto_close
    writer.auto_close = False
    for token in tokens:
        kind = token[0]
        if kind == "start":
            writer.start(token[1], token[2])
        elif kind == "end":
            writer.end(token[1])
        elif kind == "text":
            writer.text(token[1])
    writer.auto_close = auto_close


def _write_any(writer: XmlWriter, elements: Iterable[Any]) -> None:
    for element in elements:
        if element is None:
            continue
        marshal = getattr(element, "marshal", None)
        if marshal is not None:
            marshal(writer, writer.float_precision)
        elif isinstance(element, UnknownTokens):
            _write_tokens(writer, element.tokens)


def _write_base_materials(writer: XmlWriter, res: BaseMaterials) -> None:
    writer.start("basematerials", [("id", str(res.id)), *_any_attrs(res.any_attr)])
    writer.auto_close = True
    for base in res.materials:
        writer.start(
            "base",
            [
                ("name", base.name),
                ("displaycolor", _format_color(base.color)),
                *_any_attrs(base.any_attr),
            ],
        )
    writer.auto_close = False
    writer.end("basematerials")


def _model_attrs(model: Model, is_root: bool) -> list:
    attrs: list = [
        ("xmlns", NAMESPACE),
        ("unit", str(model.units)),
        ((NS_XML, "lang"), model.language),
    ]
    if is_root and model.thumbnail:
        attrs.append(("thumbnail", model.thumbnail))
    attrs.extend((("xmlns", ext.local_name), ext.namespace) for ext in model.extensions)
    required = sorted(ext.local_name for ext in model.extensions if ext.is_required)
    if required:
        attrs.append(("requiredextensions", " ".join(required)))
    attrs.extend(_any_attrs(model.any_attr))
    return attrs


def _write_metadata(writer: XmlWriter, metadata: Iterable[Any]) -> None:
    for md in metadata:
        name = f"{md.namespace}:{md.name}" if md.namespace else md.name
        attrs = [("name", name)]
        if md.preserve:
            attrs.append(("preserve", "true"))
        if md.type:
            attrs.append(("type", md.type))
        writer.start("metadata", attrs)
        writer.text(md.value)
        writer.end("metadata")


def _write_metadata_group(writer: XmlWriter, group: MetadataGroup) -> None:
    writer.start("metadatagroup", list(_any_attrs(group.any_attr)))
    _write_metadata(writer, group.metadata)
    writer.end("metadatagroup")


def _write_build(writer: XmlWriter, model: Model) -> None:
    writer.start("build", list(_any_attrs(model.build.any_attr)))
    writer.auto_close = True
    for item in model.build.items:
        attrs = [("objectid", str(item.object_id))]
        if item.has_transform():
            attrs.append(("transform", str(item.transform)))
        if item.part_number:
            attrs.append(("partnumber", item.part_number))
        attrs.extend(_any_attrs(item.any_attr))
        if item.metadata.metadata:
            writer.auto_close = False
            writer.start("item", attrs)
            _write_metadata_group(writer, item.metadata)
            writer.end("item")
            writer.auto_close = True
        else:
            writer.start("item", attrs)
    writer.auto_close = False
    writer.end("build")


def _write_resources(writer: XmlWriter, resources: Resources) -> None:
    writer.start("resources", list(_any_attrs(resources.any_attr)))
    for asset in resources.assets:
        if isinstance(asset, BaseMaterials):
            _write_base_materials(writer, asset)
        else:
            _write_any(writer, [asset])
    for obj in resources.objects:
        _write_object(writer, obj)
    writer.end("resources")


def _write_object(writer: XmlWriter, obj: Object) -> None:
    attrs = [("id", str(obj.id))]
    if obj.type != ObjectType.MODEL:
        attrs.append(("type", str(obj.type)))
    if obj.thumbnail:
        writer.add_relationship(Relationship(path=obj.thumbnail, type=REL_TYPE_THUMBNAIL))
        attrs.append(("thumbnail", obj.thumbnail))
    if obj.part_number:
        attrs.append(("partnumber", obj.part_number))
    if obj.name:
        attrs.append(("name", obj.name))
    if obj.mesh is not None:
        if obj.pid:
            attrs.append(("pid", str(obj.pid)))
        if obj.pindex:
            attrs.append(("pindex", str(obj.pindex)))
    attrs.extend(_any_attrs(obj.any_attr))
    writer.start("object", attrs)
    if obj.metadata.metadata:
        _write_metadata_group(writer, obj.metadata)
    if obj.mesh is not None:
        _write_mesh(writer, obj, obj.mesh)
    elif obj.components is not None:
        _write_components(writer, obj.components)
    writer.end("object")


def _write_components(writer: XmlWriter, components: Components) -> None:
    writer.start("components", list(_any_attrs(components.any_attr)))
    writer.auto_close = True
    for comp in components.component:
        attrs = [("objectid", str(comp.object_id))]
        if comp.has_transform():
            attrs.append(("transform", str(comp.transform)))
        attrs.extend(_any_attrs(comp.any_attr))
        writer.start("component", attrs)
    writer.auto_close = False
    writer.end("components")


def _write_vertices(writer: XmlWriter, mesh: Mesh) -> None:
    writer.start("vertices", list(_any_attrs(mesh.vertices.any_attr)))
    precision = writer.float_precision
    writer.auto_close = True
    for v in mesh.vertices.vertex:
        writer.start(
            "vertex",
            [
                ("x", format_float(v[0], precision)),
                ("y", format_float(v[1], precision)),
                ("z", format_float(v[2], precision)),
            ],
        )
    writer.auto_close = False
    writer.end("vertices")


def _write_triangles(writer: XmlWriter, obj: Object, mesh: Mesh) -> None:
    writer.start("triangles", list(_any_attrs(mesh.triangles.any_attr)))
    writer.auto_close = True
    for t in mesh.triangles.triangle:
        attrs = [("v1", str(t.v1)), ("v2", str(t.v2)), ("v3", str(t.v3))]
        if t.pid != 0:
            if t.p1 != t.p2 or t.p1 != t.p3:
                attrs += [
                    ("pid", str(t.pid)),
                    ("p1", str(t.p1)),
                    ("p2", str(t.p2)),
                    ("p3", str(t.p3)),
                ]
            elif t.pid != obj.pid or t.p1 != obj.pindex:
                attrs += [("pid", str(t.pid)), ("p1", str(t.p1))]
        attrs.extend(_any_attrs(t.any_attr))
        writer.start("triangle", attrs)
    writer.auto_close = False
    writer.end("triangles")


def _write_mesh(writer: XmlWriter, obj: Object, mesh: Mesh) -> None:
    writer.start("mesh", list(_any_attrs(mesh.any_attr)))
    _write_vertices(writer, mesh)
    _write_triangles(writer, obj, mesh)
    _write_any(writer, mesh.any_elements)
    writer.end("mesh")


def _write_model(writer: XmlWriter, model: Model) -> None:
    writer.start("model", _model_attrs(model, True))
    _write_metadata(writer, model.metadata)
    _write_resources(writer, model.resources)
    _write_build(writer, model)
    _write_any(writer, model.any_elements)
    writer.end("model")


def marshal_model(model: Model, float_precision: int = DEFAULT_FLOAT_PRECISION) -> bytes:
    """The XML encoding of the root model part of ``model``."""
    writer = XmlWriter(float_precision)
    _write_model(writer, model)
    return writer.getvalue().encode("utf-8")