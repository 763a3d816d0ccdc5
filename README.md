# tmfkit

An in-memory model of 3MF (3D Manufacturing Format) documents. It includes
an XML reader and writer for model parts and supports the beam lattice
extension.

## Install

```
pip install tmfkit
```

To run the test suite:

```
pip install "tmfkit[test]"
pytest
```

## Modules

- `tmfkit.core` defines the model: `Model`, `ChildModel`, `Resources`,
  `Object`, `Mesh`, `Components`, `Component`, `Build`, `Item`,
  `BaseMaterials`, `Metadata` and `UnknownAsset`. It also has the geometry
  helpers `Point3D`, `Box` and `Matrix`, the enums `Units` and `ObjectType`,
  and `MeshBuilder`. `Model.find_object`, `Model.find_asset` and
  `Model.find_resources` look things up by part path and ID.
  `Model.walk_objects()` and `Model.walk_assets()` yield `(path, item)` pairs.
  They go through the child parts first, in path order, and then the root
  part, whose path is given as `""`. `Model.bounding_box()` returns the box
  around all build items with their transforms applied.
- `tmfkit.decoder`: `unmarshal_model(data, model)` fills a `Model` from the
  XML of a root model part and returns it. `register_extension` and
  `load_extension` manage the specs that decode extension namespaces.
  Content of namespaces that no spec handles is kept as `UnknownAttrs`,
  `UnknownTokens` and `UnknownAsset`, so it is written out again on encoding.
- `tmfkit.encoder`: `marshal_model(model, float_precision=4)` returns the XML
  of the root model part as bytes. `format_float` and `XmlWriter` are the
  building blocks it uses.
- `tmfkit.beamlattice` is the beam lattice extension. It provides
  `BeamLattice`, `Beam`, `BeamSet`, `ClipMode` and `CapMode`, along with
  `get_beam_lattice`, `validate_object` and `BeamLatticeSpec`.
- `tmfkit.mferrors` holds the error types. `ErrorList` gathers several
  errors. Each `SpecError` carries the XPath of the element where it
  occurred. `ParseAttrError` and `MissingFieldError` describe the problem
  itself.

## Example

```python
from tmfkit.core import Item, Mesh, MeshBuilder, Model, Object, Point3D, Triangle
from tmfkit.decoder import unmarshal_model
from tmfkit.encoder import marshal_model

mesh = Mesh()
builder = MeshBuilder(mesh)
a = builder.add_vertex(Point3D(0, 0, 0))
b = builder.add_vertex(Point3D(10, 0, 0))
c = builder.add_vertex(Point3D(0, 10, 0))
mesh.triangles.triangle.append(Triangle(v1=a, v2=b, v3=c))

model = Model()
model.resources.objects.append(Object(id=1, name="Part", mesh=mesh))
model.build.items.append(Item(object_id=1))

data = marshal_model(model, 4)

again = unmarshal_model(data, Model())
print(again.resources.find_object(1).name)
print(again.bounding_box())
```

## Decoding errors

Reading is tolerant. The reader fills in as much of the model as it can. If
any attribute could not be parsed, it then raises a single `ErrorList` that
holds every problem it found:

```python
from tmfkit.mferrors import ErrorList

try:
    unmarshal_model(data, Model())
except ErrorList as errors:
    for error in errors:
        print(error)
```

Each entry reads like
`tmfkit: XPath: /model/resources/object[0]: error parsing required attribute 'id'`.
Malformed XML raises `ValueError`.

## Beam lattices

Importing `tmfkit.beamlattice` registers its spec for the beam lattice
namespace. From then on, `unmarshal_model` stores each decoded lattice with
its mesh:

```python
from tmfkit import beamlattice

lattice = beamlattice.get_beam_lattice(obj.mesh)
problems = beamlattice.validate_object(model, "", obj)
```

`validate_object` returns `None` in two cases: the object has no lattice, or
the lattice is valid. Otherwise it returns the violations, located under
`mesh/beamlattice`. To write the lattice namespace declaration into the
output, add `beamlattice.DEFAULT_EXTENSION` to `model.extensions`.

## What it does not do

- It works with the XML of model parts only. It does not read or write the
  zipped 3MF package itself, so attachments, relationships and child model
  parts are kept on the `Model` but are not stored anywhere by the encoder.
- It has no validation of the core specification. The only rule checking is
  `beamlattice.validate_object`.
- It has no command-line tool.