import pytest

from tmfkit import mferrors
from tmfkit.beamlattice import (
    DEFAULT_EXTENSION,
    LATTICE_BEAM_R2,
    LATTICE_CLIPPED_NO_MESH,
    LATTICE_INVALID_MESH,
    LATTICE_OBJ_TYPE,
    LATTICE_SAME_VERTEX,
    NAMESPACE,
    Beam,
    BeamLattice,
    BeamLatticeSpec,
    BeamSet,
    CapMode,
    ClipMode,
    get_beam_lattice,
    parse_cap_mode,
    parse_clip_mode,
    validate_object,
)
from tmfkit.core import NAMESPACE as CORE_NAMESPACE
from tmfkit.core import Mesh, Model, Object, Point3D, parse_object_type
from tmfkit.decoder import unmarshal_model
from tmfkit.encoder import XmlWriter, marshal_model

S, H, B = CapMode.SPHERE, CapMode.HEMISPHERE, CapMode.BUTT

VERTICES = [
    (45, 55, 55), (45, 45, 55), (45, 55, 45), (45, 45, 45),
    (55, 55, 45), (55, 55, 55), (55, 45, 55), (55, 45, 45),
]


def _sample_lattice():
    lattice = BeamLattice(
        clip_mode=ClipMode.INSIDE,
        clipping_mesh_id=8,
        representation_mesh_id=8,
        min_length=0.0001,
        radius=1,
        cap_mode=H,
    )
    lattice.beam_sets.append(BeamSet(refs=[1], name="test", identifier="set_id"))
    lattice.beams.extend([
        Beam((0, 1), (1.5, 1.6), (S, B)),
        Beam((2, 0), (3, 1.5), (S, H)),
        Beam((1, 3), (1.6, 3), (H, H)),
        Beam((3, 2), (1, 1), (H, H)),
        Beam((2, 4), (3, 2), (H, H)),
        Beam((4, 5), (2, 2), (H, H)),
        Beam((5, 6), (2, 2), (H, H)),
        Beam((7, 6), (2, 2), (H, H)),
        Beam((1, 6), (1.6, 2), (H, H)),
        Beam((7, 4), (2, 2), (H, H)),
        Beam((7, 3), (2, 3), (H, H)),
        Beam((0, 5), (1.5, 2), (H, B)),
    ])
    return lattice


def _mesh(vertices, *elements):
    mesh = Mesh()
    mesh.vertices.vertex.extend(Point3D(*v) for v in vertices)
    mesh.any_elements.extend(elements)
    return mesh


def _object(obj_id, mesh, name="", type_name="model"):
    obj = Object()
    obj.id = obj_id
    obj.name = name
    obj.type = parse_object_type(type_name)
    obj.mesh = mesh
    return obj


def _model(*objects):
    model = Model()
    model.path = "/3D/3dmodel.model"
    model.resources.objects.extend(objects)
    return model


@pytest.mark.parametrize("name,mode", [("sphere", S), ("hemisphere", H), ("butt", B)])
def test_cap_mode_string_and_parse(name, mode):
    assert str(mode) == name
    assert parse_cap_mode(name) is mode


@pytest.mark.parametrize(
    "name,mode",
    [("none", ClipMode.NONE), ("inside", ClipMode.INSIDE), ("outside", ClipMode.OUTSIDE)],
)
def test_clip_mode_string_and_parse(name, mode):
    assert str(mode) == name
    assert parse_clip_mode(name) is mode


def test_parse_unknown_modes():
    with pytest.raises(ValueError):
        parse_cap_mode("empty")
    with pytest.raises(ValueError):
        parse_clip_mode("empty")


def test_get_beam_lattice():
    lattice = BeamLattice(radius=2)
    assert get_beam_lattice(_mesh([], None, lattice)) is lattice
    assert get_beam_lattice(_mesh([], None)) is None


def test_spec_element_decoder():
    spec = BeamLatticeSpec()
    dec = spec.element_decoder(NAMESPACE, "beamlattice")
    assert dec.element() == BeamLattice()
    assert spec.element_decoder(NAMESPACE, "other") is None
    assert spec.element_decoder(CORE_NAMESPACE, "beamlattice") is None


DECODE_XML = """
<model xmlns="http://schemas.microsoft.com/3dmanufacturing/core/2015/02" xmlns:b="http://schemas.microsoft.com/3dmanufacturing/beamlattice/2017/02">
<resources>
    <object id="15" name="Box" type="model">
        <mesh>
            <vertices>
                <vertex x="45.00000" y="55.00000" z="55.00000"/>
                <vertex x="45.00000" y="45.00000" z="55.00000"/>
                <vertex x="45.00000" y="55.00000" z="45.00000"/>
                <vertex x="45.00000" y="45.00000" z="45.00000"/>
                <vertex x="55.00000" y="55.00000" z="45.00000"/>
                <vertex x="55.00000" y="55.00000" z="55.00000"/>
                <vertex x="55.00000" y="45.00000" z="55.00000"/>
                <vertex x="55.00000" y="45.00000" z="45.00000"/>
            </vertices>
            <b:other/>
            <b:beamlattice radius="1" minlength="0.0001" cap="hemisphere" clippingmode="inside" clippingmesh="8" representationmesh="8">
                <b:beams>
                    <b:beam v1="0" v2="1" r1="1.50000" r2="1.60000" cap1="sphere" cap2="butt"/>
                    <b:beam v1="2" v2="0" r1="3.00000" r2="1.50000" cap1="sphere"/>
                    <b:beam v1="1" v2="3" r1="1.60000" r2="3.00000"/>
                    <b:beam v1="3" v2="2" />
                    <b:beam v1="2" v2="4" r1="3.00000" r2="2.00000"/>
                    <b:beam v1="4" v2="5" r1="2.00000"/>
                    <b:beam v1="5" v2="6" r1="2.00000"/>
                    <b:beam v1="7" v2="6" r1="2.00000"/>
                    <b:beam v1="1" v2="6" r1="1.60000" r2="2.00000"/>
                    <b:beam v1="7" v2="4" r1="2.00000"/>
                    <b:beam v1="7" v2="3" r1="2.00000" r2="3.00000"/>
                    <b:beam v1="0" v2="5" r1="1.50000" r2="2.00000" cap2="butt"/>
                </b:beams>
                <b:beamsets>
                    <b:beamset name="test" identifier="set_id">
                        <b:ref index="1"/>
                    </b:beamset>
                </b:beamsets>
            </b:beamlattice>
        </mesh>
    </object>
</resources>
<build>
</build>
</model>
"""


def test_decode():
    got = Model()
    got.path = "/3D/3dmodel.model"
    unmarshal_model(DECODE_XML, got)
    assert got.extensions == [DEFAULT_EXTENSION]
    assert len(got.resources.objects) == 1
    obj = got.resources.objects[0]
    assert (obj.id, obj.name) == (15, "Box")
    assert [tuple(v) for v in obj.mesh.vertices.vertex] == VERTICES
    assert obj.mesh.any_elements == [_sample_lattice()]


WARN_XML = """
<model xmlns="http://schemas.microsoft.com/3dmanufacturing/core/2015/02" xmlns:b="http://schemas.microsoft.com/3dmanufacturing/beamlattice/2017/02">
<resources>
    <object id="15" name="Box" type="model">
        <mesh>
            <vertices>
                <vertex x="45.00000" y="55.00000" z="55.00000"/>
                <vertex x="45.00000" y="45.00000" z="55.00000"/>
                <vertex x="45.00000" y="55.00000" z="45.00000"/>
                <vertex x="45.00000" y="45.00000" z="45.00000"/>
                <vertex x="55.00000" y="55.00000" z="45.00000"/>
                <vertex x="55.00000" y="55.00000" z="55.00000"/>
                <vertex x="55.00000" y="45.00000" z="55.00000"/>
                <vertex x="55.00000" y="45.00000" z="45.00000"/>
            </vertices>
            <b:beamlattice />
            <b:beamlattice qm:mq="other" radius="a" minlength="b" cap="invalid" clippingmode="invalid2" clippingmesh="c" representationmesh="d">
                <b:beams>
                    <b:beam qm:mq="other" v1="0" v2="1" r1="a" r2="b" cap1="sphere" cap2="butt"/>
                    <b:beam v1="2" v2="0" r1="3.00000" r2="1.50000" cap1="sphere"/>
                    <b:beam v1="1" v2="b" r1="1.60000" r2="3.00000"/>
                    <b:beam v1="a" v2="2" />
                    <b:beam />
                    <b:beam v1="2" v2="4" r1="3.00000" r2="2.00000"/>
                    <b:beam v1="0" v2="5" r1="1.50000" r2="2.00000" cap2="butt"/>
                </b:beams>
                <b:beamsets>
                    <b:beamset qm:mq="other" name="test" identifier="set_id">
                        <b:ref index="1"/>
                        <b:ref />
                        <b:ref index="a"/>
                    </b:beamset>
                </b:beamsets>
            </b:beamlattice>
        </mesh>
    </object>
</resources>
<build>
</build>
</model>
"""


def test_decode_warns():
    base = "tmfkit: XPath: /model/resources/object[0]/mesh/beamlattice"
    want = [
        f"{base}: {mferrors.ParseAttrError('radius', True)}",
        f"{base}: {mferrors.ParseAttrError('minlength', True)}",
        f"{base}: {mferrors.ParseAttrError('cap', False)}",
        f"{base}: {mferrors.ParseAttrError('clippingmode', False)}",
        f"{base}: {mferrors.ParseAttrError('clippingmesh', False)}",
        f"{base}: {mferrors.ParseAttrError('representationmesh', False)}",
        f"{base}/beams/beam[0]: {mferrors.ParseAttrError('r1', False)}",
        f"{base}/beams/beam[0]: {mferrors.ParseAttrError('r2', False)}",
        f"{base}/beams/beam[2]: {mferrors.ParseAttrError('v2', True)}",
        f"{base}/beams/beam[3]: {mferrors.ParseAttrError('v1', True)}",
        f"{base}/beamsets/beamset[0]/ref[2]: {mferrors.ParseAttrError('index', True)}",
    ]
    got = Model()
    got.path = "/3D/3dmodel.model"
    with pytest.raises(mferrors.ErrorList) as info:
        unmarshal_model(WARN_XML, got)
    assert [str(e) for e in info.value] == want


def test_decode_defaults_apply_to_beams():
    got = Model()
    got.path = "/3D/3dmodel.model"
    with pytest.raises(mferrors.ErrorList):
        unmarshal_model(WARN_XML, got)
    lattice = got.resources.objects[0].mesh.any_elements[1]
    assert lattice.beams[4] == Beam((0, 0), (0.0, 0.0), (S, S))
    assert lattice.beam_sets[0].refs == [1, 0, 0]


def test_marshal_writes_beam_lattice():
    writer = XmlWriter(4)
    writer.start("model", [("xmlns", CORE_NAMESPACE), (("xmlns", "b"), NAMESPACE)])
    _sample_lattice().marshal(writer, 4)
    writer.end("model")
    xml = writer.getvalue()
    assert (
        '<b:beamlattice minlength="0.0001" radius="1.0000" clippingmode="inside" '
        'clippingmesh="8" representationmesh="8" cap="hemisphere">' in xml
    )
    assert '<b:beam v1="0" v2="1" r1="1.5000" r2="1.6000" cap1="sphere" cap2="butt"/>' in xml
    assert '<b:beam v1="3" v2="2"/>' in xml
    assert '<b:beamset name="test" identifier="set_id"><b:ref index="1"/></b:beamset>' in xml


def test_marshal_model_roundtrip():
    lattice = _sample_lattice()
    model = _model(_object(15, _mesh(VERTICES, lattice), name="Box"))
    model.extensions.append(DEFAULT_EXTENSION)
    data = marshal_model(model)
    decoded = Model()
    decoded.path = model.path
    unmarshal_model(data, decoded)
    assert decoded.extensions == [DEFAULT_EXTENSION]
    obj = decoded.resources.objects[0]
    assert (obj.id, obj.name) == (15, "Box")
    assert [tuple(v) for v in obj.mesh.vertices.vertex] == VERTICES
    assert obj.mesh.any_elements == [lattice]


def _locate(err, index, path=""):
    err = mferrors.wrap(mferrors.wrap_index(err, "object", index), "resources")
    if path:
        return mferrors.wrap_path(err, "model", path)
    return mferrors.wrap(err, "model")


def _validate(model, objects, path=""):
    spec = BeamLatticeSpec()
    errs = None
    for i, obj in enumerate(objects):
        errs = mferrors.append(errs, _locate(spec.validate(model, path, obj), i, path))
    return [str(e) for e in errs] if errs is not None else []


def test_validate_error_in_child():
    obj = _object(1, _mesh([], BeamLattice()))
    base = "tmfkit: Path: /other.model XPath: /model/resources/object[0]/mesh/beamlattice"
    assert _validate(Model(), [obj], "/other.model") == [
        f"{base}: {mferrors.MissingFieldError('minlength')}",
        f"{base}: {mferrors.MissingFieldError('radius')}",
        f"{base}: {LATTICE_CLIPPED_NO_MESH}",
    ]


def test_validate_objects_without_lattice():
    plain = _object(1, _mesh([]))
    comp = _object(2, None)
    model = _model(plain, comp)
    assert _validate(model, [plain, comp]) == []
    assert validate_object(model, "", plain) is None
    assert BeamLatticeSpec().validate(model, "", Mesh()) is None


def test_validate_incorrect_type():
    objects = [
        _object(i + 1, _mesh([], BeamLattice(min_length=1, radius=1, clip_mode=ClipMode.INSIDE)),
                type_name=kind)
        for i, kind in enumerate(["other", "surface", "support"])
    ]
    assert _validate(_model(*objects), objects) == [
        f"tmfkit: XPath: /model/resources/object[{i}]/mesh/beamlattice: {LATTICE_OBJ_TYPE}"
        for i in range(3)
    ]


def test_validate_solidsupport_is_allowed():
    obj = _object(
        1,
        _mesh([(0, 0, 0)] * 3, BeamLattice(min_length=1, radius=1, clip_mode=ClipMode.INSIDE)),
        type_name="solidsupport",
    )
    assert _validate(_model(obj), [obj]) == []


def test_validate_incorrect_mesh_references():
    three = [(0, 0, 0)] * 3
    objects = [
        _object(1, _mesh(three, None)),
        _object(2, _mesh(three, BeamLattice(min_length=1, radius=1, clipping_mesh_id=100,
                                            representation_mesh_id=2))),
        _object(3, _mesh(three, BeamLattice(min_length=1, radius=1, clipping_mesh_id=1,
                                            representation_mesh_id=2))),
    ]
    assert _validate(_model(*objects), objects) == [
        f"tmfkit: XPath: /model/resources/object[1]/mesh/beamlattice: {mferrors.MISSING_RESOURCE}",
        f"tmfkit: XPath: /model/resources/object[1]/mesh/beamlattice: {mferrors.RECURSION}",
        f"tmfkit: XPath: /model/resources/object[2]/mesh/beamlattice: {LATTICE_INVALID_MESH}",
    ]


def test_validate_incorrect_beams():
    lattice = BeamLattice(min_length=1, radius=1, clip_mode=ClipMode.INSIDE, beams=[
        Beam(), Beam((1, 1), (0.5, 0)), Beam((1, 3)),
    ])
    obj = _object(2, _mesh([(0, 0, 0)] * 3, lattice))
    base = "tmfkit: XPath: /model/resources/object[0]/mesh/beamlattice"
    assert _validate(_model(obj), [obj]) == [
        f"{base}/beam[0]: {LATTICE_SAME_VERTEX}",
        f"{base}/beam[1]: {LATTICE_SAME_VERTEX}",
        f"{base}/beam[1]: {LATTICE_BEAM_R2}",
        f"{base}/beam[2]: {mferrors.INDEX_OUT_OF_BOUNDS}",
    ]


def test_validate_incorrect_beamset():
    lattice = BeamLattice(
        min_length=1, radius=1, clip_mode=ClipMode.INSIDE,
        beams=[Beam((1, 2))], beam_sets=[BeamSet(refs=[0, 2, 3])],
    )
    obj = _object(2, _mesh([(0, 0, 0)] * 3, lattice))
    assert _validate(_model(obj), [obj]) == [
        "tmfkit: XPath: /model/resources/object[0]/mesh/beamlattice/beamset[0]: "
        f"{mferrors.INDEX_OUT_OF_BOUNDS}",
    ]