"""Error types used when decoding and validating 3MF models.

Decoders and validators collect every problem they find instead of stopping
at the first one. ``append`` gathers errors into an ``ErrorList`` and the
``wrap`` helpers record where in the document each error was found.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional


class SpecViolation(Exception):
    """A rule of the 3MF specification that a model breaks."""


MISSING_ID = SpecViolation("resource ID MUST be greater than zero")
DUPLICATED_ID = SpecViolation("IDs MUST be unique among all resources under same Model")
MISSING_RESOURCE = SpecViolation("resource MUST be defined prior to referencing")
DUPLICATED_INDICES = SpecViolation("indices v1, v2 and v3 MUST be distinct")
INDEX_OUT_OF_BOUNDS = SpecViolation("index is bigger than referenced slice")
INSUFFICIENT_VERTICES = SpecViolation("mesh MUST contain at least 3 vertices to form a solid body")
INSUFFICIENT_TRIANGLES = SpecViolation("mesh MUST contain at least 4 triangles to form a solid body")
COMPONENTS_PID = SpecViolation("MUST NOT assign pid to objects that contain components")
OPC_PART_NAME = SpecViolation(
    "part name MUST conform to the syntax specified in the OPC specification"
)
OPC_REL_TARGET = SpecViolation("relationship target part MUST be included in the 3MF document")
OPC_DUPLICATED_REL = SpecViolation(
    "there MUST NOT be more than one relationship of a given type from one part to a second part"
)
OPC_CONTENT_TYPE = SpecViolation("part MUST use an appropriate content type specified")
OPC_DUPLICATED_TICKET = SpecViolation("each model part MUST attach no more than one PrintTicket")
OPC_DUPLICATED_MODEL_NAME = SpecViolation("model part names MUST be unique")
METADATA_NAME = SpecViolation("names without a namespace MUST be restricted to predefined values")
METADATA_NAMESPACE = SpecViolation("namespace MUST be declared on the model")
METADATA_DUPLICATED = SpecViolation("names MUST NOT be duplicated")
OTHER_ITEM = SpecViolation("MUST NOT reference objects of type other")
NON_OBJECT = SpecViolation("MUST NOT reference non-object resources")
REQUIRED_EXT = SpecViolation("unsupported required extension")
EMPTY_RESOURCE_PROPS = SpecViolation("resource properties MUST NOT be empty")
RECURSION = SpecViolation("MUST NOT contain recursive references")
INVALID_OBJECT = SpecViolation("MUST contain a mesh or components")
MESH_CONSISTENCY = SpecViolation(
    "mesh has non-manifold edges without consistent triangle orientation"
)


@dataclass
class Level:
    """One step of the element path leading to an error."""

    name: str
    index: int = -1

    def __str__(self) -> str:
        if self.index == -1:
            return self.name
        return f"{self.name}[{self.index}]"


class SpecError(Exception):
    """An error located at an element of a model part."""

    def __init__(self, err: BaseException, target: Optional[list[Level]] = None, path: str = ""):
        super().__init__(err)
        self.err = err
        self.target: list[Level] = list(target or [])
        self.path = path

    def xpath(self) -> str:
        """The element path, outermost element first."""
        return "/" + "/".join(str(level) for level in reversed(self.target))

    def __str__(self) -> str:
        if not self.path:
            return f"tmfkit: XPath: {self.xpath()}: {self.err}"
        return f"tmfkit: Path: {self.path} XPath: {self.xpath()}: {self.err}"


class MissingFieldError(Exception):
    """A required field has no value."""

    def __init__(self, name: str):
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"required field '{self.name}' is not set"


class ParseAttrError(Exception):
    """An attribute value could not be parsed."""

    def __init__(self, name: str, required: bool):
        super().__init__(name, required)
        self.name = name
        self.required = required

    def __str__(self) -> str:
        kind = "required" if self.required else "optional"
        return f"error parsing {kind} attribute '{self.name}'"


class ErrorList(Exception):
    """Several errors reported together."""

    def __init__(self, errors: Optional[list[BaseException]] = None):
        super().__init__()
        self.errors: list[BaseException] = list(errors or [])

    def __len__(self) -> int:
        return len(self.errors)

    def __iter__(self) -> Iterator[BaseException]:
        return iter(self.errors)

    def __str__(self) -> str:
        if len(self.errors) == 1:
            return f"1 error occurred:\n\t* {self.errors[0]}\n"
        points = "\n\t".join(f"* {err}" for err in self.errors)
        return f"{len(self.errors)} errors occurred:\n\t{points}\n"

    def first(self) -> Optional[BaseException]:
        """The first collected error, or None when the list is empty."""
        return self.errors[0] if self.errors else None


def append(err: Optional[BaseException], *args: Optional[BaseException]) -> Optional[BaseException]:
    """Add errors to ``err`` and return the combined error.

    ``None`` values are ignored and nested lists are flattened one level.
    When ``err`` is an ``ErrorList`` it is extended in place.
    """
    if not args:
        return err
    if isinstance(err, ErrorList):
        for extra in args:
            if extra is None:
                continue
            if isinstance(extra, ErrorList):
                err.errors.extend(extra.errors)
            else:
                err.errors.append(extra)
        return err
    collected = ([err] if err is not None else []) + [e for e in args if e is not None]
    if collected:
        return append(ErrorList(), *collected)
    return None


def wrap(err: Optional[BaseException], name: str) -> Optional[BaseException]:
    """Record that ``err`` happened inside element ``name``."""
    return wrap_index(err, name, -1)


def wrap_index(err: Optional[BaseException], name: str, index: int) -> Optional[BaseException]:
    """Record that ``err`` happened inside the ``index``-th ``name`` element."""
    if err is None:
        return None
    if isinstance(err, SpecError):
        err.target.append(Level(name, index))
        return err
    if isinstance(err, ErrorList):
        err.errors = [wrap_index(e, name, index) for e in err.errors]
        return err
    return SpecError(err, [Level(name, index)])


def wrap_path(err: Optional[BaseException], name: str, path: str) -> Optional[BaseException]:
    """Record the element ``name`` and the part ``path`` where ``err`` happened."""
    if err is None:
        return None
    if isinstance(err, SpecError):
        err.path = path
        err.target.append(Level(name, -1))
        return err
    if isinstance(err, ErrorList):
        err.errors = [wrap_path(e, name, path) for e in err.errors]
        return err
    return SpecError(err, [Level(name, -1)], path)