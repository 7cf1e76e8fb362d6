"""
Typed tree for the free-form "custom" parameters attached to scans.

Scanners accept nested parameters such as ``ruleset_options.exclude``. The
tree stores every value as a node tagged scalar, list or map so that dotted
assignments never have to guess at the shape of what is already there.
"""

from typing import Any, Dict, List, Optional, Union

from core.errors import InvalidParams

SCALAR = "scalar"
LIST = "list"
MAP = "map"

# The server only understands up to two levels of nesting below the root.
MAX_PATH_DEPTH = 3

Scalar = Union[str, int, float, bool, None]


class ParamNode:
    """A scalar, a list of nodes or a map of named nodes."""

    __slots__ = ("kind", "value")

    def __init__(self, kind: str, value: Any):
        if kind not in (SCALAR, LIST, MAP):
            raise ValueError(f"unknown param node kind: {kind}")
        self.kind = kind
        self.value = value

    @classmethod
    def scalar(cls, value: Scalar) -> "ParamNode":
        return cls(SCALAR, value)

    @classmethod
    def from_value(cls, value: Any) -> "ParamNode":
        if isinstance(value, dict):
            return ParamTree({str(k): cls.from_value(v) for k, v in value.items()})
        if isinstance(value, (list, tuple)):
            return cls(LIST, [cls.from_value(v) for v in value])
        if value is None or isinstance(value, (str, int, float, bool)):
            return cls.scalar(value)
        raise InvalidParams(f"unsupported parameter value type: {type(value).__name__}")

    def to_value(self) -> Any:
        if self.kind == SCALAR:
            return self.value
        if self.kind == LIST:
            return [item.to_value() for item in self.value]
        return {key: node.to_value() for key, node in self.value.items()}

    def __eq__(self, other):
        if not isinstance(other, ParamNode):
            return NotImplemented
        return self.kind == other.kind and self.value == other.value

    def __repr__(self):
        return f"ParamNode({self.kind}, {self.to_value()!r})"


class ParamTree(ParamNode):
    """Map node used as the root of a scan's custom parameters."""

    __slots__ = ()

    def __init__(self, children: Optional[Dict[str, ParamNode]] = None):
        super().__init__(MAP, dict(children or {}))

    @classmethod
    def from_value(cls, value: Any) -> "ParamTree":
        if value is None:
            return cls()
        if not isinstance(value, dict):
            raise InvalidParams(f"custom params must be an object, got {type(value).__name__}")
        return cls({str(k): ParamNode.from_value(v) for k, v in value.items()})

    def __contains__(self, key: str) -> bool:
        return key in self.value

    def __len__(self) -> int:
        return len(self.value)

    def keys(self) -> List[str]:
        return list(self.value.keys())

    def get(self, key: str) -> Optional[ParamNode]:
        return self.value.get(key)

    def has_path(self, path: str) -> bool:
        node: ParamNode = self
        for part in path.split("."):
            if node.kind != MAP or part not in node.value:
                return False
            node = node.value[part]
        return True

    def set_path(self, path: str, value: Any) -> None:
        """
        Assign ``value`` at a dot-delimited path, creating maps on the way.

        A top-level key is overwritten. A nested leaf that already exists is
        rejected since repeated nested keys are almost always a typo.
        """
        parts = path.split(".")
        if not path or any(not part for part in parts):
            raise InvalidParams(f"invalid params key [{path}]")
        if len(parts) > MAX_PATH_DEPTH:
            raise InvalidParams(f"unsupported key [{path}], key can only contain one or two dots")

        node: ParamNode = self
        for part in parts[:-1]:
            child = node.value.get(part)
            if child is None:
                child = ParamTree()
                node.value[part] = child
            elif child.kind != MAP:
                raise InvalidParams(f"params key [{path}] conflicts with the {child.kind} value at [{part}]")
            node = child

        leaf = parts[-1]
        if len(parts) > 1 and leaf in node.value:
            raise InvalidParams(f"params keys are not unique [{path}]")
        node.value[leaf] = value if isinstance(value, ParamNode) else ParamNode.from_value(value)

    def merge_missing(self, other: "ParamTree") -> None:
        """Copy top-level entries of ``other`` that this tree does not define."""
        for key, node in other.value.items():
            if key not in self.value:
                self.value[key] = node


def parse_param_value(param_type: str, raw: str) -> Scalar:
    """Convert a command-line string to the type a scanner parameter declares."""
    try:
        if param_type == "string_slice":
            return raw.replace(";", ",")
        if param_type == "string":
            return raw
        if param_type == "int":
            return int(raw)
        if param_type == "uint":
            value = int(raw)
            if value < 0:
                raise ValueError("value must not be negative")
            return value
        if param_type == "bool":
            return _parse_bool(raw)
    except ValueError as e:
        raise InvalidParams(f"invalid {param_type} value [{raw}]: {e}") from e
    raise InvalidParams(f"unknown scanner custom param type: {param_type}")


def _parse_bool(raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in ("1", "t", "true"):
        return True
    if lowered in ("0", "f", "false"):
        return False
    raise ValueError(f"not a boolean: {raw}")
