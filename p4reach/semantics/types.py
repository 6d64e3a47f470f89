"""
Resolved types of the value domain: bool, string and struct records.

Named types (struct names, typedefs) are resolved by the environment to one
of these; every expression and variable carries exactly one of them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Union


@dataclass(frozen=True)
class BoolType:
    def __str__(self) -> str:
        return "bool"


@dataclass(frozen=True)
class StringType:
    def __str__(self) -> str:
        return "string"


BOOL = BoolType()
STRING = StringType()


@dataclass(eq=False)
class StructType:
    """
    A struct record type.

    ``name`` is None for the anonymous type of a struct literal typed without
    context. Fields are ordered; they are filled once during elaboration of
    the declaring struct and never changed afterwards.
    """
    name: Optional[str]
    fields: Dict[str, "Type"] = field(default_factory=dict)

    def field_type(self, name: str) -> Optional["Type"]:
        return self.fields.get(name)

    def __str__(self) -> str:
        if self.name is not None:
            return self.name
        inner = "; ".join(f"{t} {n}" for n, t in self.fields.items())
        return "struct { " + inner + " }"

    def __repr__(self) -> str:
        return f"StructType({self.name!r})"


Type = Union[BoolType, StringType, StructType]


def types_match(a, b) -> bool:
    """
    Exact type equality.

    Named structs are nominal; an anonymous struct matches another struct
    when field names, order and types all agree.
    """
    if isinstance(a, StructType) and isinstance(b, StructType):
        if a is b:
            return True
        if a.name is not None and b.name is not None:
            return a.name == b.name
        if list(a.fields) != list(b.fields):
            return False
        return all(types_match(a.fields[n], b.fields[n]) for n in a.fields)
    return a == b

