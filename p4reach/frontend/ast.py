"""
Abstract syntax tree for P4-style packet-processing programs.

The tree is the contract between the (external) parser and the verifier:
a program is an ordered sequence of declarations, each control carries
its parameters, local declarations and one apply body.

Nodes are owned recursive variants (plain dataclasses); field-access
chains and struct literals nest by value, so no arena or back-pointers
are needed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple, Union


@dataclass(frozen=True)
class SourceLocation:
    """Position of a node in the original source text."""
    file: str = "<input>"
    line: int = 0
    column: int = 0

    def __str__(self) -> str:
        return f"{self.file}:{self.line}:{self.column}"


class Direction(Enum):
    """Parameter direction tag."""
    IN = "in"
    OUT = "out"
    INOUT = "inout"
    NONE = ""         # directionless (action data supplied by the control plane)


# ============================================================================
# TYPE REFERENCES
# ============================================================================

@dataclass
class BoolTypeRef:
    location: Optional[SourceLocation] = None


@dataclass
class StringTypeRef:
    location: Optional[SourceLocation] = None


@dataclass
class NamedTypeRef:
    """Reference to a struct or typedef by name."""
    name: str
    location: Optional[SourceLocation] = None


TypeRef = Union[BoolTypeRef, StringTypeRef, NamedTypeRef]


# ============================================================================
# EXPRESSIONS
# ============================================================================

@dataclass
class BoolLiteral:
    value: bool
    location: Optional[SourceLocation] = None


@dataclass
class StringLiteral:
    value: str
    location: Optional[SourceLocation] = None


@dataclass
class VarRef:
    name: str
    location: Optional[SourceLocation] = None


@dataclass
class Paren:
    expr: "Expression"
    location: Optional[SourceLocation] = None


@dataclass
class FieldAccess:
    target: "Expression"
    field: str
    location: Optional[SourceLocation] = None


@dataclass
class StructLiteral:
    """``{ a = e1, b = e2 }`` -- ordered name=value pairs."""
    fields: List[Tuple[str, "Expression"]]
    location: Optional[SourceLocation] = None


@dataclass
class Not:
    operand: "Expression"
    location: Optional[SourceLocation] = None


@dataclass
class And:
    left: "Expression"
    right: "Expression"
    location: Optional[SourceLocation] = None


@dataclass
class Or:
    left: "Expression"
    right: "Expression"
    location: Optional[SourceLocation] = None


@dataclass
class Equal:
    left: "Expression"
    right: "Expression"
    location: Optional[SourceLocation] = None


@dataclass
class NotEqual:
    left: "Expression"
    right: "Expression"
    location: Optional[SourceLocation] = None


@dataclass
class Argument:
    """
    A call argument.

    ``name`` is set for named arguments (``f(x = e)``); ``value`` is None for
    the don't-care argument ``_``.
    """
    value: Optional["Expression"]
    name: Optional[str] = None
    location: Optional[SourceLocation] = None

    @property
    def is_dont_care(self) -> bool:
        return self.value is None


@dataclass
class Call:
    callee: "Expression"
    args: List[Argument] = field(default_factory=list)
    location: Optional[SourceLocation] = None


Expression = Union[
    BoolLiteral, StringLiteral, VarRef, Paren, FieldAccess, StructLiteral,
    Not, And, Or, Equal, NotEqual, Call,
]


# ============================================================================
# STATEMENTS
# ============================================================================

@dataclass
class BlockStatement:
    statements: List["Statement"] = field(default_factory=list)
    location: Optional[SourceLocation] = None


@dataclass
class IfStatement:
    condition: Expression
    then_block: BlockStatement
    else_block: Optional[BlockStatement] = None
    location: Optional[SourceLocation] = None


@dataclass
class Assignment:
    lvalue: Expression
    value: Expression
    location: Optional[SourceLocation] = None


@dataclass
class CallStatement:
    call: Call
    location: Optional[SourceLocation] = None


# ============================================================================
# DECLARATIONS
# ============================================================================

@dataclass
class StructField:
    type: TypeRef
    name: str
    location: Optional[SourceLocation] = None


@dataclass
class StructDeclaration:
    name: str
    fields: List[StructField] = field(default_factory=list)
    location: Optional[SourceLocation] = None


@dataclass
class TypedefDeclaration:
    type: TypeRef
    name: str
    location: Optional[SourceLocation] = None


@dataclass
class Parameter:
    direction: Direction
    type: TypeRef
    name: str
    location: Optional[SourceLocation] = None


@dataclass
class VariableDeclaration:
    type: TypeRef
    name: str
    initializer: Optional[Expression] = None
    location: Optional[SourceLocation] = None


@dataclass
class ConstantDeclaration:
    type: TypeRef
    name: str
    value: Expression
    location: Optional[SourceLocation] = None


@dataclass
class Instantiation:
    """``TypeName(args) name;`` -- instance of a control or extern."""
    type_name: str
    name: str
    args: List[Argument] = field(default_factory=list)
    location: Optional[SourceLocation] = None


@dataclass
class ActionDeclaration:
    name: str
    params: List[Parameter] = field(default_factory=list)
    body: BlockStatement = field(default_factory=BlockStatement)
    location: Optional[SourceLocation] = None


@dataclass
class KeyElement:
    """A table key; the match kind is recorded but not modeled."""
    expr: Expression
    match_kind: str = "exact"
    location: Optional[SourceLocation] = None


@dataclass
class ActionRef:
    """An entry of a table's action list, optionally with bound arguments."""
    name: str
    args: List[Argument] = field(default_factory=list)
    location: Optional[SourceLocation] = None


@dataclass
class TableDeclaration:
    name: str
    keys: List[KeyElement] = field(default_factory=list)
    actions: List[ActionRef] = field(default_factory=list)
    default_action: Optional[ActionRef] = None
    location: Optional[SourceLocation] = None


@dataclass
class ControlDeclaration:
    name: str
    params: List[Parameter] = field(default_factory=list)
    locals: List["LocalDeclaration"] = field(default_factory=list)
    body: BlockStatement = field(default_factory=BlockStatement)
    location: Optional[SourceLocation] = None


LocalDeclaration = Union[
    VariableDeclaration, Instantiation, ConstantDeclaration,
    ActionDeclaration, TableDeclaration,
]

Statement = Union[
    BlockStatement, IfStatement, Assignment, CallStatement,
    VariableDeclaration, ConstantDeclaration,
]

Declaration = Union[
    StructDeclaration, TypedefDeclaration, ControlDeclaration,
    ConstantDeclaration, Instantiation,
]


@dataclass
class Program:
    declarations: List[Declaration] = field(default_factory=list)
    source: str = "<input>"

    @property
    def controls(self) -> List[ControlDeclaration]:
        return [d for d in self.declarations if isinstance(d, ControlDeclaration)]


def describe(node) -> str:
    """Short human-readable rendering of an expression (for messages and witnesses)."""
    if isinstance(node, BoolLiteral):
        return "true" if node.value else "false"
    if isinstance(node, StringLiteral):
        return f'"{node.value}"'
    if isinstance(node, VarRef):
        return node.name
    if isinstance(node, Paren):
        return f"({describe(node.expr)})"
    if isinstance(node, FieldAccess):
        return f"{describe(node.target)}.{node.field}"
    if isinstance(node, StructLiteral):
        inner = ", ".join(f"{n} = {describe(v)}" for n, v in node.fields)
        return "{ " + inner + " }"
    if isinstance(node, Not):
        return f"!{describe(node.operand)}"
    if isinstance(node, And):
        return f"{describe(node.left)} && {describe(node.right)}"
    if isinstance(node, Or):
        return f"{describe(node.left)} || {describe(node.right)}"
    if isinstance(node, Equal):
        return f"{describe(node.left)} == {describe(node.right)}"
    if isinstance(node, NotEqual):
        return f"{describe(node.left)} != {describe(node.right)}"
    if isinstance(node, Call):
        args = ", ".join("_" if a.is_dont_care else describe(a.value) for a in node.args)
        return f"{describe(node.callee)}({args})"
    return type(node).__name__
