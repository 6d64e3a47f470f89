"""
Symbol/Type environment.

Lexically nested scopes (block -> action -> control -> global) mapping names
to bindings, plus expression typing against the resolved value domain.

The global scope is built once per run by ``build_global_environment`` and
then frozen; per-control analyses only ever create child scopes, so the
frozen global environment can be shared read-only by parallel tasks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

from ..frontend import ast
from ..frontend.ast import Direction, SourceLocation
from .errors import (
    AnalysisError,
    DuplicateName,
    TypeMismatch,
    UnknownField,
    UnknownIdentifier,
    UnsupportedConstruct,
)
from .types import BOOL, STRING, BoolType, StringType, StructType, Type, types_match

logger = logging.getLogger(__name__)


# ============================================================================
# BINDINGS
# ============================================================================

@dataclass(eq=False)
class Variable:
    """
    A storage location: control parameter, local variable or the formal
    parameter of one inlined action/control body.

    Identity matters: two inlinings of the same action get distinct
    Variables even though they share a name.
    """
    uid: int
    name: str
    type: Type
    kind: str = "local"                  # 'local', 'param'
    direction: Direction = Direction.NONE
    read_only: bool = False
    display: str = ""                    # name used in witnesses

    def __post_init__(self):
        if not self.display:
            self.display = self.name

    def __repr__(self) -> str:
        return f"Variable({self.display}#{self.uid}: {self.type})"


@dataclass(eq=False)
class TypeBinding:
    """A struct or typedef name."""
    name: str
    type: Optional[Type]
    decl: Union[ast.StructDeclaration, ast.TypedefDeclaration]


@dataclass(eq=False)
class ConstantBinding:
    decl: ast.ConstantDeclaration
    type: Optional[Type] = None


@dataclass(eq=False)
class ControlBinding:
    decl: ast.ControlDeclaration
    scope: "Environment"


@dataclass(eq=False)
class ActionBinding:
    decl: ast.ActionDeclaration
    scope: "Environment"
    qualified_name: str


@dataclass(eq=False)
class TableBinding:
    decl: ast.TableDeclaration
    scope: "Environment"
    qualified_name: str


@dataclass(eq=False)
class InstanceBinding:
    decl: ast.Instantiation
    control: Optional[ControlBinding] = None


Binding = Union[
    Variable, TypeBinding, ConstantBinding, ControlBinding,
    ActionBinding, TableBinding, InstanceBinding,
]


def binding_kind(binding: Binding) -> str:
    return {
        Variable: "variable",
        TypeBinding: "type",
        ConstantBinding: "constant",
        ControlBinding: "control",
        ActionBinding: "action",
        TableBinding: "table",
        InstanceBinding: "instance",
    }.get(type(binding), "declaration")


# ============================================================================
# ENVIRONMENT
# ============================================================================

class Environment:
    """One lexical scope with a link to its enclosing scope."""

    def __init__(self, parent: Optional["Environment"] = None, kind: str = "global", name: str = ""):
        self.parent = parent
        self.kind = kind
        self.name = name
        self._symbols: Dict[str, Binding] = {}
        self._frozen = False
        # Struct/typedef names whose elaboration failed -> reason
        self._invalid_types: Dict[str, AnalysisError] = {}

    # -- scope management ---------------------------------------------------

    def child(self, kind: str, name: str = "") -> "Environment":
        return Environment(parent=self, kind=kind, name=name)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def declare(self, name: str, binding: Binding, location: Optional[SourceLocation] = None) -> None:
        """Register ``name`` in this scope; raises DuplicateName on collision."""
        if self._frozen:
            raise RuntimeError(f"cannot declare '{name}' in a frozen {self.kind} scope")
        if name in self._symbols:
            previous = binding_kind(self._symbols[name])
            raise DuplicateName(f"'{name}' is already declared in this scope (as {previous})", location)
        self._symbols[name] = binding

    def lookup_local(self, name: str) -> Optional[Binding]:
        return self._symbols.get(name)

    def lookup(self, name: str) -> Optional[Binding]:
        scope: Optional[Environment] = self
        while scope is not None:
            found = scope._symbols.get(name)
            if found is not None:
                return found
            scope = scope.parent
        return None

    def resolve(self, name: str, location: Optional[SourceLocation] = None) -> Binding:
        """Resolve ``name`` through the scope chain; raises UnknownIdentifier."""
        found = self.lookup(name)
        if found is None:
            raise UnknownIdentifier(f"'{name}' is not declared", location)
        return found

    def root(self) -> "Environment":
        scope = self
        while scope.parent is not None:
            scope = scope.parent
        return scope

    def qualified(self, name: str) -> str:
        """``Control.action``-style name, for guard and call-graph naming."""
        parts = [name]
        scope: Optional[Environment] = self
        while scope is not None:
            if scope.kind in ("control", "action") and scope.name:
                parts.append(scope.name)
            scope = scope.parent
        return ".".join(reversed(parts))

    def visible_variables(self) -> List[Tuple[str, Variable]]:
        """Variables in scope here, innermost shadowing outer, outermost first."""
        seen: Dict[str, Variable] = {}
        chain: List[Environment] = []
        scope: Optional[Environment] = self
        while scope is not None:
            chain.append(scope)
            scope = scope.parent
        for scope in reversed(chain):
            for name, binding in scope._symbols.items():
                if isinstance(binding, Variable):
                    seen.pop(name, None)
                    seen[name] = binding
        return list(seen.items())

    # -- types ----------------------------------------------------------------

    def resolve_type(self, ref: ast.TypeRef) -> Type:
        if isinstance(ref, ast.BoolTypeRef):
            return BOOL
        if isinstance(ref, ast.StringTypeRef):
            return STRING
        if isinstance(ref, ast.NamedTypeRef):
            binding = self.resolve(ref.name, ref.location)
            if not isinstance(binding, TypeBinding):
                raise TypeMismatch(
                    f"'{ref.name}' is a {binding_kind(binding)}, not a type", ref.location
                )
            invalid_types = self.root()._invalid_types
            invalid = invalid_types.get(ref.name)
            if invalid is None and isinstance(binding.type, StructType):
                invalid = invalid_types.get(binding.type.name)
            if invalid is not None:
                raise type(invalid)(f"type '{ref.name}' is invalid: {invalid.message}", ref.location)
            if binding.type is None:
                raise UnsupportedConstruct(f"type '{ref.name}' is used before it is elaborated", ref.location)
            return binding.type
        raise UnsupportedConstruct(f"unrecognized type reference {type(ref).__name__}", None)

    def type_of(self, expr: ast.Expression, expected: Optional[Type] = None) -> Type:
        """
        Type an expression.

        ``expected`` gives context for struct literals; every other
        expression is typed bottom-up and the caller compares the result.
        """
        if isinstance(expr, ast.BoolLiteral):
            return BOOL
        if isinstance(expr, ast.StringLiteral):
            return STRING
        if isinstance(expr, ast.Paren):
            return self.type_of(expr.expr, expected)
        if isinstance(expr, ast.VarRef):
            binding = self.resolve(expr.name, expr.location)
            if isinstance(binding, Variable):
                return binding.type
            if isinstance(binding, ConstantBinding) and binding.type is not None:
                return binding.type
            raise TypeMismatch(
                f"'{expr.name}' is a {binding_kind(binding)}, not a value", expr.location
            )
        if isinstance(expr, ast.FieldAccess):
            target_type = self.type_of(expr.target)
            if not isinstance(target_type, StructType):
                raise TypeMismatch(
                    f"field access '.{expr.field}' on non-struct value of type {target_type}",
                    expr.location,
                )
            field_type = target_type.field_type(expr.field)
            if field_type is None:
                raise UnknownField(f"struct {target_type} has no field '{expr.field}'", expr.location)
            return field_type
        if isinstance(expr, ast.StructLiteral):
            return self._type_struct_literal(expr, expected)
        if isinstance(expr, ast.Not):
            self._expect_bool(expr.operand, "!")
            return BOOL
        if isinstance(expr, (ast.And, ast.Or)):
            op = "&&" if isinstance(expr, ast.And) else "||"
            self._expect_bool(expr.left, op)
            self._expect_bool(expr.right, op)
            return BOOL
        if isinstance(expr, (ast.Equal, ast.NotEqual)):
            op = "==" if isinstance(expr, ast.Equal) else "!="
            left, right = expr.left, expr.right
            if _is_struct_literal(left) and not _is_struct_literal(right):
                left, right = right, left
            left_type = self.type_of(left)
            right_type = self.type_of(right, left_type)
            if not types_match(left_type, right_type):
                raise TypeMismatch(
                    f"operands of '{op}' have different types ({left_type} vs {right_type})",
                    expr.location,
                )
            return BOOL
        if isinstance(expr, ast.Call):
            raise UnsupportedConstruct(
                f"call '{ast.describe(expr)}' in value position has no modeled result",
                expr.location,
            )
        raise UnsupportedConstruct(f"unrecognized expression {type(expr).__name__}", None)

    def _expect_bool(self, operand: ast.Expression, op: str) -> None:
        ty = self.type_of(operand)
        if not isinstance(ty, BoolType):
            raise TypeMismatch(
                f"operator '{op}' requires bool operands, got {ty}", getattr(operand, "location", None)
            )

    def _type_struct_literal(self, expr: ast.StructLiteral, expected: Optional[Type]) -> Type:
        names = [n for n, _ in expr.fields]
        if len(set(names)) != len(names):
            raise DuplicateName("struct literal repeats a field name", expr.location)
        if isinstance(expected, StructType):
            if names != list(expected.fields):
                raise TypeMismatch(
                    f"struct literal fields {names} do not match {expected} fields {list(expected.fields)}",
                    expr.location,
                )
            for name, value in expr.fields:
                want = expected.fields[name]
                got = self.type_of(value, want)
                if not types_match(want, got):
                    raise TypeMismatch(
                        f"field '{name}' of {expected} expects {want}, got {got}",
                        getattr(value, "location", None) or expr.location,
                    )
            return expected
        if expected is not None:
            raise TypeMismatch(f"struct literal where {expected} is expected", expr.location)
        return StructType(None, {name: self.type_of(value) for name, value in expr.fields})


def _is_struct_literal(expr) -> bool:
    while isinstance(expr, ast.Paren):
        expr = expr.expr
    return isinstance(expr, ast.StructLiteral)


def check_assignable(env: Environment, target_type: Type, value: ast.Expression, location) -> None:
    """Raise TypeMismatch unless ``value`` has exactly ``target_type``."""
    value_type = env.type_of(value, target_type)
    if not types_match(target_type, value_type):
        raise TypeMismatch(f"cannot assign {value_type} to {target_type}", location)


# ============================================================================
# GLOBAL ELABORATION
# ============================================================================

@dataclass
class GlobalEnvironment:
    """Result of elaborating top-level declarations."""
    env: Environment
    errors: List[AnalysisError] = field(default_factory=list)


def build_global_environment(program: ast.Program) -> GlobalEnvironment:
    """
    Declare all top-level names, then elaborate their bodies.

    Names are registered before bodies so that struct fields may refer to
    structs declared later; recursive structs are rejected. All errors are
    collected, and the returned environment is frozen.
    """
    env = Environment(kind="global")
    errors: List[AnalysisError] = []

    # Pass 1: names
    for decl in program.declarations:
        try:
            if isinstance(decl, ast.StructDeclaration):
                env.declare(decl.name, TypeBinding(decl.name, StructType(decl.name), decl), decl.location)
            elif isinstance(decl, ast.TypedefDeclaration):
                env.declare(decl.name, TypeBinding(decl.name, None, decl), decl.location)
            elif isinstance(decl, ast.ControlDeclaration):
                env.declare(decl.name, ControlBinding(decl, env), decl.location)
            elif isinstance(decl, ast.ConstantDeclaration):
                env.declare(decl.name, ConstantBinding(decl), decl.location)
            elif isinstance(decl, ast.Instantiation):
                env.declare(decl.name, InstanceBinding(decl), decl.location)
            else:
                raise UnsupportedConstruct(
                    f"top-level {type(decl).__name__} is not supported", getattr(decl, "location", None)
                )
        except AnalysisError as e:
            errors.append(e)

    # Pass 2: typedefs (possibly chained), then struct fields
    for decl in program.declarations:
        if isinstance(decl, ast.TypedefDeclaration):
            _elaborate_typedef(env, decl, [], errors)
    for decl in program.declarations:
        if isinstance(decl, ast.StructDeclaration) and env.lookup_local(decl.name).decl is decl:
            _elaborate_struct(env, decl, errors)
    _reject_recursive_structs(env, program, errors)

    # Pass 3: constants and instances
    for decl in program.declarations:
        if isinstance(decl, ast.ConstantDeclaration):
            binding = env.lookup_local(decl.name)
            if isinstance(binding, ConstantBinding) and binding.decl is decl:
                try:
                    declared = env.resolve_type(decl.type)
                    check_assignable(env, declared, decl.value, decl.location)
                    binding.type = declared
                except AnalysisError as e:
                    errors.append(e)
        elif isinstance(decl, ast.Instantiation):
            binding = env.lookup_local(decl.name)
            target = env.lookup(decl.type_name)
            if isinstance(binding, InstanceBinding) and isinstance(target, ControlBinding):
                binding.control = target
            elif target is None:
                errors.append(UnknownIdentifier(f"'{decl.type_name}' is not declared", decl.location))
            else:
                logger.debug("top-level instance %s of %s is not modeled", decl.name, decl.type_name)

    env.freeze()
    logger.debug("global environment: %d names, %d errors", len(env._symbols), len(errors))
    return GlobalEnvironment(env=env, errors=errors)


def _elaborate_typedef(env: Environment, decl: ast.TypedefDeclaration, stack: List[str], errors) -> None:
    binding = env.lookup_local(decl.name)
    if not isinstance(binding, TypeBinding) or binding.decl is not decl or binding.type is not None:
        return
    if decl.name in env._invalid_types:
        return
    if decl.name in stack:
        err = UnsupportedConstruct(f"typedef cycle through '{decl.name}'", decl.location)
        env._invalid_types[decl.name] = err
        errors.append(err)
        return
    ref = decl.type
    if isinstance(ref, ast.NamedTypeRef):
        target = env.lookup(ref.name)
        if isinstance(target, TypeBinding) and isinstance(target.decl, ast.TypedefDeclaration):
            _elaborate_typedef(env, target.decl, stack + [decl.name], errors)
            if ref.name in env._invalid_types:
                env._invalid_types[decl.name] = env._invalid_types[ref.name]
                return
    try:
        binding.type = env.resolve_type(ref)
    except AnalysisError as e:
        env._invalid_types[decl.name] = e
        errors.append(e)


def _elaborate_struct(env: Environment, decl: ast.StructDeclaration, errors) -> None:
    binding = env.lookup_local(decl.name)
    struct_type = binding.type
    for fdecl in decl.fields:
        try:
            if fdecl.name in struct_type.fields:
                raise DuplicateName(f"struct {decl.name} declares field '{fdecl.name}' twice", fdecl.location)
            struct_type.fields[fdecl.name] = env.resolve_type(fdecl.type)
        except AnalysisError as e:
            env._invalid_types.setdefault(decl.name, e)
            errors.append(e)


def _reject_recursive_structs(env: Environment, program: ast.Program, errors) -> None:
    """Depth-first search over struct field edges; every struct on a cycle is invalid."""
    structs = {
        d.name: env.lookup_local(d.name).type
        for d in program.declarations
        if isinstance(d, ast.StructDeclaration) and env.lookup_local(d.name).decl is d
    }
    locations = {d.name: d.location for d in program.declarations if isinstance(d, ast.StructDeclaration)}
    state: Dict[str, int] = {}   # 1 = on stack, 2 = done
    on_cycle: List[str] = []

    def visit(name: str, path: List[str]) -> None:
        state[name] = 1
        for fty in structs[name].fields.values():
            if isinstance(fty, StructType) and fty.name in structs:
                if state.get(fty.name) == 1:
                    on_cycle.extend(path[path.index(fty.name):] if fty.name in path else [fty.name])
                elif fty.name not in state:
                    visit(fty.name, path + [fty.name])
        state[name] = 2

    for name in structs:
        if name not in state:
            visit(name, [name])

    for name in dict.fromkeys(on_cycle):
        err = UnsupportedConstruct(f"recursive struct type '{name}'", locations.get(name))
        env._invalid_types[name] = err
        structs[name].fields.clear()
        errors.append(err)

    changed = True
    while changed:
        changed = False
        for name, struct_type in structs.items():
            if name in env._invalid_types:
                continue
            for fty in struct_type.fields.values():
                if isinstance(fty, StructType) and fty.name in env._invalid_types:
                    env._invalid_types[name] = env._invalid_types[fty.name]
                    changed = True
                    break


__all__ = [
    "Variable",
    "TypeBinding",
    "ConstantBinding",
    "ControlBinding",
    "ActionBinding",
    "TableBinding",
    "InstanceBinding",
    "Binding",
    "binding_kind",
    "Environment",
    "GlobalEnvironment",
    "build_global_environment",
    "check_assignable",
]
