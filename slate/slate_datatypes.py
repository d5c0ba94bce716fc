"""
Defines the core data types for the slate expression language.

This module provides the closed set of AST node kinds produced by the
parser, the typed parse failure, and the small value types that flow
between the scope engine, the function registry, the suggestion engine
and the formula generalizer.

AST nodes are frozen dataclasses: a subtree never changes after it has
been built, edits always go through a fresh parse. Source spans
(``start``/``end``, half-open) are carried on every node but excluded from
equality, so two parses of equivalent text compare equal.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple


# =================================================================
# AST
# =================================================================

@dataclass(frozen=True)
class AstNode:
    """Base class for every AST node kind."""
    start: int = field(default=0, kw_only=True, compare=False)
    end: int = field(default=0, kw_only=True, compare=False)

    def get_referenced_ids(self) -> List[str]:
        return referenced_ids(self)

    def is_constant(self) -> bool:
        return is_constant(self)


@dataclass(frozen=True)
class Text(AstNode):
    """Literal text between inline expressions of a bullet."""
    value: str


@dataclass(frozen=True)
class StringLiteral(AstNode):
    value: str


@dataclass(frozen=True)
class NumberLiteral(AstNode):
    value: float


@dataclass(frozen=True)
class Undefined(AstNode):
    """Explicit "no value here" marker, e.g. the value of ``near:`` in ``Fn(near:)``."""


@dataclass(frozen=True)
class IdentifierRef(AstNode):
    """A ``#[id]`` transclusion token."""
    id: str


@dataclass(frozen=True)
class NameRef(AstNode):
    """A bare name, resolved through the scope chain."""
    name: str


@dataclass(frozen=True)
class FieldAccess(AstNode):
    obj: AstNode
    field: AstNode


@dataclass(frozen=True)
class Argument(AstNode):
    name: Optional[str]
    value: AstNode


@dataclass(frozen=True)
class FunctionCall(AstNode):
    name: str
    args: Tuple[Argument, ...] = ()

    @property
    def named_args(self) -> Dict[str, Argument]:
        return {arg.name: arg for arg in self.args if arg.name is not None}


@dataclass(frozen=True)
class InlineExpr(AstNode):
    """Marks where a ``{...}`` occurs in the bullet text."""
    expr: AstNode


@dataclass(frozen=True)
class Bullet(AstNode):
    """The parse result of one document node's whole text."""
    key: Optional[StringLiteral] = None
    parts: Tuple[AstNode, ...] = ()

    @property
    def key_name(self) -> Optional[str]:
        return self.key.value if self.key is not None else None


def referenced_ids(node: AstNode) -> List[str]:
    """Distinct transcluded node ids in ``node``, in first-occurrence order."""
    seen: Dict[str, None] = {}

    def walk(n):
        match n:
            case IdentifierRef(id=node_id):
                seen.setdefault(node_id, None)
            case FieldAccess(obj=obj, field=fld):
                walk(obj)
                walk(fld)
            case FunctionCall(args=args):
                for arg in args:
                    walk(arg)
            case Argument(value=value):
                walk(value)
            case InlineExpr(expr=expr):
                walk(expr)
            case Bullet(parts=parts):
                for part in parts:
                    walk(part)
            case Text() | StringLiteral() | NumberLiteral() | Undefined() | NameRef():
                pass
            case _:
                raise TypeError(f"Unknown AST node: {n!r}")

    walk(node)
    return list(seen)


def is_constant(node: AstNode) -> bool:
    """True when evaluating ``node`` cannot depend on anything outside it."""
    match node:
        case Text() | StringLiteral() | NumberLiteral() | Undefined():
            return True
        case IdentifierRef() | NameRef():
            return False
        case FieldAccess(obj=obj, field=fld):
            return is_constant(obj) and is_constant(fld)
        case FunctionCall(args=args):
            return all(is_constant(arg) for arg in args)
        case Argument(value=value):
            return is_constant(value)
        case InlineExpr(expr=expr):
            return is_constant(expr)
        case Bullet(parts=parts):
            return all(is_constant(part) for part in parts)
        case _:
            raise TypeError(f"Unknown AST node: {node!r}")


# =================================================================
# Parsing
# =================================================================

@dataclass(frozen=True)
class ParseFailure:
    """Returned (never raised) when source text does not match the grammar."""
    message: str
    source: str
    start_rule: str
    line: Optional[int] = None
    col: Optional[int] = None

    def __bool__(self) -> bool:
        return False


# =================================================================
# Evaluation results
# =================================================================

class _MissingArguments:
    """Sentinel type: the call is not fully specified yet, render nothing."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "HAS_MISSING_ARGUMENTS"

    def __bool__(self):
        return False


HAS_MISSING_ARGUMENTS = _MissingArguments()


class _EmptyArgument:
    """Sentinel type: the value a function receives for ``name:`` written without a value."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "EMPTY_ARGUMENT"

    def __bool__(self):
        return False


EMPTY_ARGUMENT = _EmptyArgument()


@dataclass
class ComputationResult:
    """A side-channel result a function publishes on a scope."""
    name: str
    data: Any


@dataclass
class DataWithProvenance:
    """A typed value together with the scope it was read from."""
    scope: Any
    data: Any


# =================================================================
# Suggestions and generalization
# =================================================================

@dataclass
class Parameter:
    """A typed value found near a scope, used to rank function suggestions.

    ``scope`` is the neighbouring scope where the value was found,
    ``source_scope`` the scope that actually carries the value (they differ
    when the value comes through a transclusion).
    """
    relationship: str  # self | prev | next | parent
    distance: int
    type: str
    expression: str
    scope: Any
    source_scope: Any


@dataclass
class SuggestionArgument:
    label: str
    value: Optional[str] = None


@dataclass
class Suggestion:
    name: str
    arguments: List[SuggestionArgument] = field(default_factory=list)
    rank: Optional[float] = None  # lower is better
    icon: Optional[str] = None

    @property
    def expression(self) -> str:
        args = []
        for arg in self.arguments:
            args.append(f"{arg.label}: {arg.value}" if arg.value is not None else f"{arg.label}:")
        return "{" + f"{self.name}({', '.join(args)})" + "}"


@dataclass
class AnchorArgument:
    name: str
    type: str
    output_position: str  # above | below | child


@dataclass
class Pattern:
    """A formula generalized from one example scope."""
    call: FunctionCall
    anchor_argument: AnchorArgument
    extraction_rule_by_arg_name: Dict[str, Callable[[Any], Optional[str]]]


@dataclass
class Insertion:
    """A formula node created by ``repeat_formula``."""
    parent_id: str
    index: int
    node_id: str
    formula: str
    anchor_id: str
