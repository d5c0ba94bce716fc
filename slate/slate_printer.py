"""
A printer for slate ASTs and evaluated values.
"""
import collections.abc
import math

from slate.slate_datatypes import (
    Argument, Bullet, FieldAccess, FunctionCall, IdentifierRef, InlineExpr,
    NameRef, NumberLiteral, StringLiteral, Text, Undefined, HAS_MISSING_ARGUMENTS,
)


class Printer:
    """Formats slate AST nodes back into source text the parser accepts."""

    def __init__(self, sort_named_args=False):
        self.sort_named_args = sort_named_args
        self._handlers = self._create_handlers()

    def pformat(self, obj):
        """Public entry point to format an AST node."""
        handler = self._handlers.get(type(obj))
        if handler is None:
            raise TypeError(f"Cannot print {type(obj).__name__}")
        return handler(obj)

    def _create_handlers(self):
        return {
            Bullet: self._pformat_bullet,
            Text: self._pformat_text,
            InlineExpr: self._pformat_inline_expr,
            StringLiteral: self._pformat_string,
            NumberLiteral: self._pformat_number,
            Undefined: self._pformat_undefined,
            IdentifierRef: self._pformat_id_ref,
            NameRef: self._pformat_name_ref,
            FieldAccess: self._pformat_field_access,
            FunctionCall: self._pformat_function_call,
            Argument: self._pformat_argument,
        }

    def _pformat_bullet(self, obj):
        body = ''.join(self.pformat(p) for p in obj.parts)
        if obj.key is None:
            return body
        return f"{obj.key.value}: {body}" if body else f"{obj.key.value}:"

    def _pformat_text(self, obj):
        return obj.value

    def _pformat_inline_expr(self, obj):
        if isinstance(obj.expr, Undefined):
            return "{}"
        return "{" + self.pformat(obj.expr) + "}"

    def _pformat_string(self, obj):
        return f'"{obj.value}"'

    def _pformat_number(self, obj):
        return repr(obj.value)

    def _pformat_undefined(self, obj):
        return ""

    def _pformat_id_ref(self, obj):
        return f"#[{obj.id}]"

    def _pformat_name_ref(self, obj):
        return obj.name

    def _pformat_field_access(self, obj):
        fld = obj.field.value if isinstance(obj.field, StringLiteral) else self.pformat(obj.field)
        return f"{self.pformat(obj.obj)}.{fld}"

    def _pformat_function_call(self, obj):
        args = list(obj.args)
        if self.sort_named_args:
            positional = [a for a in args if a.name is None]
            named = sorted((a for a in args if a.name is not None), key=lambda a: a.name)
            args = positional + named
        return f"{obj.name}({', '.join(self.pformat(a) for a in args)})"

    def _pformat_argument(self, obj):
        if obj.name is None:
            return self.pformat(obj.value)
        if isinstance(obj.value, Undefined):
            return f"{obj.name}:"
        return f"{obj.name}: {self.pformat(obj.value)}"


def canonical_formula(node) -> str:
    """Whitespace- and named-argument-order-insensitive form of a formula."""
    return Printer(sort_named_args=True).pformat(node)


def format_value(value) -> str:
    """Renders an evaluated value for display. Empty for "no value"."""
    if value is None or value is HAS_MISSING_ARGUMENTS:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
        return f"{value:g}"
    if isinstance(value, (int, str)):
        return str(value)
    label = getattr(value, 'label', None)
    if isinstance(label, str):
        return label
    if isinstance(value, collections.abc.Mapping):
        if 'display' in value:
            return str(value['display'])
        if 'value' in value and 'unit' in value:
            return f"{format_value(value['value'])} {value['unit']}"
        return ", ".join(f"{k}: {format_value(v)}" for k, v in value.items())
    if isinstance(value, (list, tuple)):
        return " ".join(s for s in (format_value(v) for v in value) if s)
    return str(value)
