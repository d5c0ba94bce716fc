"""
Transforms the raw Koine parse tree into the slate AST (slate_datatypes).

Arithmetic is desugared here: ``a + b * c`` becomes
``Plus(a, Multiply(b, c))`` and ``a.b`` becomes a ``FieldAccess`` that the
evaluator routes through the ``Get`` function.
"""

from bisect import bisect_right

from slate.slate_datatypes import (
    Argument, Bullet, FieldAccess, FunctionCall, IdentifierRef, InlineExpr,
    NameRef, NumberLiteral, StringLiteral, Text, Undefined,
)

OPERATOR_FUNCTIONS = {
    '+': 'Plus',
    '-': 'Minus',
    '*': 'Multiply',
    '/': 'Divide',
}


class SlateTransformer:
    def __init__(self, source: str = ""):
        self.source = source
        self._line_starts = [0]
        for i, ch in enumerate(source):
            if ch == '\n':
                self._line_starts.append(i + 1)

    # --- Spans ---

    def _offset(self, node) -> int:
        line = node.get('line'); col = node.get('col')
        if line is None or col is None:
            return 0
        line_idx = min(max(line - 1, 0), len(self._line_starts) - 1)
        return self._line_starts[line_idx] + max(col - 1, 0)

    def _span(self, node) -> dict:
        start = self._offset(node)
        text = node.get('text') or ''
        return {'start': start, 'end': start + len(text)}

    def line_col(self, offset: int) -> tuple[int, int]:
        """1-based line/col for a character offset into the source."""
        idx = bisect_right(self._line_starts, offset) - 1
        return idx + 1, offset - self._line_starts[idx] + 1

    # --- Raw tree helpers ---

    def _children(self, node) -> list:
        """Flattens a node's children, dropping discarded and empty entries."""
        out = []

        def collect(ch):
            if ch is None:
                return
            if isinstance(ch, list):
                for c in ch:
                    collect(c)
                return
            if isinstance(ch, dict):
                if 'tag' not in ch:
                    # Named-children dicts
                    for v in ch.values():
                        collect(v)
                    return
                out.append(ch)

        collect(node.get('children'))
        return out

    @staticmethod
    def _tag(node) -> str:
        tag = node.get('tag') or ''
        return tag.replace('_', '-')

    # --- Transform ---

    def transform(self, node):
        if isinstance(node, list):
            items = [self.transform(n) for n in node]
            return items[0] if len(items) == 1 else items

        if not isinstance(node, dict):
            return node

        if 'tag' not in node:
            return self.transform(self._children(node))

        tag = self._tag(node)
        children = self._children(node)
        span = self._span(node)

        match tag:
            # Bullets
            case 'bullet' | 'property':
                return self._bullet(children, span)
            case 'key-prefix':
                key_node = next((c for c in children if self._tag(c) == 'key'), None)
                if key_node is None:
                    raise ValueError("key-prefix without a key")
                return StringLiteral(key_node['text'].strip(), **self._span(key_node))
            case 'text':
                return Text(node.get('text', ''), **span)
            case 'inline-expression':
                if not children:
                    return InlineExpr(Undefined(**span), **span)
                return InlineExpr(self.transform(children[0]), **span)

            # Arithmetic
            case 'add-expression' | 'mul-expression':
                return self._fold(children)
            case 'access-expression':
                result = self.transform(children[0])
                for fld in children[1:]:
                    name_node = self._children(fld)[0]
                    key = StringLiteral(name_node['text'], **self._span(name_node))
                    result = FieldAccess(result, key, start=result.start, end=key.end)
                return result

            # Calls
            case 'function-call':
                name_node, arg_nodes = children[0], children[1:]
                args = tuple(self.transform(a) for a in arg_nodes)
                return FunctionCall(name_node['text'], args, **span)
            case 'named-argument':
                key_node, value_node = children[0], children[1]
                return Argument(key_node['text'].strip(), self.transform(value_node), **span)
            case 'empty-argument':
                key_node = children[0]
                return Argument(key_node['text'].strip(), Undefined(start=span['end'], end=span['end']), **span)
            case 'positional-argument':
                return Argument(None, self.transform(children[0]), **span)

            # Atoms
            case 'string':
                text = node.get('text', '')
                return StringLiteral(text[1:-1], **span)
            case 'number':
                text = node.get('text', '')
                value = int(text) if '.' not in text else float(text)
                return NumberLiteral(value, **span)
            case 'id-ref':
                id_node = children[0]
                return IdentifierRef(id_node['text'], **span)
            case 'name-ref':
                return NameRef(node.get('text', ''), **span)

            case _:
                # Unnamed single-child wrappers
                if len(children) == 1:
                    return self.transform(children[0])
                raise NotImplementedError(f"No transformer for tag '{tag}'")

    def _bullet(self, children, span) -> Bullet:
        key = None
        parts = []
        for ch in children:
            ctag = self._tag(ch)
            if ctag == 'key-prefix':
                key = self.transform(ch)
                continue
            part = self.transform(ch)
            # Whitespace between inline expressions is not a part
            if isinstance(part, Text) and not part.value.strip():
                continue
            parts.append(part)
        return Bullet(key, tuple(parts), **span)

    def _fold(self, children):
        """Left-folds ``operand (operator operand)*`` into operator calls."""
        result = self.transform(children[0])
        for tail in children[1:]:
            op_node, rhs_node = self._children(tail)
            rhs = self.transform(rhs_node)
            name = OPERATOR_FUNCTIONS[op_node['text']]
            args = (
                Argument(None, result, start=result.start, end=result.end),
                Argument(None, rhs, start=rhs.start, end=rhs.end),
            )
            result = FunctionCall(name, args, start=result.start, end=rhs.end)
        return result
