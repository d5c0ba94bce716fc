"""
The slate evaluation engine: evaluates AST nodes against a Scope.
"""

import asyncio
import inspect
import logging
from typing import Any, Dict, List, Optional

from slate.slate_datatypes import (
    Argument, Bullet, FieldAccess, FunctionCall, IdentifierRef, InlineExpr,
    NameRef, NumberLiteral, StringLiteral, Text, Undefined, EMPTY_ARGUMENT,
)

logger = logging.getLogger(__name__)


class Evaluator:
    """Evaluates AST nodes. Function calls are dispatched through a registry."""

    def __init__(self, registry=None):
        self._registry = registry

    @property
    def registry(self):
        if self._registry is None:
            from slate.slate_runtime import FUNCTIONS
            self._registry = FUNCTIONS
        return self._registry

    async def eval(self, node, scope) -> Any:
        match node:
            case Text(value=value) | StringLiteral(value=value) | NumberLiteral(value=value):
                return value
            case Undefined():
                return None
            case NameRef(name=name):
                target = scope.lookup(name)
                if target is None:
                    return None
                return await target.value_for(scope)
            case IdentifierRef(id=node_id):
                return scope.transcluded_scopes.get(node_id)
            case FieldAccess(obj=obj, field=fld):
                target = await self.eval_reference(obj, scope)
                key = await self.eval(fld, scope)
                return await self.call('Get', [target, key], {}, scope)
            case FunctionCall(name=name, args=args):
                return await self._eval_call(name, args, scope)
            case Argument(value=value):
                return await self.eval(value, scope)
            case InlineExpr(expr=expr):
                return await self.eval(expr, scope)
            case Bullet(parts=parts):
                return list(await asyncio.gather(*(self.eval(p, scope) for p in parts)))
            case _:
                raise TypeError(f"Cannot evaluate {node!r}")

    async def eval_reference(self, node, scope):
        """Evaluates the object side of a field access, keeping scopes as scopes."""
        match node:
            case NameRef(name=name):
                return scope.lookup(name)
            case IdentifierRef(id=node_id):
                return scope.transcluded_scopes.get(node_id)
            case FieldAccess(obj=obj, field=StringLiteral(value=key)):
                parent = await self.eval_reference(obj, scope)
                child = parent.get_child_scope(key) if hasattr(parent, 'get_child_scope') else None
                if child is not None:
                    return child
                return await self.call('Get', [parent, key], {}, scope)
            case _:
                return await self.eval(node, scope)

    async def _eval_call(self, name: str, args, scope):
        values = await asyncio.gather(*(self.eval(arg, scope) for arg in args))
        positional: List[Any] = []
        named: Dict[str, Any] = {}
        for arg, value in zip(args, values):
            if arg.name is None:
                positional.append(value)
            elif isinstance(arg.value, Undefined):
                named[arg.name] = EMPTY_ARGUMENT
            else:
                named[arg.name] = value
        return await self.call(name, positional, named, scope)

    async def call(self, name: str, positional: List[Any], named: Dict[str, Any], scope) -> Optional[Any]:
        fn = self.registry.get(name)
        if fn is None:
            logger.debug("Unknown function %s", name)
            return None
        try:
            result = fn(positional, named, scope)
            if inspect.isawaitable(result):
                result = await result
            return result
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.warning("Function %s failed in scope %s", name, getattr(scope, 'id', None), exc_info=True)
            return None


_default_evaluator: Optional[Evaluator] = None


def get_default_evaluator() -> Evaluator:
    global _default_evaluator
    if _default_evaluator is None:
        _default_evaluator = Evaluator()
    return _default_evaluator
