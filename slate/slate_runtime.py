# slate_runtime.py

import asyncio
import inspect
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional

import pystache

from slate.slate_datatypes import Parameter, Suggestion
from slate.slate_interpreter import Evaluator
from slate.slate_scope import CancellationToken, Scope

logger = logging.getLogger(__name__)

# ===================================================================
# 1. Function definitions and the registry
# ===================================================================

SuggestionFn = Callable[[List[Parameter]], List[Suggestion]]


@dataclass
class FunctionDef:
    """A registered function: ``function(positional, named, scope) -> value``."""
    name: str
    function: Callable[..., Any]
    parameters: Optional[Dict[str, str]] = None   # arg name -> parameter type
    autocomplete: Optional[Suggestion] = None
    summary: Optional[str] = None                 # mustache template
    icon: Optional[str] = None
    suggestions: Optional[SuggestionFn] = None

    def __call__(self, positional, named, scope):
        return self.function(positional, named, scope)

    def suggester(self, fn: SuggestionFn) -> SuggestionFn:
        """Decorator attaching a suggestion generator to this function."""
        self.suggestions = fn
        return fn

    def render_summary(self, value: Any) -> Optional[str]:
        if self.summary is None or value is None:
            return None
        context = value if isinstance(value, dict) else {'value': value}
        return pystache.render(self.summary, context)


class FunctionRegistry:
    def __init__(self):
        self._functions: Dict[str, FunctionDef] = {}

    def register(self, fn_def: FunctionDef) -> FunctionDef:
        if fn_def.name in self._functions:
            raise ValueError(f"Function '{fn_def.name}' is already registered")
        self._functions[fn_def.name] = fn_def
        return fn_def

    def get(self, name: str) -> Optional[FunctionDef]:
        return self._functions.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._functions

    def __getitem__(self, name: str) -> FunctionDef:
        return self._functions[name]

    def __iter__(self) -> Iterator[FunctionDef]:
        return iter(self._functions.values())

    def __len__(self) -> int:
        return len(self._functions)

    def names(self) -> List[str]:
        return list(self._functions)


FUNCTIONS = FunctionRegistry()


def slate_function(name: str, *, parameters: Optional[Dict[str, str]] = None,
                   autocomplete: Optional[Suggestion] = None, summary: Optional[str] = None,
                   icon: Optional[str] = None, registry: Optional[FunctionRegistry] = None):
    """Registers the decorated callable and returns its FunctionDef."""
    def decorator(func) -> FunctionDef:
        fn_def = FunctionDef(name, func, parameters, autocomplete, summary, icon)
        (registry if registry is not None else FUNCTIONS).register(fn_def)
        return fn_def
    return decorator


async def value_of_async(obj: Any) -> Any:
    """Unwraps a scope handle to its first value; other values pass through."""
    if isinstance(obj, Scope):
        return await obj.value_of_async()
    return obj


# ===================================================================
# 2. Core functions
# ===================================================================

_LEADING_NUMBER = re.compile(r'^\s*[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?')


def _to_number(value: Any) -> float:
    """Lenient numeric coercion: anything unreadable becomes nan."""
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        m = _LEADING_NUMBER.match(value)
        if m:
            return float(m.group(0))
    return math.nan


def _as_result(x: float):
    if math.isfinite(x) and x.is_integer():
        return int(x)
    return x


def _pair(positional) -> list:
    return (list(positional) + [None, None])[:2]


async def _operands(positional):
    x, y = _pair(positional)
    return _to_number(await value_of_async(x)), _to_number(await value_of_async(y))


class CoreLib:
    """Builtin functions. Each ``_snake_name`` method is registered as ``SnakeName``."""

    async def _get(self, positional, named, scope):
        obj, key = _pair(positional)
        if obj is None or key is None:
            return None
        if isinstance(obj, Scope):
            requester = scope if isinstance(scope, Scope) else None
            child = obj.get_child_scope(key) if isinstance(key, str) else None
            prop = await child.value_for(requester) if child is not None else None
            if prop is not None:
                return prop
            obj = await obj.value_for(requester)
        if isinstance(obj, dict):
            return obj.get(key)
        if not isinstance(key, str) or key.startswith('_'):
            return None
        value = getattr(obj, key, None)
        return None if callable(value) else value

    async def _not(self, positional, named, scope):
        return not (await value_of_async(positional[0] if positional else None))

    async def _less_than(self, positional, named, scope):
        a, b = [await value_of_async(x) for x in _pair(positional)]
        if a is None or b is None:
            return False
        try:
            return a < b
        except TypeError:
            return _to_number(a) < _to_number(b)

    async def _greater_than(self, positional, named, scope):
        a, b = [await value_of_async(x) for x in _pair(positional)]
        if a is None or b is None:
            return False
        try:
            return a > b
        except TypeError:
            return _to_number(a) > _to_number(b)

    async def _plus(self, positional, named, scope):
        x, y = await _operands(positional)
        return _as_result(x + y)

    async def _minus(self, positional, named, scope):
        x, y = await _operands(positional)
        return _as_result(x - y)

    async def _multiply(self, positional, named, scope):
        x, y = await _operands(positional)
        return _as_result(x * y)

    async def _divide(self, positional, named, scope):
        x, y = await _operands(positional)
        if y == 0:
            if x == 0 or math.isnan(x):
                return math.nan
            return math.copysign(math.inf, x) * math.copysign(1.0, y)
        return _as_result(x / y)

    async def _round(self, positional, named, scope):
        x = _to_number(await value_of_async(positional[0] if positional else None))
        if not math.isfinite(x):
            return x
        return int(math.floor(x + 0.5))


def register_core(registry: FunctionRegistry, lib: Optional[CoreLib] = None):
    lib = lib or CoreLib()
    for name, member in inspect.getmembers(lib):
        if name.startswith('_') and not name.startswith('__') and callable(member):
            fn_name = ''.join(part.capitalize() for part in name[1:].split('_'))
            registry.register(FunctionDef(fn_name, member))


register_core(FUNCTIONS)


# ===================================================================
# 3. Outline runner
# ===================================================================

class OutlineRunner:
    """
    Keeps a scope tree in step with a document.

    Every document change disables the current tree (cancelling its token)
    and builds and evaluates a fresh one for the new document version.
    """

    def __init__(self, document, root_id: str, registry: Optional[FunctionRegistry] = None):
        self.document = document
        self.root_id = root_id
        self.evaluator = Evaluator(registry) if registry is not None else Evaluator()
        self.generation = 0
        self.token: Optional[CancellationToken] = None
        self.root_scope: Optional[Scope] = None
        self._update_handlers: List[Callable[[Scope], None]] = []
        self._unsubscribe = None

    def start(self) -> Scope:
        if self._unsubscribe is None:
            self._unsubscribe = self.document.subscribe(self._on_document_change)
        return self.build()

    def build(self) -> Scope:
        if self.root_scope is not None:
            self.root_scope.disable()
        if self.token is not None:
            self.token.cancel()
        self.generation += 1
        self.token = CancellationToken(self.generation)
        logger.debug("Building scope tree for %s (generation %d)", self.root_id, self.generation)
        self.root_scope = Scope(self.document, self.root_id, evaluator=self.evaluator, token=self.token)
        self.root_scope.register_update_handler(self._on_scope_update)
        self.root_scope.eval()
        return self.root_scope

    def _on_document_change(self, document):
        self.build()

    def _on_scope_update(self, scope: Scope):
        for handler in list(self._update_handlers):
            handler(scope)

    def register_update_handler(self, handler: Callable[[Scope], None]) -> Callable[[], None]:
        self._update_handlers.append(handler)

        def unsubscribe():
            if handler in self._update_handlers:
                self._update_handlers.remove(handler)
        return unsubscribe

    async def settle(self) -> Scope:
        """Waits until the current tree has fully resolved, following rebuilds."""
        if self.root_scope is None:
            self.start()
        while True:
            scope = self.root_scope
            await scope.wait_for_evaluation()
            # Let computation results land before checking for a rebuild
            await asyncio.sleep(0)
            if scope is self.root_scope:
                return scope

    def close(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self.root_scope is not None:
            self.root_scope.disable()
