"""
Scopes: the evaluation-time tree mirroring a document's outline.

One ``Scope`` exists per occurrence of a node: a node transcluded twice is
evaluated twice, each time with the referencing scope as its parent. A scope
tree belongs to one document version; on change it is disabled and replaced
as a whole.
"""

import asyncio
import inspect
import logging
import weakref
from typing import Any, Callable, Dict, List, Optional

from slate.slate_datatypes import Bullet, ComputationResult, DataWithProvenance
from slate.slate_interpreter import Evaluator, get_default_evaluator
from slate.slate_parser import parse_bullet
from slate.slate_printer import format_value
from slate import slate_properties

logger = logging.getLogger(__name__)


class CancellationToken:
    """Shared by every scope of one tree; cancelled when the tree is replaced."""

    def __init__(self, generation: int = 0):
        self.generation = generation
        self.cancelled = False

    def cancel(self):
        self.cancelled = True

    def __repr__(self):
        return f"<CancellationToken gen={self.generation} cancelled={self.cancelled}>"


class Scope:
    def __init__(self, document, node_id: str, parent_scope: Optional['Scope'] = None, *,
                 evaluator: Optional[Evaluator] = None, token: Optional[CancellationToken] = None,
                 placeholder: bool = False, transcluded: bool = False):
        self.document = document
        self.id = node_id
        self._parent_ref = weakref.ref(parent_scope) if parent_scope is not None else None
        self.evaluator = evaluator or (parent_scope.evaluator if parent_scope else get_default_evaluator())
        self.token = token or (parent_scope.token if parent_scope else CancellationToken())
        self.is_placeholder = placeholder
        self.is_transcluded = transcluded
        self.is_disabled = False

        self.child_scopes: List[Scope] = []
        self.transcluded_scopes: Dict[str, Scope] = {}
        self.named_props: Dict[str, Scope] = {}
        self.computation_results: List[ComputationResult] = []

        self._value: Optional[List[Any]] = None
        self._resolved = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._update_handlers: List[Callable[['Scope'], None]] = []
        # scopes this one is currently waiting on through a name reference
        self._awaiting: List[Scope] = []

        node = document.get_node(node_id) if not placeholder else None
        self.source = node.value if node is not None else ""
        self.bullet: Bullet = parse_bullet(self.source) if not placeholder else Bullet()

        key = self.bullet.key_name
        if key and parent_scope is not None and not transcluded and key not in parent_scope.named_props:
            parent_scope.named_props[key] = self

        if placeholder or node is None:
            return

        for child_id in node.children:
            self.child_scopes.append(self._build(child_id, transcluded=False))

        for ref_id in self.bullet.get_referenced_ids():
            self.transcluded_scopes[ref_id] = self._build(ref_id, transcluded=True)

    def _build(self, node_id: str, transcluded: bool) -> 'Scope':
        if self.is_in_scope(node_id):
            logger.debug("Cycle through %s below %s, using a placeholder", node_id, self.id)
            return Scope(self.document, node_id, self, placeholder=True, transcluded=transcluded)
        return Scope(self.document, node_id, self, transcluded=transcluded)

    def __repr__(self):
        return f"<Scope {self.id!r} {self.source!r}>"

    # --- Tree navigation ---

    @property
    def parent_scope(self) -> Optional['Scope']:
        return self._parent_ref() if self._parent_ref is not None else None

    def get_root_scope(self) -> 'Scope':
        scope = self
        while scope.parent_scope is not None:
            scope = scope.parent_scope
        return scope

    def is_in_scope(self, node_id: str) -> bool:
        scope = self
        while scope is not None:
            if scope.id == node_id:
                return True
            scope = scope.parent_scope
        return False

    def index_in_parent(self) -> Optional[int]:
        parent = self.parent_scope
        if parent is None:
            return None
        for i, child in enumerate(parent.child_scopes):
            if child is self:
                return i
        return None

    def is_preceding_sibling_of(self, other: 'Scope') -> bool:
        if self.parent_scope is None or self.parent_scope is not other.parent_scope:
            return False
        mine, theirs = self.index_in_parent(), other.index_in_parent()
        return mine is not None and theirs is not None and mine < theirs

    def lookup(self, name: str) -> Optional['Scope']:
        """Finds the nearest named property ``name``, starting at the parent."""
        scope = self.parent_scope
        while scope is not None:
            hit = scope.named_props.get(name)
            if hit is not None and hit is not self:
                return hit
            scope = scope.parent_scope
        return None

    def get_child_scope(self, name: str) -> Optional['Scope']:
        return self.named_props.get(name)

    # --- Values ---

    @property
    def value(self) -> Optional[List[Any]]:
        return self._value

    @property
    def is_resolved(self) -> bool:
        return self._resolved.is_set()

    def value_of(self, index: int = 0) -> Any:
        if self._value is None or index >= len(self._value):
            return None
        return self._value[index]

    async def value_of_async(self, index: int = 0) -> Any:
        self.eval()
        await self._resolved.wait()
        return self.value_of(index)

    async def value_for(self, requester: Optional['Scope'], index: int = 0) -> Any:
        """
        ``value_of_async`` on behalf of another scope.

        Returns None instead of waiting when this scope is, directly or
        through other references, already waiting on ``requester``.
        """
        if self.is_resolved or requester is None:
            return await self.value_of_async(index)
        if self._waits_on(requester):
            logger.debug("Reference cycle between %s and %s", requester.id, self.id)
            return None
        requester._awaiting.append(self)
        try:
            return await self.value_of_async(index)
        finally:
            requester._awaiting.remove(self)

    def _waits_on(self, other: 'Scope') -> bool:
        stack, seen = [self], set()
        while stack:
            scope = stack.pop()
            if scope is other:
                return True
            if id(scope) in seen:
                continue
            seen.add(id(scope))
            stack.extend(scope._awaiting)
        return False

    def get_property(self, name: str) -> Any:
        child = self.named_props.get(name)
        return child.value_of() if child is not None else None

    async def get_property_async(self, name: str) -> Any:
        child = self.named_props.get(name)
        return await child.value_of_async() if child is not None else None

    @property
    def label(self) -> str:
        """The node's text after its key, with expressions rendered once resolved."""
        parts = self.bullet.parts
        rendered = []
        prev_end = None
        for i, part in enumerate(parts):
            if self.is_resolved:
                text = format_value(self.value_of(i))
            else:
                text = part.value if hasattr(part, 'value') and isinstance(part.value, str) else ""
            if prev_end is not None and rendered:
                gap = self.source[prev_end:part.start]
                if gap and not gap.strip():
                    rendered.append(gap)
            rendered.append(text)
            prev_end = part.end
        return "".join(rendered).strip()

    async def get_label_async(self) -> str:
        await self.value_of_async()
        return self.label

    def read_as(self, type_name: str) -> List[DataWithProvenance]:
        return slate_properties.read_as(self, type_name)

    async def read_as_async(self, type_name: str) -> List[DataWithProvenance]:
        return await slate_properties.read_as_async(self, type_name)

    def read_as_date(self) -> List[DataWithProvenance]:
        return self.read_as('date')

    def read_as_location(self) -> List[DataWithProvenance]:
        return self.read_as('location')

    # --- Evaluation ---

    def eval(self):
        """Starts evaluating this scope and, independently, its whole subtree."""
        if self._task is not None:
            return
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._evaluate())
        for child in self.child_scopes:
            child.eval()
        for transcluded in self.transcluded_scopes.values():
            transcluded.eval()

    async def _evaluate(self):
        if self.is_placeholder:
            value = []
        else:
            try:
                value = await self.evaluator.eval(self.bullet, self)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Evaluating %s failed", self.id)
                value = [None] * len(self.bullet.parts)
        self._value = list(value)
        self._resolved.set()
        if self.token.cancelled or self.is_disabled:
            logger.debug("Discarding result of %s (generation %s)", self.id, self.token.generation)
            return
        self._notify(self)

    async def wait_for_evaluation(self):
        """Resolves once this scope and everything below it have resolved."""
        self.eval()
        await self._resolved.wait()
        await asyncio.gather(*(c.wait_for_evaluation() for c in self.child_scopes),
                             *(t.wait_for_evaluation() for t in self.transcluded_scopes.values()))

    def disable(self):
        self.is_disabled = True
        if self.parent_scope is None:
            self.token.cancel()
        for child in self.child_scopes:
            child.disable()
        for transcluded in self.transcluded_scopes.values():
            transcluded.disable()

    # --- Notifications ---

    def register_update_handler(self, handler: Callable[['Scope'], None]) -> Callable[[], None]:
        self._update_handlers.append(handler)

        def unsubscribe():
            if handler in self._update_handlers:
                self._update_handlers.remove(handler)
        return unsubscribe

    def _notify(self, origin: 'Scope'):
        scope = self
        while scope is not None:
            if scope.is_disabled or scope.token.cancelled:
                return
            for handler in list(scope._update_handlers):
                try:
                    handler(origin)
                except Exception:
                    logger.exception("Update handler failed for %s", scope.id)
            scope = scope.parent_scope

    def add_computation_result(self, result: ComputationResult):
        self.computation_results.append(result)
        if not (self.is_disabled or self.token.cancelled):
            self._notify(self)

    # --- Traversal ---

    def traverse_scope(self, fn: Callable[['Scope', Any], Any], context: Any = None,
                       skip_transcluded_scopes: bool = False):
        child_context = fn(self, context)
        for child in self.child_scopes:
            child.traverse_scope(fn, child_context, skip_transcluded_scopes)
        if not skip_transcluded_scopes:
            for transcluded in self.transcluded_scopes.values():
                transcluded.traverse_scope(fn, child_context, skip_transcluded_scopes)

    async def traverse_scope_async(self, fn, context: Any = None, skip_transcluded_scopes: bool = False):
        child_context = fn(self, context)
        if inspect.isawaitable(child_context):
            child_context = await child_context
        for child in self.child_scopes:
            await child.traverse_scope_async(fn, child_context, skip_transcluded_scopes)
        if not skip_transcluded_scopes:
            for transcluded in self.transcluded_scopes.values():
                await transcluded.traverse_scope_async(fn, child_context, skip_transcluded_scopes)

    def extract_data_in_scope(self, fn: Callable[['Scope'], Any],
                              skip_transcluded_scopes: bool = False) -> List[Any]:
        results = []

        def collect(scope, _):
            data = fn(scope)
            if data is not None:
                results.append(data)

        self.traverse_scope(collect, None, skip_transcluded_scopes)
        return results
