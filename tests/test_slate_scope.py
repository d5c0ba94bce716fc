import asyncio
import logging

import pytest

from slate.slate_datatypes import ComputationResult
from slate.slate_document import Document
from slate.slate_runtime import FunctionRegistry, OutlineRunner, register_core, slate_function


def outline(nodes):
    return Document.from_dict(nodes)


async def settled(document, root_id="root", registry=None):
    runner = OutlineRunner(document, root_id, registry)
    runner.start()
    root = await runner.settle()
    return runner, root


def child(scope, node_id):
    return next(c for c in scope.child_scopes if c.id == node_id)


@pytest.fixture
def registry():
    """Core functions plus whatever a test registers on top."""
    reg = FunctionRegistry()
    register_core(reg)
    return reg


# --- Construction and lookup ---

@pytest.mark.asyncio
async def test_name_lookup_through_parent():
    doc = outline({
        'root': {'value': 'trip', 'children': ['a', 'b']},
        'a': 'start: 5',
        'b': '{start + 1}',
    })
    runner, root = await settled(doc)
    assert child(root, 'b').value == [6]
    assert child(root, 'b').lookup('start') is child(root, 'a')


@pytest.mark.asyncio
async def test_lookup_never_returns_the_asking_scope():
    doc = outline({
        'root': {'value': 'trip', 'children': ['x']},
        'x': 'x: {x}',
    })
    runner, root = await settled(doc)
    x = child(root, 'x')
    assert x.lookup('x') is None
    assert x.value == [None]


@pytest.mark.asyncio
async def test_first_named_property_wins():
    doc = outline({
        'root': {'value': 'trip', 'children': ['k1', 'k2', 'use']},
        'k1': 'k: 1',
        'k2': 'k: 2',
        'use': '{k}',
    })
    runner, root = await settled(doc)
    assert root.get_child_scope('k') is child(root, 'k1')
    assert root.get_property('k') == "1"
    assert child(root, 'use').value == ["1"]


@pytest.mark.asyncio
async def test_transcluded_scopes_do_not_register_named_properties():
    doc = outline({
        'root': {'value': 'see {#[p]}', 'children': []},
        'p': 'position: 1,1',
    })
    runner, root = await settled(doc)
    assert 'p' in root.transcluded_scopes
    assert root.named_props == {}


@pytest.mark.asyncio
async def test_field_access_reads_child_property():
    doc = outline({
        'root': {'value': 'trip', 'children': ['paris', 'where']},
        'paris': {'value': 'Paris', 'children': ['pos']},
        'pos': 'position: 48.85, 2.35',
        'where': '{#[paris].position}',
    })
    runner, root = await settled(doc)
    assert child(root, 'where').value == ["48.85, 2.35"]


@pytest.mark.asyncio
async def test_each_transclusion_is_its_own_scope():
    doc = outline({
        'root': {'value': 'trip', 'children': ['a', 'b']},
        'a': '{#[shared]}',
        'b': '{#[shared]}',
        'shared': 'note',
    })
    runner, root = await settled(doc)
    first = child(root, 'a').transcluded_scopes['shared']
    second = child(root, 'b').transcluded_scopes['shared']
    assert first is not second
    assert first.parent_scope is child(root, 'a')
    assert second.parent_scope is child(root, 'b')


# --- Cycles ---

@pytest.mark.asyncio
async def test_transclusion_cycle_gets_a_placeholder():
    doc = outline({
        'a': 'see {#[b]}',
        'b': 'back {#[a]}',
    })
    runner, root = await settled(doc, 'a')
    b = root.transcluded_scopes['b']
    placeholder = b.transcluded_scopes['a']
    assert not b.is_placeholder
    assert placeholder.is_placeholder
    assert placeholder.value == []
    assert placeholder.child_scopes == []


@pytest.mark.asyncio
async def test_child_cycle_gets_a_placeholder():
    doc = outline({'a': {'value': 'loop', 'children': ['a']}})
    runner, root = await settled(doc, 'a')
    assert len(root.child_scopes) == 1
    assert root.child_scopes[0].is_placeholder


# --- Navigation ---

@pytest.mark.asyncio
async def test_sibling_navigation():
    doc = outline({
        'root': {'value': 'list', 'children': ['a', 'b', 'c']},
        'a': 'one', 'b': 'two', 'c': 'three',
    })
    runner, root = await settled(doc)
    a, b, c = root.child_scopes
    assert [s.index_in_parent() for s in (a, b, c)] == [0, 1, 2]
    assert root.index_in_parent() is None
    assert a.is_preceding_sibling_of(c)
    assert not c.is_preceding_sibling_of(a)
    assert not a.is_preceding_sibling_of(root)
    assert c.get_root_scope() is root
    assert c.is_in_scope('root')
    assert not a.is_in_scope('b')


# --- Evaluation ---

@pytest.mark.asyncio
async def test_label_renders_resolved_expressions():
    doc = outline({'root': 'Total {1 + 2} km'})
    runner, root = await settled(doc)
    assert root.value == ["Total ", 3, " km"]
    assert root.label == "Total 3 km"
    assert await root.get_label_async() == "Total 3 km"


@pytest.mark.asyncio
async def test_label_before_resolution_shows_literal_text():
    doc = outline({'root': 'note: hello'})
    runner = OutlineRunner(doc, 'root')
    root = runner.start()
    assert root.label == "hello"
    await runner.settle()
    assert root.label == "hello"


@pytest.mark.asyncio
async def test_unknown_function_resolves_to_none():
    doc = outline({'root': '{NoSuchThing(1)}'})
    runner, root = await settled(doc)
    assert root.value == [None]


@pytest.mark.asyncio
async def test_failing_function_is_logged_and_resolves_to_none(registry, caplog):
    @slate_function('Boom', registry=registry)
    def boom(positional, named, scope):
        raise RuntimeError("boom")

    doc = outline({'root': '{Boom()}'})
    with caplog.at_level(logging.WARNING, logger='slate.slate_interpreter'):
        runner, root = await settled(doc, registry=registry)
    assert root.value == [None]
    assert any("Boom" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_children_resolve_independently_of_slow_siblings(registry):
    gate = asyncio.Event()

    @slate_function('Slow', registry=registry)
    async def slow(positional, named, scope):
        await gate.wait()
        return "slow"

    @slate_function('Fast', registry=registry)
    def fast(positional, named, scope):
        return "fast"

    doc = outline({
        'root': {'value': 'list', 'children': ['s', 'f']},
        's': '{Slow()}',
        'f': '{Fast()}',
    })
    runner = OutlineRunner(doc, 'root', registry)
    notified = []
    runner.register_update_handler(lambda scope: notified.append(scope.id))
    root = runner.start()

    s, f = root.child_scopes
    assert await f.value_of_async() == "fast"
    assert not s.is_resolved
    assert 'f' in notified and 's' not in notified

    gate.set()
    await runner.settle()
    assert s.value == ["slow"]
    assert notified.index('f') < notified.index('s')


@pytest.mark.asyncio
async def test_parts_of_one_bullet_keep_source_order(registry):
    gate = asyncio.Event()
    finished = []

    @slate_function('Slow', registry=registry)
    async def slow(positional, named, scope):
        await gate.wait()
        finished.append('slow')
        return "slow"

    @slate_function('Fast', registry=registry)
    def fast(positional, named, scope):
        finished.append('fast')
        gate.set()
        return "fast"

    doc = outline({'root': '{Slow()} {Fast()}'})
    runner, root = await settled(doc, registry=registry)
    assert finished == ['fast', 'slow']
    assert root.value == ["slow", "fast"]
    assert root.label == "slow fast"


@pytest.mark.asyncio
async def test_name_reference_cycle_resolves_to_none():
    doc = outline({
        'root': {'value': 'list', 'children': ['x', 'y', 'c']},
        'x': 'x: {y}',
        'y': 'y: {x}',
        'c': 'c: {3}',
    })
    runner, root = await asyncio.wait_for(settled(doc), timeout=2)
    assert child(root, 'x').value == [None]
    assert child(root, 'y').value == [None]
    assert child(root, 'c').value == [3]


@pytest.mark.asyncio
async def test_shared_reference_is_not_a_cycle():
    doc = outline({
        'root': {'value': 'list', 'children': ['a', 'b', 'base']},
        'a': 'a: {base + 1}',
        'b': 'b: {a + base}',
        'base': 'base: 2',
    })
    runner, root = await asyncio.wait_for(settled(doc), timeout=2)
    assert child(root, 'a').value == [3]
    assert child(root, 'b').value == [5]


@pytest.mark.asyncio
async def test_disabled_tree_does_not_notify(registry):
    gate = asyncio.Event()

    @slate_function('Slow', registry=registry)
    async def slow(positional, named, scope):
        await gate.wait()
        return "late"

    doc = outline({
        'root': {'value': 'list', 'children': ['s']},
        's': '{Slow()}',
    })
    runner = OutlineRunner(doc, 'root', registry)
    notified = []
    runner.register_update_handler(lambda scope: notified.append(scope))
    old_root = runner.start()
    old_slow = old_root.child_scopes[0]

    doc.set_value('root', 'renamed')
    assert runner.generation == 2
    assert old_root.is_disabled
    assert old_root.token.cancelled

    gate.set()
    new_root = await runner.settle()
    await old_slow.value_of_async()
    assert new_root is not old_root
    assert old_slow not in notified
    assert new_root.child_scopes[0] in notified


@pytest.mark.asyncio
async def test_update_handler_unsubscribe():
    doc = outline({'root': {'value': 'list', 'children': ['a']}, 'a': '{1 + 1}'})
    runner = OutlineRunner(doc, 'root')
    root = runner.start()
    seen = []
    unsubscribe = root.register_update_handler(seen.append)
    unsubscribe()
    await runner.settle()
    assert seen == []


@pytest.mark.asyncio
async def test_computation_results_reach_handlers():
    doc = outline({'root': {'value': 'list', 'children': ['a']}, 'a': 'item'})
    runner, root = await settled(doc)
    seen = []
    root.register_update_handler(seen.append)
    a = root.child_scopes[0]
    a.add_computation_result(ComputationResult('note', {'display': 'hi'}))
    assert a.computation_results == [ComputationResult('note', {'display': 'hi'})]
    assert seen == [a]


@pytest.mark.asyncio
async def test_distance_annotates_consecutive_children():
    doc = outline({
        'root': {'value': '{Distance()}', 'children': ['a', 'b']},
        'a': 'position: 0,0',
        'b': 'position: 0,1',
    })
    runner, root = await settled(doc)
    a, b = root.child_scopes
    assert a.computation_results == []
    assert len(b.computation_results) == 1
    result = b.computation_results[0]
    assert result.name == 'distance'
    assert result.data['from'] == 'a'
    assert result.data['to'] == 'b'
    assert result.data['display'] == "111 km"


# --- Traversal ---

@pytest.mark.asyncio
async def test_traversal_threads_context_and_skips_transclusions():
    doc = outline({
        'root': {'value': 'top', 'children': ['a', 'b']},
        'a': {'value': 'see {#[x]}', 'children': ['a1']},
        'a1': 'leaf',
        'b': 'plain',
        'x': 'elsewhere',
    })
    runner, root = await settled(doc)

    depths = {}

    def visit(scope, depth):
        depths.setdefault(scope.id, depth)
        return depth + 1

    root.traverse_scope(visit, 0)
    assert depths == {'root': 0, 'a': 1, 'a1': 2, 'x': 2, 'b': 1}

    ids = root.extract_data_in_scope(lambda s: s.id)
    assert ids == ['root', 'a', 'a1', 'x', 'b']
    assert root.extract_data_in_scope(lambda s: s.id, skip_transcluded_scopes=True) == ['root', 'a', 'a1', 'b']
    assert root.extract_data_in_scope(lambda s: s.id if s.id.startswith('a') else None) == ['a', 'a1']


@pytest.mark.asyncio
async def test_async_traversal_awaits_visitor():
    doc = outline({'root': {'value': 'top', 'children': ['a']}, 'a': 'leaf'})
    runner, root = await settled(doc)
    visited = []

    async def visit(scope, context):
        await asyncio.sleep(0)
        visited.append((scope.id, context))
        return scope.id

    await root.traverse_scope_async(visit, None)
    assert visited == [('root', None), ('a', 'root')]
