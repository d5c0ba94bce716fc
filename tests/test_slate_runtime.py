import math

import pytest

from slate.slate_datatypes import EMPTY_ARGUMENT, Suggestion, SuggestionArgument
from slate.slate_document import Document
from slate.slate_interpreter import Evaluator
from slate.slate_runtime import (
    FUNCTIONS, FunctionDef, FunctionRegistry, OutlineRunner, register_core, slate_function,
)


@pytest.fixture
def evaluator():
    registry = FunctionRegistry()
    register_core(registry)
    return Evaluator(registry)


async def call(evaluator, name, *args, **named):
    return await evaluator.call(name, list(args), named, None)


# --- Registry ---

def test_core_functions_are_registered_by_camel_case_name():
    registry = FunctionRegistry()
    register_core(registry)
    assert sorted(registry.names()) == sorted([
        'Get', 'Not', 'LessThan', 'GreaterThan', 'Plus', 'Minus', 'Multiply', 'Divide', 'Round',
    ])


def test_global_registry_has_domain_functions():
    for name in ('Distance', 'Route', 'Weather', 'Sunrise', 'Sunset', 'FlightStatus', 'Plus'):
        assert name in FUNCTIONS


def test_duplicate_registration_raises():
    registry = FunctionRegistry()
    registry.register(FunctionDef('Twice', lambda p, n, s: None))
    with pytest.raises(ValueError):
        registry.register(FunctionDef('Twice', lambda p, n, s: None))


def test_decorator_returns_function_def():
    registry = FunctionRegistry()

    @slate_function('Echo', parameters={'of': 'flight'}, icon='echo', registry=registry)
    def echo(positional, named, scope):
        return named.get('of')

    assert isinstance(echo, FunctionDef)
    assert registry['Echo'] is echo
    assert echo([], {'of': 'LH123'}, None) == 'LH123'
    assert echo.parameters == {'of': 'flight'}

    @echo.suggester
    def suggest(parameters):
        return [Suggestion('Echo', [SuggestionArgument('of', '#[x]')])]

    assert echo.suggestions is suggest


def test_render_summary():
    fn = FunctionDef('Distance', lambda p, n, s: None, summary='📏 {{display}}')
    assert fn.render_summary({'display': '5 km'}) == '📏 5 km'
    assert fn.render_summary(None) is None
    scalar = FunctionDef('Sunrise', lambda p, n, s: None, summary='🌅 {{value}}')
    assert scalar.render_summary('06:12') == '🌅 06:12'
    assert FunctionDef('Plain', lambda p, n, s: None).render_summary(1) is None


# --- Core functions ---

@pytest.mark.asyncio
async def test_arithmetic(evaluator):
    assert await call(evaluator, 'Plus', 2, 3) == 5
    assert await call(evaluator, 'Minus', 5, 5) == 0
    assert await call(evaluator, 'Multiply', 2.5, 2) == 5
    assert await call(evaluator, 'Divide', 1, 2) == 0.5


@pytest.mark.asyncio
async def test_arithmetic_reads_leading_numbers_from_text(evaluator):
    assert await call(evaluator, 'Plus', "2 apples", 3) == 5
    assert math.isnan(await call(evaluator, 'Multiply', "x", 2))
    assert math.isnan(await call(evaluator, 'Plus', None, 1))


@pytest.mark.asyncio
async def test_division_by_zero(evaluator):
    assert await call(evaluator, 'Divide', 1, 0) == math.inf
    assert await call(evaluator, 'Divide', -1, 0) == -math.inf
    assert math.isnan(await call(evaluator, 'Divide', 0, 0))


@pytest.mark.asyncio
async def test_round_half_up(evaluator):
    assert await call(evaluator, 'Round', 2.5) == 3
    assert await call(evaluator, 'Round', -2.5) == -2
    assert await call(evaluator, 'Round', "1.4") == 1
    assert math.isnan(await call(evaluator, 'Round', "abc"))


@pytest.mark.asyncio
async def test_comparisons(evaluator):
    assert await call(evaluator, 'LessThan', 1, 2) is True
    assert await call(evaluator, 'GreaterThan', "b", "a") is True
    assert await call(evaluator, 'LessThan', None, 2) is False
    assert await call(evaluator, 'GreaterThan', "10", 9) is True
    assert await call(evaluator, 'Not', 0) is True


@pytest.mark.asyncio
async def test_get(evaluator):
    assert await call(evaluator, 'Get', {'a': 1}, 'a') == 1
    assert await call(evaluator, 'Get', {'a': 1}, 'b') is None
    assert await call(evaluator, 'Get', None, 'a') is None
    assert await call(evaluator, 'Get', "text", 'upper') is None


@pytest.mark.asyncio
async def test_unknown_function_is_none(evaluator):
    assert await call(evaluator, 'Missing', 1) is None



@pytest.mark.asyncio
async def test_empty_slot_and_unknown_name_reach_functions_differently():
    registry = FunctionRegistry()
    seen = {}

    @slate_function('Record', registry=registry)
    def record(positional, named, scope):
        seen.update(named)

    doc = Document.from_dict({'root': '{Record(blank:, unknown: nowhere)}'})
    runner = OutlineRunner(doc, 'root', registry)
    runner.start()
    await runner.settle()
    assert seen['blank'] is EMPTY_ARGUMENT
    assert seen['unknown'] is None
    assert not EMPTY_ARGUMENT


# --- Runner ---

@pytest.mark.asyncio
async def test_runner_rebuilds_on_document_change():
    doc = Document.from_dict({'root': {'value': 'x: {1 + 1}', 'children': []}})
    runner = OutlineRunner(doc, 'root')
    first = runner.start()
    await runner.settle()
    assert first.value == [2]
    first_token = runner.token

    doc.set_value('root', 'x: {2 * 3}')
    second = await runner.settle()
    assert second is not first
    assert first.is_disabled
    assert first_token.cancelled
    assert runner.generation == 2
    assert second.value == [6]

    runner.close()
    doc.set_value('root', 'x: 0')
    assert runner.root_scope is second


@pytest.mark.asyncio
async def test_runner_batches_document_edits():
    doc = Document.from_dict({'root': {'value': 'list', 'children': []}})
    runner = OutlineRunner(doc, 'root')
    runner.start()
    with doc.batch():
        a = doc.create_node('one')
        b = doc.create_node('two')
        doc.insert_child('root', a.id)
        doc.insert_child('root', b.id)
    assert runner.generation == 2
    root = await runner.settle()
    assert [c.source for c in root.child_scopes] == ['one', 'two']
