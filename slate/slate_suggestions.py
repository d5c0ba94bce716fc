"""
Finds typed values around a scope and turns them into ranked function
suggestions.

A parameter records where a value was found relative to the scope asking
for suggestions: the scope itself, a previous or next sibling, or an
ancestor, together with a distance (sibling offset or number of parent
hops). Functions pair parameters up and rank the result, lower is better.
"""

import math
from typing import Dict, List, Optional

from slate.slate_config import get_config
from slate.slate_datatypes import Parameter, Suggestion
from slate.slate_properties import inline_transclusions

PARAMETER_TYPES = ('date', 'location', 'flight')


def parse_values_in_scope(scope) -> List[tuple]:
    """(type, expression, provenance scope) for every typed value ``scope`` carries."""
    values = []
    for type_name in PARAMETER_TYPES:
        seen = set()
        for found in scope.read_as(type_name):
            if found.scope.id in seen:
                continue
            seen.add(found.scope.id)
            values.append((type_name, f"#[{found.scope.id}]", found.scope))
    return values


def _parameters_at(scope, relationship: str, distance: int) -> List[Parameter]:
    return [
        Parameter(relationship, distance, type_name, expression, scope, source)
        for type_name, expression, source in parse_values_in_scope(scope)
    ]


def get_own_parameters(scope) -> List[Parameter]:
    # Only whole {#[x]} parts are carried values; references in function
    # arguments are not.
    params = _parameters_at(scope, 'self', 0)
    for transcluded in inline_transclusions(scope):
        for child in transcluded.child_scopes:
            params.extend(_parameters_at(child, 'self', 1))
    return params


def get_sequential_parameters(scope, max_distance: Optional[int] = None) -> List[Parameter]:
    parent = scope.parent_scope
    index = scope.index_in_parent()
    if parent is None or index is None:
        return []
    if max_distance is None:
        max_distance = get_config().suggestions.max_sibling_distance

    siblings = parent.child_scopes
    params = []
    for distance in range(1, max_distance + 1):
        prev_index, next_index = index - distance, index + distance
        if prev_index < 0 and next_index >= len(siblings):
            break
        if prev_index >= 0:
            params.extend(_parameters_at(siblings[prev_index], 'prev', distance))
        if next_index < len(siblings):
            params.extend(_parameters_at(siblings[next_index], 'next', distance))
    return params


def get_parent_parameters(scope) -> List[Parameter]:
    params = []
    distance = 1
    parent = scope.parent_scope
    while parent is not None:
        params.extend(_parameters_at(parent, 'parent', distance))
        parent = parent.parent_scope
        distance += 1
    return params


def get_parameters(scope, max_sibling_distance: Optional[int] = None) -> List[Parameter]:
    """All parameters around ``scope``, one per (type, expression), nearest first."""
    collected = (get_own_parameters(scope)
                 + get_sequential_parameters(scope, max_sibling_distance)
                 + get_parent_parameters(scope))
    best: Dict[tuple, Parameter] = {}
    for param in collected:
        key = (param.type, param.expression)
        current = best.get(key)
        if current is None or param.distance < current.distance:
            best[key] = param
    return sorted(best.values(), key=lambda p: p.distance)


def _rank(suggestion: Suggestion) -> float:
    return suggestion.rank if suggestion.rank is not None else math.inf


def _registry(registry):
    if registry is None:
        from slate.slate_runtime import FUNCTIONS
        return FUNCTIONS
    return registry


def get_suggested_functions(scope, registry=None) -> List[Suggestion]:
    parameters = get_parameters(scope)
    suggestions: List[Suggestion] = []
    for fn in _registry(registry):
        if fn.suggestions is not None:
            suggestions.extend(fn.suggestions(parameters))
        if fn.autocomplete is not None:
            suggestions.append(fn.autocomplete)
    return sorted(suggestions, key=_rank)


def get_grouped_suggested_functions(scope, registry=None) -> Dict[str, List[Suggestion]]:
    parameters = get_parameters(scope)
    return {
        fn.name: sorted(fn.suggestions(parameters), key=_rank)
        for fn in _registry(registry)
        if fn.suggestions is not None
    }
