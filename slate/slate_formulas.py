"""
Formula generalization ("fill down" for outlines).

From one example formula, ``get_pattern`` works out which argument anchors
the formula (a typed value right next to it) and how every other argument
relates to that anchor. ``repeat_formula`` then replays the pattern at every
other scope carrying a value of the anchor's type and inserts the new
formulas into the document.
"""

import logging
from typing import Callable, Dict, List, Optional

from slate.slate_datatypes import (
    AnchorArgument, FunctionCall, IdentifierRef, InlineExpr, Insertion, Parameter, Pattern,
)
from slate.slate_parser import parse_bullet
from slate.slate_printer import Printer, canonical_formula
from slate.slate_properties import is_parents_property
from slate.slate_suggestions import get_parameters

logger = logging.getLogger(__name__)

# relationship of the anchor's scope to the formula -> where copies go
OUTPUT_POSITIONS = {
    'prev': 'below',
    'next': 'above',
    'parent': 'child',
}

ExtractionRule = Callable[[object], Optional[str]]


def _registry(registry):
    if registry is None:
        from slate.slate_runtime import FUNCTIONS
        return FUNCTIONS
    return registry


def _first_value(scope, type_name: str) -> Optional[str]:
    found = scope.read_as(type_name)
    return f"#[{found[0].scope.id}]" if found else None


def _ancestors(scope):
    parent = scope.parent_scope
    while parent is not None:
        yield parent
        parent = parent.parent_scope


# =================================================================
# Extraction rules
# =================================================================

def literal_rule(expression: str) -> ExtractionRule:
    return lambda scope: expression


def parent_rule(type_name: str) -> ExtractionRule:
    """The closest ancestor of the anchor site carrying a ``type_name`` value."""
    def extract(scope):
        for ancestor in _ancestors(scope):
            value = _first_value(ancestor, type_name)
            if value is not None:
                return value
        return None
    return extract


def sibling_rule(direction: str, type_name: str) -> ExtractionRule:
    """The first sibling before (``prev``) or after (``next``) the anchor site carrying a value."""
    step = -1 if direction == 'prev' else 1

    def extract(scope):
        parent = scope.parent_scope
        index = scope.index_in_parent()
        if parent is None or index is None:
            return None
        i = index + step
        while 0 <= i < len(parent.child_scopes):
            value = _first_value(parent.child_scopes[i], type_name)
            if value is not None:
                return value
            i += step
        return None
    return extract


def _extraction_rule(expression: str, type_name: Optional[str], anchor_site,
                     param: Optional[Parameter]) -> ExtractionRule:
    if param is None or type_name is None:
        return literal_rule(expression)
    site = param.scope

    ancestors = list(_ancestors(anchor_site))
    if any(a is site for a in ancestors):
        between = ancestors[:next(i for i, a in enumerate(ancestors) if a is site)]
        if any(_first_value(a, type_name) is not None for a in between):
            return literal_rule(expression)
        return parent_rule(type_name)

    parent = anchor_site.parent_scope
    if parent is not None and site.parent_scope is parent:
        site_index, anchor_index = site.index_in_parent(), anchor_site.index_in_parent()
        if site_index is not None and anchor_index is not None and site_index != anchor_index:
            lo, hi = sorted((site_index, anchor_index))
            between = parent.child_scopes[lo + 1:hi]
            if any(_first_value(s, type_name) is not None for s in between):
                return literal_rule(expression)
            return sibling_rule('prev' if site_index < anchor_index else 'next', type_name)

    return literal_rule(expression)


# =================================================================
# Pattern
# =================================================================

def _single_call(scope) -> Optional[FunctionCall]:
    parts = scope.bullet.parts
    if len(parts) != 1 or not isinstance(parts[0], InlineExpr):
        return None
    expr = parts[0].expr
    return expr if isinstance(expr, FunctionCall) else None


def get_pattern(formula_scope, registry=None) -> Optional[Pattern]:
    call = _single_call(formula_scope)
    if call is None:
        return None
    fn = _registry(registry).get(call.name)
    if fn is None or not fn.parameters:
        logger.debug("%s declares no parameters, not repeatable", call.name)
        return None
    if any(arg.name is None for arg in call.args):
        return None

    parameters = [p for p in get_parameters(formula_scope) if p.relationship != 'self']
    param_by_arg: Dict[str, Parameter] = {}
    for arg in call.args:
        type_name = fn.parameters.get(arg.name)
        if not isinstance(arg.value, IdentifierRef) or type_name is None:
            continue
        expression = f"#[{arg.value.id}]"
        param = next((p for p in parameters if p.expression == expression and p.type == type_name), None)
        if param is not None:
            param_by_arg[arg.name] = param

    anchor = None
    for arg in call.args:
        param = param_by_arg.get(arg.name)
        if param is not None and param.distance == 1 and param.relationship in OUTPUT_POSITIONS:
            anchor = AnchorArgument(arg.name, param.type, OUTPUT_POSITIONS[param.relationship])
            break
    if anchor is None:
        return None

    anchor_site = param_by_arg[anchor.name].scope
    printer = Printer()
    rules: Dict[str, ExtractionRule] = {}
    for arg in call.args:
        if arg.name == anchor.name:
            continue
        rules[arg.name] = _extraction_rule(printer.pformat(arg.value), fn.parameters.get(arg.name),
                                           anchor_site, param_by_arg.get(arg.name))
    return Pattern(call, anchor, rules)


def can_formula_be_repeated(formula_scope, registry=None) -> bool:
    return get_pattern(formula_scope, registry) is not None


# =================================================================
# Applying a pattern
# =================================================================

def instantiate(pattern: Pattern, scope, anchor_expression: str) -> Optional[str]:
    """The formula text for one anchor scope, or None if a rule finds nothing."""
    args = []
    for arg in pattern.call.args:
        if arg.name == pattern.anchor_argument.name:
            value = anchor_expression
        else:
            value = pattern.extraction_rule_by_arg_name[arg.name](scope)
            if value is None:
                return None
        args.append(f"{arg.name}: {value}" if value else f"{arg.name}:")
    return "{" + f"{pattern.call.name}({', '.join(args)})" + "}"


def _formulas_in(document, node_ids) -> set:
    out = set()
    for node_id in node_ids:
        node = document.get_node(node_id)
        if node is None:
            continue
        for part in parse_bullet(node.value).parts:
            if isinstance(part, InlineExpr) and isinstance(part.expr, FunctionCall):
                out.add(canonical_formula(part.expr))
    return out


def _canonical_text(formula: str) -> str:
    parts = parse_bullet(formula).parts
    if len(parts) == 1 and isinstance(parts[0], InlineExpr) and isinstance(parts[0].expr, FunctionCall):
        return canonical_formula(parts[0].expr)
    return formula


def _target(document, scope, position: str) -> Optional[tuple]:
    """(parent id, index, ids of nodes to check for duplicates)."""
    if position == 'child':
        node = document.get_node(scope.id)
        if node is None:
            return None
        return scope.id, len(node.children), list(node.children)

    parent = scope.parent_scope
    if parent is None or scope.index_in_parent() is None:
        return None
    parent_node = document.get_node(parent.id)
    if parent_node is None or scope.id not in parent_node.children:
        return None
    index = parent_node.children.index(scope.id)
    if position == 'below':
        index += 1
    return parent.id, index, list(parent_node.children)


def repeat_formula(document, formula_scope, registry=None) -> List[Insertion]:
    """Applies the formula's pattern across the document. Returns what was inserted."""
    pattern = get_pattern(formula_scope, registry)
    if pattern is None:
        return []

    required_type = pattern.anchor_argument.type
    planned = []

    def visit(scope, context):
        if is_parents_property(scope, required_type):
            return context
        found = scope.read_as(required_type)
        if found:
            formula = instantiate(pattern, scope, f"#[{found[0].scope.id}]")
            if formula is not None:
                planned.append((scope, formula))
        return context

    formula_scope.get_root_scope().traverse_scope(visit, None, skip_transcluded_scopes=True)

    insertions: List[Insertion] = []
    with document.batch():
        for scope, formula in planned:
            target = _target(document, scope, pattern.anchor_argument.output_position)
            if target is None:
                continue
            parent_id, index, neighbours = target
            if _canonical_text(formula) in _formulas_in(document, neighbours):
                continue
            node = document.create_node(formula)
            document.insert_child(parent_id, node.id, index)
            insertions.append(Insertion(parent_id, index, node.id, formula, scope.id))
            logger.debug("Inserted %s under %s at %d", formula, parent_id, index)
    return insertions
