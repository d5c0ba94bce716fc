"""
Parses bullet text into the slate AST.

``parse`` never raises on malformed input: it returns a ``ParseFailure``.
``parse_bullet`` goes one step further and falls back to treating the whole
text as a single literal part, keeping a leading ``key:`` when one is
recognizable.
"""

import logging
import re
from importlib import resources
from typing import Dict, Optional, Union

import yaml
from koine import Parser

from slate.slate_datatypes import AstNode, Bullet, ParseFailure, StringLiteral, Text
from slate.slate_transformer import SlateTransformer

logger = logging.getLogger(__name__)

START_RULES = ('bullet', 'property', 'inline_expression', 'expression')

KEY_REGEX = re.compile(r'^\s*([A-Za-z0-9_]+(?: +[A-Za-z0-9_]+)*)\s*:')
POSITION_REGEX = re.compile(r'L(\d+):C(\d+)')

_parser: Optional[Parser] = None


def load_grammar() -> Dict:
    text = resources.files('slate').joinpath('slate_grammar.yaml').read_text(encoding='utf-8')
    return yaml.safe_load(text)


def get_parser() -> Parser:
    """The Koine parser over the whole grammar, built lazily and cached."""
    global _parser
    if _parser is None:
        _parser = Parser(load_grammar())
    return _parser


def _failure_from(parse_out: Dict, source: str, start_rule: str) -> ParseFailure:
    msg = parse_out.get('message') or 'parse failed'
    line = col = None
    m = POSITION_REGEX.search(msg)
    if m:
        line, col = int(m.group(1)), int(m.group(2))
    return ParseFailure(msg, source, start_rule, line, col)


def parse(source: str, start_rule: str = 'bullet') -> Union[AstNode, ParseFailure]:
    if start_rule not in START_RULES:
        raise ValueError(f"Unknown start rule: {start_rule!r}")
    try:
        parse_out = get_parser().parse(source, start_rule=start_rule)
    except Exception as e:
        return ParseFailure(f"ParseError: {e}", source, start_rule)

    if isinstance(parse_out, dict) and 'status' in parse_out:
        if parse_out.get('status') != 'success':
            return _failure_from(parse_out, source, start_rule)
        ast_node = parse_out.get('ast')
    else:
        ast_node = parse_out

    try:
        return SlateTransformer(source).transform(ast_node)
    except (NotImplementedError, ValueError, KeyError, IndexError) as e:
        return ParseFailure(f"TransformError: {e}", source, start_rule)


def parse_bullet(source: str) -> Bullet:
    """Parses a node's text, falling back to one literal part on failure."""
    result = parse(source, 'bullet')
    if isinstance(result, Bullet):
        return result

    logger.debug("Falling back to literal text for %r: %s", source, getattr(result, 'message', result))
    key = None
    rest_start = 0
    m = KEY_REGEX.match(source)
    if m:
        key = StringLiteral(m.group(1), start=m.start(1), end=m.end(1))
        rest_start = m.end()
        while rest_start < len(source) and source[rest_start] in ' \t':
            rest_start += 1
    rest = source[rest_start:]
    parts = (Text(rest, start=rest_start, end=len(source)),) if rest.strip() else ()
    return Bullet(key, parts, start=0, end=len(source))


def parse_property(source: str) -> Union[Bullet, ParseFailure]:
    return parse(source, 'property')


def parse_inline_expression(source: str) -> Union[AstNode, ParseFailure]:
    return parse(source, 'inline_expression')


def parse_expression(source: str) -> Union[AstNode, ParseFailure]:
    return parse(source, 'expression')
