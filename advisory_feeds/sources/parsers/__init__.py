"""
Feed parsers

One parser class per payload shape, selected through registry.py.
"""

from .registry import (
    DEFAULT_PARSERS,
    PARSER_REGISTRY,
    ParseResult,
    ParserDispatch,
    ParserId,
    resolve_parser,
    resolve_parser_id,
)

__all__ = [
    'DEFAULT_PARSERS',
    'PARSER_REGISTRY',
    'ParseResult',
    'ParserDispatch',
    'ParserId',
    'resolve_parser',
    'resolve_parser_id',
]
