"""
Parser Registry and Dispatch

OBJECTIVE:
Closed mapping from (transport format, parser id) to the parser class that
turns a raw payload into raw items. Every transport format has a default
parser; a parser id only selects a specialized parser for formats where it
is registered.

INTEGRATION WITH LOCAL CODES:
- FeedSource.parser_id strings come from config/source_config.py
- ParserDispatch is called by orchestration/feed_manager.py after a
  successful fetch
- Unknown parser ids resolve to ParserId.DEFAULT with a warning

FAILURE POLICY:
dispatch() never raises. A parser failure is logged and returned as a
ParseResult with no items and the error message, so the caller can record
it against the source's health.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Type

from ...config.source_config import FeedSource, TransportFormat
from ..base.base_parser import BaseParser
from ..base.feed_item import RawItem
from .abuse_ch_parsers import ThreatFoxParser, UrlhausParser
from .cna_parser import CnaParser
from .json_parser import GenericJsonParser
from .kev_parser import KevParser
from .nvd_parser import NvdApiParser
from .rss_parser import RssParser
from .stix_parser import StixBundleParser
from .text_parser import PlainTextParser

logger = logging.getLogger(__name__)


class ParserId(Enum):
    """Parser selectors accepted in the feed configuration"""
    DEFAULT = "default"
    RSS = "rss"
    JSON = "json"
    KEV = "kev"
    CNA = "cna"
    NVD = "nvd"
    URLHAUS = "urlhaus"
    THREATFOX = "threatfox"
    TEXT = "text"
    STIX = "stix"


PARSER_ALIASES = {
    'generic': ParserId.DEFAULT,
    'cisa_kev': ParserId.KEV,
    'cisa-kev': ParserId.KEV,
    'cve5': ParserId.CNA,
    'cve_json5': ParserId.CNA,
    'nvd_api': ParserId.NVD,
    'urlhaus_api': ParserId.URLHAUS,
    'threatfox_api': ParserId.THREATFOX,
    'taxii': ParserId.STIX,
    'plaintext': ParserId.TEXT,
}

DEFAULT_PARSERS: Dict[TransportFormat, Type[BaseParser]] = {
    TransportFormat.RSS: RssParser,
    TransportFormat.JSON: GenericJsonParser,
    TransportFormat.API: GenericJsonParser,
    TransportFormat.TEXT: PlainTextParser,
    TransportFormat.TAXII: StixBundleParser,
}

_JSON_FORMATS = (TransportFormat.JSON, TransportFormat.API)

PARSER_REGISTRY: Dict[Tuple[TransportFormat, ParserId], Type[BaseParser]] = {
    **{(fmt, ParserId.JSON): GenericJsonParser for fmt in _JSON_FORMATS},
    **{(fmt, ParserId.KEV): KevParser for fmt in _JSON_FORMATS},
    **{(fmt, ParserId.CNA): CnaParser for fmt in _JSON_FORMATS},
    **{(fmt, ParserId.NVD): NvdApiParser for fmt in _JSON_FORMATS},
    **{(fmt, ParserId.URLHAUS): UrlhausParser for fmt in _JSON_FORMATS},
    **{(fmt, ParserId.THREATFOX): ThreatFoxParser for fmt in _JSON_FORMATS},
    **{(fmt, ParserId.STIX): StixBundleParser for fmt in _JSON_FORMATS + (TransportFormat.TAXII,)},
    (TransportFormat.RSS, ParserId.RSS): RssParser,
    (TransportFormat.TEXT, ParserId.TEXT): PlainTextParser,
}


def resolve_parser_id(parser_id: Optional[str]) -> ParserId:
    """Map a configured parser id string to a ParserId"""
    if not parser_id:
        return ParserId.DEFAULT

    key = parser_id.strip().lower()
    if key in PARSER_ALIASES:
        return PARSER_ALIASES[key]
    try:
        return ParserId(key)
    except ValueError:
        logger.warning(f"Unknown parser id '{parser_id}', using default parser")
        return ParserId.DEFAULT


def resolve_parser(transport_format: TransportFormat, parser_id: Optional[str]) -> Type[BaseParser]:
    """Select the parser class for a transport format and parser id"""
    pid = resolve_parser_id(parser_id)
    parser_class = PARSER_REGISTRY.get((transport_format, pid))
    if parser_class is None:
        if pid is not ParserId.DEFAULT:
            logger.warning(f"Parser '{pid.value}' not available for {transport_format.value} feeds, "
                           f"using default parser")
        parser_class = DEFAULT_PARSERS[transport_format]
    return parser_class


@dataclass
class ParseResult:
    """Outcome of dispatching one payload"""
    items: List[RawItem] = field(default_factory=list)
    error: Optional[str] = None
    parser: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ParserDispatch:
    """Routes raw payloads to the registered parser for their source"""

    def dispatch(self, raw: str, source: FeedSource) -> ParseResult:
        parser_class = resolve_parser(source.transport_format, source.parser_id)

        try:
            items = parser_class(source).parse_raw_data(raw)
        except Exception as e:
            logger.error(f"Parser {parser_class.__name__} failed for {source.id}: {e}")
            return ParseResult(error=str(e), parser=parser_class.__name__)

        logger.debug(f"{parser_class.__name__} produced {len(items)} items for {source.id}")
        return ParseResult(items=items, parser=parser_class.__name__)

    def parse(self, raw: str, source: FeedSource) -> List[RawItem]:
        """Parse a payload, returning an empty list on any failure"""
        return self.dispatch(raw, source).items
