"""
Custom Exceptions for the Advisory Feed Ingestion Engine

Purpose: Standardized error handling across all feed sources
Usage: Fetchers, parsers and the source registry raise these; FeedManager
catches them at the per-source boundary so no single source can abort an
aggregate fetch.

Exception Hierarchy:
- FeedSourceException (base)
  ├── FetchException (transport errors: timeout, non-2xx, network)
  ├── ParseException (malformed payload for the expected format)
  ├── ConfigException (bad or missing feed configuration)
  └── ValidationException (item failed normalization checks)

The message of each exception is what ends up in HealthRecord.last_error,
prefixed with the source name when one is known.
"""

from typing import Any, Dict, Optional


class FeedSourceException(Exception):
    """Base exception for all feed source operations"""

    def __init__(self, message: str, source_name: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        self.source_name = source_name
        self.details = details or {}
        super().__init__(message)

    def __str__(self):
        if self.source_name:
            return f"[{self.source_name}] {super().__str__()}"
        return super().__str__()


class FetchException(FeedSourceException):
    """
    A feed could not be retrieved

    url is always the feed's origin URL, never the proxy relay URL, so health
    output points at the publisher. status_code is the HTTP status seen by
    the client (a 502 from the relay means the upstream answered non-2xx);
    it is None for timeouts and connection errors.
    """

    def __init__(self, message: str, source_name: Optional[str] = None,
                 status_code: Optional[int] = None, url: Optional[str] = None,
                 timed_out: bool = False, **kwargs):
        self.status_code = status_code
        self.url = url
        self.timed_out = timed_out
        details = {'status_code': status_code, 'url': url, 'timed_out': timed_out, **kwargs}
        super().__init__(message, source_name, details)


class ParseException(FeedSourceException):
    """
    A fetched payload does not match the feed's transport format

    raw_data_sample holds the first couple hundred characters of the
    payload, enough to tell an HTML error page from a truncated document.
    """

    def __init__(self, message: str, source_name: Optional[str] = None,
                 raw_data_sample: Optional[str] = None, **kwargs):
        self.raw_data_sample = raw_data_sample
        details = {'raw_data_sample': raw_data_sample, **kwargs}
        super().__init__(message, source_name, details)


class ConfigException(FeedSourceException):
    """A feed definition is unusable; config_key names the offending field"""

    def __init__(self, message: str, source_name: Optional[str] = None,
                 config_key: Optional[str] = None, **kwargs):
        self.config_key = config_key
        details = {'config_key': config_key, **kwargs}
        super().__init__(message, source_name, details)


class ValidationException(FeedSourceException):
    """A raw parsed entry cannot become a FeedItem; the entry is dropped"""

    def __init__(self, message: str, source_name: Optional[str] = None,
                 validation_field: Optional[str] = None, **kwargs):
        self.validation_field = validation_field
        details = {'validation_field': validation_field, **kwargs}
        super().__init__(message, source_name, details)
