"""
Advisory Text Classifier

Pure string-processing utility that pulls a severity level, the first CVE
identifier and topic tags out of free advisory text (title + description).
Parsers and the DataNormalizer call classify(); FeedManager caches results
by content hash.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

SEVERITY_LEVELS = ('CRITICAL', 'HIGH', 'MEDIUM', 'LOW')

CVE_PATTERN = re.compile(r'CVE-\d{4}-\d+', re.IGNORECASE)

# Checked in order; the first level found wins
SEVERITY_PATTERNS = [
    (level, re.compile(rf'\b{level}\b', re.IGNORECASE)) for level in SEVERITY_LEVELS
]

TAG_PATTERNS = [
    (re.compile(r'ransomware', re.IGNORECASE), 'ransomware'),
    (re.compile(r'phishing', re.IGNORECASE), 'phishing'),
    (re.compile(r'malware', re.IGNORECASE), 'malware'),
    (re.compile(r'\bapt[\s-]?\d*\b', re.IGNORECASE), 'apt'),
    (re.compile(r'zero[\s-]?day', re.IGNORECASE), 'zero-day'),
    (re.compile(r'\brce\b|remote[\s-]?code', re.IGNORECASE), 'rce'),
    (re.compile(r'\b(?:scada|ics|industrial)\b', re.IGNORECASE), 'industrial'),
    (re.compile(r'\b(?:cloud|aws|azure|gcp)\b', re.IGNORECASE), 'cloud'),
]


@dataclass
class Classification:
    """Result of classifying a piece of advisory text"""
    severity: Optional[str] = None
    cve: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    def to_dict(self):
        return {'severity': self.severity, 'cve': self.cve, 'tags': list(self.tags)}

    @classmethod
    def from_dict(cls, data):
        return cls(severity=data.get('severity'), cve=data.get('cve'),
                   tags=list(data.get('tags') or []))


def extract_cve(text: Optional[str]) -> Optional[str]:
    """First CVE identifier in text, uppercased"""
    if not text:
        return None
    match = CVE_PATTERN.search(text)
    return match.group(0).upper() if match else None


def extract_cve_ids(text: Optional[str]) -> List[str]:
    """All distinct CVE identifiers in order of appearance"""
    if not text:
        return []
    seen = []
    for match in CVE_PATTERN.findall(text):
        cve = match.upper()
        if cve not in seen:
            seen.append(cve)
    return seen


def extract_severity(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    for level, pattern in SEVERITY_PATTERNS:
        if pattern.search(text):
            return level
    return None


def extract_tags(text: Optional[str]) -> List[str]:
    if not text:
        return []
    return [tag for pattern, tag in TAG_PATTERNS if pattern.search(text)]


def classify(text: Optional[str]) -> Classification:
    return Classification(
        severity=extract_severity(text),
        cve=extract_cve(text),
        tags=extract_tags(text),
    )
