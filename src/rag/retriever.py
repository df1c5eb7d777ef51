"""Protocol retrieval by keyword match over a situation report."""

from typing import NamedTuple, Optional

from src.protocols.catalog import ProtocolCatalog, get_catalog
from src.schema import ProtocolName, RetrievalResult


class RetrievalRule(NamedTuple):
    protocol: ProtocolName
    keywords: tuple[str, ...]
    confidence: float


# Checked in order; the first rule with any keyword in the text wins.
RETRIEVAL_RULES: tuple[RetrievalRule, ...] = (
    RetrievalRule(
        ProtocolName.STRUCTURAL,
        ("collapse", "structural", "debris", "vibration"),
        0.98,
    ),
    RetrievalRule(
        ProtocolName.CHEMICAL,
        ("leak", "chemical", "toxic", "gas", "fumes"),
        0.96,
    ),
    RetrievalRule(
        ProtocolName.TRAFFIC,
        ("traffic", "collision", "vehicle", "crash", "highway"),
        0.94,
    ),
)

DEFAULT_PROTOCOL = ProtocolName.DEFAULT
DEFAULT_CONFIDENCE = 0.82


def match_protocol(summary: str) -> tuple[ProtocolName, float]:
    """Match a summary to a protocol name. Returns protocol name and confidence."""
    text_lower = summary.lower()

    for rule in RETRIEVAL_RULES:
        if any(keyword in text_lower for keyword in rule.keywords):
            return rule.protocol, rule.confidence

    return DEFAULT_PROTOCOL, DEFAULT_CONFIDENCE


class ProtocolRetriever:
    """Retrieve the safety protocol that grounds a dispatch decision."""

    def __init__(self, catalog: Optional[ProtocolCatalog] = None):
        """Initialize retriever.

        Args:
            catalog: Protocol catalog to resolve matches against (process-wide
                catalog if not specified)
        """
        self.catalog = catalog if catalog is not None else get_catalog()

    def retrieve(self, summary: str) -> RetrievalResult:
        """Retrieve the protocol for a situation report.

        Args:
            summary: SITREP text produced by the summarize stage

        Returns:
            RetrievalResult with the protocol and its confidence score

        Raises:
            UnknownProtocol: if the matched name is missing from the catalog
        """
        name, confidence = match_protocol(summary)
        return RetrievalResult(protocol=self.catalog.lookup(name), confidence=confidence)
