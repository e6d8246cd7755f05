"""Write / Skip decision for a keyword's merged SERP entries."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..schemas import DecisionConfig

WRITE = "Write"
SKIP = "Skip"
ERROR = "Error"


@dataclass(frozen=True)
class Decision:
    decision: str
    low_authority_count: int
    average_authority: float
    top_domains: List[str] = field(default_factory=list)


def decide(
    entries: List[Dict[str, Any]], config: Optional[DecisionConfig] = None
) -> Decision:
    """Apply the threshold rule.

    ``Write`` when at least ``min_low_authority_count`` entries have a domain
    authority below ``authority_threshold``. An empty set is a ``Skip`` with
    an average of 0. Top domains keep the original rank order.
    """
    config = config or DecisionConfig()
    scores = [float(entry.get("domain_authority") or 0) for entry in entries]

    low_count = sum(1 for score in scores if score < config.authority_threshold)
    average = sum(scores) / len(scores) if scores else 0.0

    if scores and low_count >= config.min_low_authority_count:
        verdict = WRITE
    else:
        verdict = SKIP

    top_domains = [entry["url"] for entry in entries[: config.top_n_domains]]
    return Decision(
        decision=verdict,
        low_authority_count=low_count,
        average_authority=round(average, 2),
        top_domains=top_domains,
    )
