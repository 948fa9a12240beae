"""
Data models for storage layer.

Defines the usage ledger entity.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class UsageRecord:
    """Immutable record of one completed request.

    Append-only facts that make up the usage ledger. Once written, these
    records are never modified; they are only pruned after the retention
    horizon.
    """
    backend_name: str
    tokens_input: int
    tokens_output: int
    timestamp_millis: int
    cost_estimate: float

    @property
    def tokens_used(self) -> int:
        """Total tokens consumed (input + output)."""
        return self.tokens_input + self.tokens_output
