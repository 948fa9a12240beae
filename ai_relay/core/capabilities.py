"""
Capability and routing strategy enumerations.
"""

from enum import Enum


class Capability(str, Enum):
    """Task categories a backend can declare support for."""
    CODE_COMPLETION = "code-completion"
    CODE_EXPLANATION = "code-explanation"
    CODE_REFACTORING = "code-refactoring"
    BUG_FIXING = "bug-fixing"
    DOCUMENTATION = "documentation"
    GENERAL_CHAT = "general-chat"


class RoutingStrategy(str, Enum):
    """How the router orders backends that survived filtering."""
    COST_OPTIMIZED = "cost-optimized"
    PERFORMANCE_OPTIMIZED = "performance-optimized"
    BALANCED = "balanced"


ALL_CAPABILITIES = frozenset(Capability)


def parse_capability(value: str) -> Capability:
    """Parse a capability name, raising ValueError with the valid choices."""
    try:
        return Capability(value.lower())
    except ValueError:
        valid = [c.value for c in Capability]
        raise ValueError(f"Unknown capability '{value}', must be one of: {valid}")
