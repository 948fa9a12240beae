"""
Core modules for AI Relay.

This package contains backend routing, quota tracking against free tiers,
and token-budgeted context assembly.
"""
