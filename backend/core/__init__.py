"""Core mathematics and configuration for the sports analytics backend.

This package contains pure, sport-agnostic building blocks:

- ``odds_math``    - finite-number guards, American odds conversion, vig removal
- ``sport_config`` - sport code ↔ numeric id registry and season-year resolution

Nothing in this package imports from ``backend.services`` or ``backend.models``.
All modules are side-effect-free and unit-testable in isolation.
"""
