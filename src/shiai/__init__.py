"""
Shiai - Competition Progression Engine

Turns raw judge input into deterministic results for karate tournaments
and advances the round/bracket structure automatically. Covers two
disciplines: judged solo forms (kata) and head-to-head sparring (kumite).

Main components:
- scoring: Pure rule functions (forms windowing, sparring precedence)
- services: Score aggregation, forms rounds, sparring matches,
  bracket progression and draw generation
- seeding: Advisory seeding assistant adapters
- tasks: Background advancement and level-generation locks
- web: FastAPI JSON API
"""

__version__ = "1.0.0"
