"""
Seeding assistant adapters.

A seeding assistant proposes an opening bracket. Its output is advisory:
DrawGenerator repairs or discards whatever comes back.
"""

from shiai.seeding.gemini import GeminiSeedingAssistant, build_prompt, parse_proposal

__all__ = ["GeminiSeedingAssistant", "build_prompt", "parse_proposal"]
