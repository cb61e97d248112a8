"""
Patient report boundary for Clinique backend.

Design intent:
- Persist generated consultation reports as a small JSON collection.
- Keep report assembly deterministic from transcript and entities.
"""
