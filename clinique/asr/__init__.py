"""
Transcript attribution boundary for Clinique backend.

Design intent:
- Attribute each finalized utterance to a consultation role.
- Resolve spoken language from provider hints and script ranges.
- Keep heuristic voice profiles scoped to a single recording.
"""
