"""
Medical entity extraction boundary for Clinique backend.

Design intent:
- Pull lightweight medical entities out of transcript text.
- Degrade to keyword matching whenever the LLM path is unavailable.
"""
