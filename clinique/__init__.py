"""
Clinique backend package.

Design intent:
- Host the live-consultation speech service behind a small FastAPI surface.
- Keep domain modules (asr/events/note) independent from provider plumbing.
"""
