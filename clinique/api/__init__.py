"""
API orchestration boundary for Clinique backend.

Design intent:
- Expose thin, typed endpoints for consultation sessions and reports.
- Relay native speech-engine frames from the client into providers.
- Orchestrate modules without embedding domain logic in routers.
"""
