"""
Services Layer

Tournament engine logic that:
- Accepts domain inputs (sessions, tournaments, ids)
- Returns domain outputs (models, dataclasses)
- Does NOT depend on HTTP request/response objects
- Raises courtside.services.errors types; routes map them to HTTP status codes
"""
