"""
auth — identity-provider session collaborator.

Provides:
  • Signed session token verification (``get_session``)
  • ``get_optional_session`` FastAPI dependency
"""
