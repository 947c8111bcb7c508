"""
connectors — YNAB OAuth integration.

Provides:
  • Authorization-URL generation and code / refresh grants (YnabConnector)
  • Single-use OAuth state tokens (OAuthStateStore)
  • Per-user encrypted token storage with refresh-on-read (TokenVault)
  • AES-256-GCM encryption of tokens at rest (TokenCipher)
  • Connect routes: authorize, callback, disconnect, status
"""
