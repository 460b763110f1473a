"""authcore — credential issuance and session management.

Password login, short-lived access tokens, rotating refresh tokens
and the cookie transport that carries them.
"""

__version__ = "0.1.0"
