"""Authentication and authorization.

Learn: One authentication path with two credentials:
1. email/password → access token (JWT, 15 min) + refresh token (JWT, 7 days)
2. refresh token → a new pair, the old refresh token is burned

The access token is stateless. The refresh token is also recorded
server-side (as a hash) so it can be rotated and revoked.
"""
