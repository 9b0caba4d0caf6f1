"""
Authentication package for the authenticated API client.

This package contains token storage, the token codec, error classification,
the refresh-then-send request wrapper and the public auth operations.
"""
