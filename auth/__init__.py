"""auth/ -- Authentication core for AuthGate.

Token codec, ephemeral token lifecycle, OAuth account linking, sessions, CSRF.

Layer rule: auth/ imports only stdlib + third-party libraries + core/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
