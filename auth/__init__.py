"""auth/ -- Credential, permission and session engine for Enigma.

Layer rule: auth/ imports only stdlib + third-party libraries, plus
auth/dependencies.py which reads core.config for the admin grant.
api/ and main.py import from auth/, not the other way around.
"""
