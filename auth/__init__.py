"""auth/ -- Authentication and authorization package for TaskManager.

Credential Store (store.py), Token Issuer (tokens.py), Token Ledger
(ledger.py), Session Manager (session.py) and the Access Control Evaluator
(access.py).

Layer rule: auth/ imports from core/ and the pure data in tasks/models.py.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
