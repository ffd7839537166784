"""auth/ -- Identity provider adapters, auth-state observer and auth intent service.

Layer rule: auth/ imports from core/ (the kernel) and third-party libraries.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
