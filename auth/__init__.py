"""auth/ -- Access-control core for Lectoria.

Password hashing, login lockout, session tokens, the authorization gate, the
audit log and the user store all live here.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/ or library/.
api/ and library/ import from auth/, not the other way around.
"""
