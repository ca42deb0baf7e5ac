"""auth/ -- Identity, credential and access control for ContractPortal.

Layer rule: auth/ imports only core/, stdlib and third-party libraries.
It does NOT import from api/ or contracts/.
api/ and contracts/ import from auth/, not the other way around.
"""
