"""contracts/ -- Ownership facts for contracts, as consumed by the permission gate.

Contract field storage, status transitions and comment threads live outside
this repository. This package keeps only what authorization needs: which
client a contract belongs to and which employee it is assigned to.
"""
