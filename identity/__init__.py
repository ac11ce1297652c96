"""identity/ -- User identity and access-control core.

Entities (User, Session), the Repository contract with its in-memory and SQL
stores, credential issuance, and the Use-Case layer that gates every read and
write on the caller's session and role.

Layer rule: identity/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/. api/ imports from identity/, not the other way
around.
"""
