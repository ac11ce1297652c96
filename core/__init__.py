"""core/ -- Kernel package: configuration and structural validation.

Layer rule: core/ imports only stdlib + third-party libraries.
It does NOT import from identity/ or api/.
"""
