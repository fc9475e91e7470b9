"""auth/ -- Access-control package for Landing Gate.

Token lifecycle, path-based role authorization, identity persistence, and the
registration / login flows.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/ or core/. Configuration values are passed in
by the application at construction time.
api/ imports from auth/, not the other way around.
"""
