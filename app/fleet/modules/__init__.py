"""
Fleet feature modules.

Each module owns its models, service layer and routes (admin pages + JSON API),
reusing platform primitives (auth, RBAC, audit, storage, DB session).
"""
