"""Auth/users module router aggregation."""
from abaops.routers import auth, roles, users

ROUTERS = [auth.router, users.router, roles.router]
