"""Community program module router aggregation."""
from abaops.routers import community

ROUTERS = [community.router]
