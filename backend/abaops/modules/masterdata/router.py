"""Master data module router aggregation."""
from abaops.routers import bcba_insurance, bcbas, clients, forms, insurance, providers

ROUTERS = [providers.router, clients.router, bcbas.router, insurance.router, bcba_insurance.router, forms.router]
