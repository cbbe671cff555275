"""Auth module router aggregation."""
from worktrack.routers import auth

ROUTERS = [auth.router]
