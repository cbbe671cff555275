"""Offline sync module router aggregation."""
from worktrack.routers import sync

ROUTERS = [sync.router]
