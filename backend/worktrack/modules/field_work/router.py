"""Field work module router aggregation."""
from worktrack.routers import biometrics, geofences, work_sessions

ROUTERS = [biometrics.router, work_sessions.router, geofences.router]
