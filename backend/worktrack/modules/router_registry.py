"""Mounts every module's routers on the app, auth first."""
from __future__ import annotations

from fastapi import FastAPI

from worktrack.modules.auth_users.router import ROUTERS as AUTH_USERS_ROUTERS
from worktrack.modules.field_work.router import ROUTERS as FIELD_WORK_ROUTERS
from worktrack.modules.sync.router import ROUTERS as SYNC_ROUTERS

ALL_ROUTERS = AUTH_USERS_ROUTERS + FIELD_WORK_ROUTERS + SYNC_ROUTERS


def include_all_routers(app: FastAPI) -> None:
    for router in ALL_ROUTERS:
        app.include_router(router)
