from __future__ import annotations

import worktrack.models  # noqa: F401  registers every table on Base.metadata
from worktrack.db.base import Base

target_metadata = Base.metadata
