from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")
os.environ.setdefault("ENABLE_TRACING", "false")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
