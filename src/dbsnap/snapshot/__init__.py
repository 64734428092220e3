from __future__ import annotations

__all__ = ["engine", "mongodb", "mysql", "postgres", "redis", "service"]

import dbsnap.snapshot.engine as engine
import dbsnap.snapshot.mongodb as mongodb
import dbsnap.snapshot.mysql as mysql
import dbsnap.snapshot.postgres as postgres
import dbsnap.snapshot.redis as redis
import dbsnap.snapshot.service as service
