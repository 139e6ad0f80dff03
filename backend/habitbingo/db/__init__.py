"""Database utilities and models."""

from habitbingo.db.base import Base
from habitbingo.db import models  # noqa: F401  (imported for side effects)

__all__ = ["Base"]
