"""Database drivers. RethinkDBDriver lives in thinker.driver.rethinkdb_driver."""

from thinker.driver.base import Driver
from thinker.driver.memory import MemoryDriver

__all__ = ["Driver", "MemoryDriver"]
