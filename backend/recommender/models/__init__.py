"""SQLAlchemy models package.

All ORM classes are imported here so that `Base.metadata` is complete
regardless of import order.
"""

from recommender.models import kv_entry  # noqa: F401
