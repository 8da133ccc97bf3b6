from datetime import datetime

from sqlalchemy import DateTime
from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy.sql import func

from utils.time import utc_now

# declarative_base() returns a new base class from which all mapped classes should inherit.
# This object is the registry for all our table models.
Base = declarative_base()


class BaseModel(Base):
    """
    An abstract base model that provides the audit timestamps shared by all tables.

    Primary keys are declared by each model: users get an auto-incrementing
    integer, rentals carry an id generated by the client before any remote call.
    """
    __abstract__ = True  # This tells SQLAlchemy not to create a table for BaseModel itself.

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        comment="The time the record was created (UTC)"
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        onupdate=utc_now,
        comment="The time the record was last updated (UTC)"
    )
