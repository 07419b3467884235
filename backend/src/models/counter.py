"""Named persistent counters used for sequential document numbers."""

from sqlalchemy import String, Integer
from sqlalchemy.orm import Mapped, mapped_column

from core.database import Base


class Counter(Base):
    """
    A monotonically increasing named sequence.

    Rows are locked with SELECT ... FOR UPDATE while incremented, so two
    concurrent bill creations never read the same value.
    """

    __tablename__ = "counters"

    name: Mapped[str] = mapped_column(String(100), primary_key=True)
    """Counter key, e.g. "bill_number:20240315"."""

    value: Mapped[int] = mapped_column(Integer, default=0)
    """Last value handed out."""
