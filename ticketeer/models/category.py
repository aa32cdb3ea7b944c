"""
Category model. Events refer to categories by slug.
"""

from typing import Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class Category(Base):
    """A browsable grouping of events such as "music" or "theatre"."""

    __tablename__ = "categories"

    slug: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    def __repr__(self) -> str:
        return f"<Category(slug='{self.slug}', name='{self.name}')>"
