from sqlalchemy import JSON, Boolean, Column, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from .database import Base

# JSONB on postgres, plain JSON elsewhere (sqlite in tests)
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class BaseAuditMixin:
    """Reusable audit columns for all tables."""
    created_at = Column(String(40), nullable=False)
    updated_at = Column(String(40), nullable=False)


class RubricRecord(Base, BaseAuditMixin):
    __tablename__ = "rubrics"

    id = Column(String(100), primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    is_default = Column(Boolean, nullable=False, default=False, index=True)

    criteria = Column(JSONDocument, nullable=False, default=list)
    performance_levels = Column(JSONDocument, nullable=False, default=list)
