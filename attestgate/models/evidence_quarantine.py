"""EvidenceQuarantine ORM: rejected evidence submissions, kept for forensics only."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from attestgate.db.session import Base
from attestgate.db.types import JSONType, UTCDateTime


class EvidenceQuarantine(Base):
    """One quarantined payload (failed validation or authentication). Never evaluated."""

    __tablename__ = "evidence_quarantine"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=lambda: datetime.now(UTC), nullable=False
    )
