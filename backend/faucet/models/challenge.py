from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from faucet.database import Base


class ChallengeSessionRow(Base):
    """SQL backing for one requester's challenge session (sql session backend)."""

    __tablename__ = "challenge_sessions"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    requested_amount: Mapped[float] = mapped_column(Float, nullable=False)
    challenge_token: Mapped[str] = mapped_column(String(8192), nullable=False)
    difficulty: Mapped[int] = mapped_column(Integer, nullable=False)
    rounds_required: Mapped[int] = mapped_column(Integer, nullable=False)
    rounds_completed: Mapped[int] = mapped_column(Integer, nullable=False)
    captcha_used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
