from sqlalchemy import JSON, Column, DateTime, Float, Integer, String, func

from src.common.db import Base


class NavigationSessionRecord(Base):
    __tablename__ = "navigation_sessions"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), index=True)
    group_session_id = Column(String(64), index=True)
    status = Column(String(20), nullable=False)
    route = Column(JSON, nullable=False)
    current_step_index = Column(Integer, nullable=False, default=0)
    distance_traveled_m = Column(Float, nullable=False, default=0.0)
    elapsed_s = Column(Float, nullable=False, default=0.0)
    started_at = Column(DateTime(timezone=True))
    ended_at = Column(DateTime(timezone=True))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
