"""
Showing model - a scheduled screening of a movie at a theater
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Date, Time, DateTime, UniqueConstraint
from sqlalchemy.orm import relationship

from showbuddy.core.database import Base, utcnow


class Showing(Base):
    __tablename__ = "showings"
    __table_args__ = (
        UniqueConstraint('theater_id', 'show_date', 'show_time', name='uq_showing_slot'),
    )

    id = Column(Integer, primary_key=True, index=True)
    movie_id = Column(String(64), nullable=False, index=True)
    movie_title = Column(String(300), nullable=False)
    theater_id = Column(String(64), nullable=False, index=True)
    theater_name = Column(String(300), nullable=False)
    show_date = Column(Date, nullable=False, index=True)
    show_time = Column(Time, nullable=False)
    seat_map_template = Column(String(50), nullable=False, default="standard")
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    seats = relationship("Seat", back_populates="showing", cascade="all, delete-orphan")

    def __repr__(self):
        return (f"<Showing(id={self.id}, movie='{self.movie_title}', "
                f"theater='{self.theater_name}', at='{self.starts_at}')>")

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.show_date, self.show_time)
