from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship

Base = declarative_base()


class Organization(Base):
    __tablename__ = "workout_organizations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    clients: Mapped[list["Client"]] = relationship("Client", back_populates="organization")


class Client(Base):
    __tablename__ = "workout_clients"
    __table_args__ = (
        CheckConstraint("length(trim(full_name)) > 0", name="ck_workout_clients_full_name"),
        Index("ix_workout_clients_org_created", "organization_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    full_name: Mapped[str] = mapped_column(String(1000), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    age: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    sex: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    height_cm: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    weight_kg: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    goals: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    injuries: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    equipment_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    preferences_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    organization_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("workout_organizations.id"), nullable=True, index=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    organization: Mapped[Optional[Organization]] = relationship("Organization", back_populates="clients")


class WorkoutFeedback(Base):
    __tablename__ = "workout_feedback"
    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_workout_feedback_rating"),
        Index("ix_workout_feedback_workout_created", "workout_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    workout_id: Mapped[str] = mapped_column(String(128), nullable=False)
    workout_title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    client_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    client_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    scope: Mapped[str] = mapped_column(String(16), nullable=False, default="general")
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="general")
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    feedback: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False, index=True)
