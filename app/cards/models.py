from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Float, Boolean
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.database import Base
from app.cards.spaced_repetition import INITIAL_DIFFICULTY, ReviewState


class Folder(Base):
    __tablename__ = "folders"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    color = Column(String(50), nullable=True)
    parent_id = Column(Integer, ForeignKey("folders.id", ondelete="CASCADE"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    decks = relationship("Deck", back_populates="folder")
    children = relationship("Folder", back_populates="parent", cascade="all, delete-orphan")
    parent = relationship("Folder", back_populates="children", remote_side=[id])


class Deck(Base):
    __tablename__ = "decks"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    folder_id = Column(Integer, ForeignKey("folders.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    folder = relationship("Folder", back_populates="decks")
    flashcards = relationship("Flashcard", back_populates="deck", cascade="all, delete-orphan")
    study_sessions = relationship("StudySession", back_populates="deck", cascade="all, delete-orphan")


class Flashcard(Base):
    """
    A single flashcard together with its spaced repetition state.
    """
    __tablename__ = "flashcards"

    id = Column(Integer, primary_key=True, index=True)
    deck_id = Column(Integer, ForeignKey("decks.id", ondelete="CASCADE"), nullable=False)
    front_content = Column(Text, nullable=False)
    back_content = Column(Text, nullable=False)
    front_image_url = Column(String(1024), nullable=True)
    back_image_url = Column(String(1024), nullable=True)

    # SM-2 fields
    difficulty = Column(Float, default=INITIAL_DIFFICULTY, nullable=False)  # Ease factor
    review_count = Column(Integer, default=0, nullable=False)
    correct_count = Column(Integer, default=0, nullable=False)

    # Review scheduling - new cards are due right away
    next_review_date = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    last_review_date = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    deck = relationship("Deck", back_populates="flashcards")
    study_sessions = relationship("StudySession", back_populates="flashcard", cascade="all, delete-orphan")

    def review_state(self) -> ReviewState:
        """Snapshot of the review fields for the scheduler."""
        return ReviewState(
            difficulty=self.difficulty if self.difficulty is not None else INITIAL_DIFFICULTY,
            review_count=self.review_count or 0,
            correct_count=self.correct_count or 0,
            last_review_date=self.last_review_date,
        )


class StudySession(Base):
    """
    One answered card inside a study session.
    """
    __tablename__ = "study_sessions"

    id = Column(Integer, primary_key=True, index=True)
    deck_id = Column(Integer, ForeignKey("decks.id", ondelete="CASCADE"), nullable=False)
    flashcard_id = Column(Integer, ForeignKey("flashcards.id", ondelete="CASCADE"), nullable=False)

    was_correct = Column(Boolean, nullable=False)
    response_time_ms = Column(Integer, nullable=True)
    difficulty_before = Column(Float, nullable=True)
    difficulty_after = Column(Float, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    deck = relationship("Deck", back_populates="study_sessions")
    flashcard = relationship("Flashcard", back_populates="study_sessions")
