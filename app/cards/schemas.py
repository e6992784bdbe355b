from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Optional, List


# Flashcard Schemas
class FlashcardBase(BaseModel):
    front_content: str
    back_content: str
    front_image_url: Optional[str] = None
    back_image_url: Optional[str] = None


class FlashcardCreate(FlashcardBase):
    pass


class FlashcardUpdate(BaseModel):
    front_content: Optional[str] = None
    back_content: Optional[str] = None
    front_image_url: Optional[str] = None
    back_image_url: Optional[str] = None


class FlashcardResponse(FlashcardBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    deck_id: int
    difficulty: float
    review_count: int
    correct_count: int
    next_review_date: Optional[datetime] = None
    last_review_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# Deck Schemas
class DeckBase(BaseModel):
    name: str
    description: Optional[str] = None


class DeckCreate(DeckBase):
    folder_id: Optional[int] = None


class DeckUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    folder_id: Optional[int] = None


class DeckResponse(DeckBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    folder_id: Optional[int] = None
    created_at: Optional[datetime] = None
    card_count: int = 0


# Folder Schemas
class FolderBase(BaseModel):
    name: str
    color: Optional[str] = None


class FolderCreate(FolderBase):
    parent_id: Optional[int] = None


class FolderUpdate(BaseModel):
    name: Optional[str] = None
    color: Optional[str] = None
    parent_id: Optional[int] = None


class FolderResponse(FolderBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    parent_id: Optional[int] = None
    created_at: Optional[datetime] = None


# Study Schemas
class StudyStats(BaseModel):
    """Statistics for a deck's study progress."""
    total: int
    new: int
    due: int
    reviewed_today: int
    accuracy: float


class StudyQueueRequest(BaseModel):
    """Request to build the card queue for a study session."""
    deck_id: int
    mode: str = "normal"  # "normal", "due", "shuffle", "learning"
    card_ids: Optional[List[int]] = None  # For "learning" mode
    limit: Optional[int] = Field(None, ge=1)


class CardReviewSubmit(BaseModel):
    """Submit the answer given for one card."""
    card_id: int
    was_correct: bool
    response_time_ms: Optional[float] = Field(None, ge=0, allow_inf_nan=False)


class CardReviewResult(BaseModel):
    saved: bool
    fallback: bool = False
    quality: Optional[int] = None
    interval: Optional[int] = None
    difficulty: Optional[float] = None
    next_review_date: Optional[datetime] = None
    review_count: Optional[int] = None
    correct_count: Optional[int] = None


class StudySessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    deck_id: int
    flashcard_id: int
    was_correct: bool
    response_time_ms: Optional[int] = None
    difficulty_before: Optional[float] = None
    difficulty_after: Optional[float] = None
    created_at: Optional[datetime] = None
