from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from sqlalchemy import func as sql_func

from app.config import get_settings
from app.database import get_db
from app.cards.models import Flashcard, Deck, Folder
from app.cards.schemas import (
    FlashcardCreate,
    FlashcardUpdate,
    FlashcardResponse,
    DeckCreate,
    DeckUpdate,
    DeckResponse,
    FolderCreate,
    FolderUpdate,
    FolderResponse,
    StudyStats,
    StudyQueueRequest,
    CardReviewSubmit,
    CardReviewResult,
    StudySessionResponse,
)
from app.cards.study_service import StudyService

router = APIRouter(prefix="/cards", tags=["Cards"])

settings = get_settings()


def get_deck_or_404(deck_id: int, db: Session) -> Deck:
    deck = db.query(Deck).filter(Deck.id == deck_id).first()
    if not deck:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Deck not found"
        )
    return deck


def get_folder_or_404(folder_id: int, db: Session, detail: str = "Folder not found") -> Folder:
    folder = db.query(Folder).filter(Folder.id == folder_id).first()
    if not folder:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
    return folder


def get_card_or_404(card_id: int, db: Session) -> Flashcard:
    card = db.query(Flashcard).filter(Flashcard.id == card_id).first()
    if not card:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Card not found"
        )
    return card


def deck_to_response(deck: Deck, card_count: int) -> dict:
    return {
        "id": deck.id,
        "name": deck.name,
        "description": deck.description,
        "folder_id": deck.folder_id,
        "created_at": deck.created_at,
        "card_count": card_count
    }


# ============== FOLDER ENDPOINTS ==============

@router.post("/folders", response_model=FolderResponse, status_code=status.HTTP_201_CREATED)
async def create_folder(
    folder: FolderCreate,
    db: Session = Depends(get_db)
):
    """Create a new folder."""
    if folder.parent_id is not None:
        get_folder_or_404(folder.parent_id, db, detail="Parent folder not found")

    db_folder = Folder(name=folder.name, color=folder.color, parent_id=folder.parent_id)
    db.add(db_folder)
    db.commit()
    db.refresh(db_folder)
    return db_folder


@router.get("/folders", response_model=List[FolderResponse])
async def get_folders(db: Session = Depends(get_db)):
    """Get all folders."""
    return db.query(Folder).order_by(Folder.created_at.asc(), Folder.id.asc()).all()


@router.put("/folders/{folder_id}", response_model=FolderResponse)
async def update_folder(
    folder_id: int,
    folder_data: FolderUpdate,
    db: Session = Depends(get_db)
):
    """
    Update a folder (rename, change color, move).

    Sending "parent_id": null explicitly moves the folder to the root.
    """
    db_folder = get_folder_or_404(folder_id, db)
    update_data = folder_data.model_dump(exclude_unset=True)

    parent_id = update_data.get("parent_id")
    if parent_id is not None:
        if parent_id == folder_id:
            raise HTTPException(status_code=400, detail="Cannot move folder inside itself")

        parent = get_folder_or_404(parent_id, db, detail="Parent folder not found")

        # Walk up from the new parent; meeting this folder means a cycle
        ancestor = parent.parent
        while ancestor is not None:
            if ancestor.id == folder_id:
                raise HTTPException(status_code=400, detail="Cannot move folder inside its own subfolder")
            ancestor = ancestor.parent

    for field, value in update_data.items():
        if field == "name" and value is None:
            continue
        setattr(db_folder, field, value)

    db.commit()
    db.refresh(db_folder)
    return db_folder


@router.delete("/folders/{folder_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_folder(
    folder_id: int,
    db: Session = Depends(get_db)
):
    """Delete a folder and its subfolders. Decks inside are kept and lose their folder."""
    folder = get_folder_or_404(folder_id, db)
    db.delete(folder)
    db.commit()
    return None


# ============== DECK ENDPOINTS ==============

@router.post("/decks", response_model=DeckResponse, status_code=status.HTTP_201_CREATED)
async def create_deck(
    deck: DeckCreate,
    db: Session = Depends(get_db)
):
    """Create a new empty deck."""
    if deck.folder_id is not None:
        get_folder_or_404(deck.folder_id, db)

    db_deck = Deck(name=deck.name, description=deck.description, folder_id=deck.folder_id)
    db.add(db_deck)
    db.commit()
    db.refresh(db_deck)

    return deck_to_response(db_deck, 0)


@router.get("/decks", response_model=List[DeckResponse])
async def get_decks(
    folder_id: Optional[int] = Query(None, description="Filter by folder ID"),
    db: Session = Depends(get_db)
):
    """Get all decks, optionally filtered by folder."""
    # Card count subquery to avoid N+1
    card_count_subq = (
        db.query(Flashcard.deck_id, sql_func.count(Flashcard.id).label("card_count"))
        .group_by(Flashcard.deck_id)
        .subquery()
    )

    query = (
        db.query(Deck, sql_func.coalesce(card_count_subq.c.card_count, 0).label("card_count"))
        .outerjoin(card_count_subq, Deck.id == card_count_subq.c.deck_id)
    )
    if folder_id is not None:
        query = query.filter(Deck.folder_id == folder_id)

    decks_with_counts = query.order_by(Deck.created_at.desc(), Deck.id.desc()).all()
    return [deck_to_response(deck, card_count) for deck, card_count in decks_with_counts]


@router.get("/decks/{deck_id}", response_model=DeckResponse)
async def get_deck(
    deck_id: int,
    db: Session = Depends(get_db)
):
    """Get a specific deck by ID."""
    deck = get_deck_or_404(deck_id, db)
    card_count = db.query(sql_func.count(Flashcard.id)).filter(Flashcard.deck_id == deck_id).scalar() or 0
    return deck_to_response(deck, card_count)


@router.put("/decks/{deck_id}", response_model=DeckResponse)
async def update_deck(
    deck_id: int,
    deck_update: DeckUpdate,
    db: Session = Depends(get_db)
):
    """Update a deck (name, description or folder)."""
    deck = get_deck_or_404(deck_id, db)

    if deck_update.folder_id is not None:
        if deck_update.folder_id > 0:
            get_folder_or_404(deck_update.folder_id, db)
            deck.folder_id = deck_update.folder_id
        else:
            # If 0 (or negative), remove from folder
            deck.folder_id = None

    if deck_update.name is not None:
        deck.name = deck_update.name
    if deck_update.description is not None:
        deck.description = deck_update.description

    db.commit()
    db.refresh(deck)
    card_count = db.query(sql_func.count(Flashcard.id)).filter(Flashcard.deck_id == deck_id).scalar() or 0
    return deck_to_response(deck, card_count)


@router.delete("/decks/{deck_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_deck(
    deck_id: int,
    db: Session = Depends(get_db)
):
    """Delete a deck and all its cards."""
    deck = get_deck_or_404(deck_id, db)
    db.delete(deck)
    db.commit()
    return None


@router.post("/decks/{deck_id}/cards", response_model=FlashcardResponse, status_code=status.HTTP_201_CREATED)
async def create_card(
    deck_id: int,
    card: FlashcardCreate,
    db: Session = Depends(get_db)
):
    """Add a flashcard to a deck. New cards are due immediately."""
    get_deck_or_404(deck_id, db)

    if not card.front_content.strip() or not card.back_content.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Both sides of the card need content"
        )

    db_card = Flashcard(deck_id=deck_id, **card.model_dump())
    db.add(db_card)
    db.commit()
    db.refresh(db_card)
    return db_card


# ============== STUDY ENDPOINTS ==============

@router.get("/study/{deck_id}/stats", response_model=StudyStats)
async def get_study_stats(
    deck_id: int,
    db: Session = Depends(get_db)
):
    """Get study statistics for a deck."""
    get_deck_or_404(deck_id, db)
    return StudyService.get_study_stats(deck_id, db)


@router.post("/study/queue", response_model=List[FlashcardResponse])
async def get_study_queue(
    queue_request: StudyQueueRequest,
    db: Session = Depends(get_db)
):
    """
    Build the ordered card list for a study session.

    - **deck_id**: ID of the deck to study
    - **mode**: "due", "normal", "shuffle" or "learning"
    - **card_ids**: Cards to restrict to (learning mode)
    - **limit**: Max cards to return
    """
    get_deck_or_404(queue_request.deck_id, db)

    limit = queue_request.limit or settings.STUDY_QUEUE_LIMIT
    try:
        return StudyService.build_study_queue(
            queue_request.deck_id,
            db,
            mode=queue_request.mode,
            card_ids=queue_request.card_ids,
            limit=limit,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("/study/review", response_model=CardReviewResult)
async def submit_study_review(
    review: CardReviewSubmit,
    db: Session = Depends(get_db)
):
    """
    Submit the answer for a card and reschedule it.

    - **card_id**: ID of the reviewed card
    - **was_correct**: Whether the user knew the answer
    - **response_time_ms**: Time taken to answer, in milliseconds
    """
    card = get_card_or_404(review.card_id, db)
    return StudyService.save_card_response(card, review.was_correct, review.response_time_ms, db)


@router.get("/study/{deck_id}/history", response_model=List[StudySessionResponse])
async def get_study_history(
    deck_id: int,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db)
):
    """Get the latest recorded answers for a deck."""
    get_deck_or_404(deck_id, db)
    return StudyService.get_session_history(deck_id, db, limit=limit)


# ============== CARD ENDPOINTS ==============

@router.get("/", response_model=List[FlashcardResponse])
async def get_cards(
    deck_id: Optional[int] = Query(None, description="Filter by deck ID"),
    db: Session = Depends(get_db)
):
    """Get all cards, optionally filtered by deck."""
    query = db.query(Flashcard)

    if deck_id is not None:
        query = query.filter(Flashcard.deck_id == deck_id)

    return query.order_by(Flashcard.created_at.desc(), Flashcard.id.desc()).all()


@router.get("/{card_id}", response_model=FlashcardResponse)
async def get_card(
    card_id: int,
    db: Session = Depends(get_db)
):
    """Get a specific card by ID."""
    return get_card_or_404(card_id, db)


@router.put("/{card_id}", response_model=FlashcardResponse)
async def update_card(
    card_id: int,
    card_update: FlashcardUpdate,
    db: Session = Depends(get_db)
):
    """Update a card's content. Review state is left alone."""
    card = get_card_or_404(card_id, db)

    for field, value in card_update.model_dump(exclude_unset=True).items():
        setattr(card, field, value)

    db.commit()
    db.refresh(card)
    return card


@router.delete("/{card_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_card(
    card_id: int,
    db: Session = Depends(get_db)
):
    """Delete a card."""
    card = get_card_or_404(card_id, db)
    db.delete(card)
    db.commit()
    return None
