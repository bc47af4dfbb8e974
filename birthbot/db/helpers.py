"""Database session helpers."""

from sqlalchemy.orm import Session


def commit_and_refresh(db: Session, *instances) -> None:
    """Commit the transaction and refresh each given (non-None) instance."""
    db.commit()
    for obj in instances:
        if obj is not None:
            db.refresh(obj)
