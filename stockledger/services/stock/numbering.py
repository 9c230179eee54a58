"""Sequential document numbers: <PREFIX>-<year>-NNN"""
from datetime import date

from sqlalchemy.orm import Session


def next_document_number(db: Session, number_column, prefix: str, on_date: date) -> str:
    """
    Next number in the yearly sequence for a document type

    The sequence restarts each year. Numbers beyond 999 keep growing
    (DLV-2026-1000).
    """
    stem = f"{prefix}-{on_date.year}-"
    existing = db.query(number_column).filter(number_column.like(f"{stem}%")).all()

    highest = 0
    for (number,) in existing:
        suffix = number[len(stem):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))

    return f"{stem}{highest + 1:03d}"
