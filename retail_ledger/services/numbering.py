"""Sequential document and payment numbers."""

from sqlalchemy import func, select
from sqlalchemy.orm import Session


def next_number(db: Session, column, prefix: str, width: int) -> str:
    """``prefix`` plus the zero-padded successor of the highest number stored under it.

    Numbers are read back from storage rather than counted, so deleted rows
    never free a number for reuse.
    """
    candidates = db.scalars(
        select(column)
        .where(
            column.like(f"{prefix}%"),
            func.length(column) == len(prefix) + width,
            column.between(prefix + "0" * width, prefix + "9" * width),
        )
        .order_by(column.desc())
    )
    last = 0
    for value in candidates:
        suffix = value[len(prefix):]
        if suffix.isdigit():
            last = int(suffix)
            break
    return f"{prefix}{last + 1:0{width}d}"
