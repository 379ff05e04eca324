import re
from typing import Optional

from sqlmodel import Session, select


def generate_slug(text: str) -> str:
    slug = text.lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[\s_-]+", "-", slug)
    return slug.strip("-")


def unique_slug(session: Session, model, text: str, exclude_id: Optional[int] = None) -> str:
    """Slug for ``text`` that no other row of ``model`` uses, suffixed -2, -3, ... on clashes."""
    base = generate_slug(text) or "item"
    slug = base
    suffix = 2
    while True:
        statement = select(model).where(model.slug == slug)
        if exclude_id is not None:
            statement = statement.where(model.id != exclude_id)
        if not session.exec(statement).first():
            return slug
        slug = f"{base}-{suffix}"
        suffix += 1
