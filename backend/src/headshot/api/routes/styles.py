"""Style catalog API endpoint."""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from headshot.api.dependencies import get_style_catalog
from headshot.services.styles import STYLE_CATEGORIES, StyleCatalog

router = APIRouter(prefix="/api/styles", tags=["styles"])


class StyleDTO(BaseModel):
    id: str
    name: str
    description: str
    category: str


@router.get("", response_model=list[StyleDTO])
async def list_styles(
    category: str = Query(default="all", pattern=f"^({'|'.join(STYLE_CATEGORIES)})$"),
    catalog: StyleCatalog = Depends(get_style_catalog),
) -> list[StyleDTO]:
    """List available styles; prompts stay server-side."""
    return [
        StyleDTO(id=style.id, name=style.name, description=style.description, category=style.category)
        for style in catalog.list_styles(category)
    ]
