# src/deckchat/api/routes/slides.py
from __future__ import annotations

from fastapi import APIRouter

from deckchat.api.schemas import ParseRequest, ParseResponse, SlideOut
from deckchat.core.config import settings
from deckchat.document.slides import extract_title, parse_document

router = APIRouter()


@router.post("/api/slides/parse", response_model=ParseResponse)
def parse_slides(body: ParseRequest) -> ParseResponse:
    """
    Split a document into slides and separate audience text from presenter notes.
    {
      "title": "...",
      "slides": [{"index": 0, "visible": "# Title", "notes": "..."}]
    }
    """
    slides = parse_document(body.content, settings.INDENT_WIDTH)
    return ParseResponse(
        title=extract_title(body.content),
        slides=[SlideOut(index=i, visible=s.visible, notes=s.notes) for i, s in enumerate(slides)],
    )
