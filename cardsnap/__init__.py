"""
CardSnap — Business Card Capture Service
=========================================

Captures business cards with a camera, normalizes the photo to card
geometry, recognizes the printed text and pre-fills contact fields that the
user confirms before the card is stored.

Architecture Note:

    ┌─────────────────────────────────────┐
    │     Routes (API) · CLI (Typer)      │  ← HTTP / terminal concerns only
    ├─────────────────────────────────────┤
    │      Services (Business Logic)      │  ← cards, sharing, storage, OCR engines
    ├─────────────────────────────────────┤
    │   Capture pipeline (cardsnap.capture)│  ← normalize → recognize → extract
    ├─────────────────────────────────────┤
    │    Models & Schemas (Data)          │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │    Database (Persistence)           │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘

    The capture pipeline does not import the web or database layers, so the
    CLI can run it without a server.
"""

__version__ = "1.0.0"
