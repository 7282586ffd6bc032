"""
CardSnap — Services Layer
==========================

What:  Business logic between routes (HTTP) and the database.

Service Inventory:
    - OcrEngine (abstract): text recognition contract (ocr_base)
    - TesseractOcrEngine / GeminiOcrEngine: concrete engines
    - create_ocr_engine: engine selection by name (ocr_factory)
    - FileService: upload validation, blob storage and cleanup
    - CaptureService: upload → pipeline → stored draft image
    - CardService: card CRUD, search and sharing
    - UserService: provisioning of proxy-authenticated users

Nothing is imported here; engine modules in particular are loaded only when
the factory selects them.
"""
