"""
CardSnap — API Routes Package
==============================

Route Inventory:
    - capture.py:  POST /api/capture             (photo → editable draft)
    - cards.py:    /api/cards, /api/cards/{id}…  (CRUD, search, share, image)
                   GET /api/files/{path}         (stored card images)
    - health.py:   GET /health                   (service health check)

Routes are thin: they read the request, call a service and shape the
response. Ownership, visibility and pipeline rules live in the services.
"""
