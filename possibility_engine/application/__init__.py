"""
Application Layer

- **app.py**: FastAPI application factory and entry point
- **api/**: Routes, request/response models, dependency injection
- **services/**: GenerationSession (the generation coordinator)
"""
