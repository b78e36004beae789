"""
Warehouse catalog sync service.

Domain Structure:
- sync/        - Catalog extraction, change detection, persistence, orchestration

Shared Infrastructure:
- config.py          - TOML + environment configuration
- logging_config.py  - Centralized logging
- middleware.py      - ASGI correlation ID and error boundary
- app.py             - HTTP trigger surface
"""
