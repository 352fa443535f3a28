#!/usr/bin/env python3
"""Start the DepMend JSON API (POST /api/plan, GET /health)."""

import uvicorn

if __name__ == "__main__":
    print("DepMend API on http://localhost:8000 (docs at /docs)")

    uvicorn.run(
        "apps.web.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_dirs=["apps", "core"]
    )
