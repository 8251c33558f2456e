from __future__ import annotations
import os
import sys
import uvicorn

# --- Make sure ./src is on sys.path so `deckchat.*` is importable ---
BASE_DIR = os.path.dirname(__file__)        # points to "<repo>/src"
if BASE_DIR not in sys.path:
    sys.path.insert(0, BASE_DIR)

if __name__ == "__main__":
    os.environ.setdefault("SANDBOX_PROVIDER", "local")
    os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
    uvicorn.run("deckchat.main:app", host="0.0.0.0", port=int(os.environ.get("PORT", "8000")), reload=False)
