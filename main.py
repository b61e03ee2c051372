# main.py
# ──────────────────────────────────────────────────────────────────────────────
# Lead intake chat backend:
# - Conversation state machine lives in intake/ (pure, no I/O)
# - Sessions, SSE and lead export live in intake_api/
# - Streamlit chat client in ui/streamlit_app.py talks to this API
# Production notes:
#   • Run with: uvicorn main:app --host :: --port 8080
#   • Sessions are in memory; run a single worker
# ──────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

from intake_api.app import create_app
from intake_api.config import get_settings

load_dotenv()

settings = get_settings()

LOG_LEVEL = getattr(logging, settings.log_level.upper(), logging.INFO)
logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger("intake.main")

app = create_app(settings)


@app.get("/")
def root():
    return {"service": "lead-intake-chat", "health": "/health", "docs": "/docs"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="::",
        port=int(os.getenv("PORT", "8080")),
        reload=False,
        log_level=settings.log_level.lower(),
    )
