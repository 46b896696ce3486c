"""
main.py
========
Central entry point for the CallShield service.

Run with:
    uvicorn main:app --reload
"""

import logging

from dotenv import load_dotenv

load_dotenv()  # Load .env before any CALLSHIELD_* variable is read

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

# Multipart parsing is noisy at DEBUG
logging.getLogger("multipart").setLevel(logging.WARNING)

from callshield.api.sessions import app  # noqa: F401, E402

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=True)
