"""
ASGI entry point for the front door.

    uvicorn server.asgi:app --app-dir backend

or, for local development, run this module directly from backend/.
"""

import os

from dotenv import load_dotenv

load_dotenv()

from server.app import create_app  # pylint: disable=wrong-import-position

app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "server.asgi:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_level=app.state.config.log_level.lower(),
    )
