"""
Code Duel - main entry point.
This file imports and runs the FastAPI application from the codeduel package.
"""
import os

import uvicorn

from codeduel.main import app

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
