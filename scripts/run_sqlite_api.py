"""Run API server with SQLite - bypassing .env file settings"""
import os
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Set environment variables BEFORE any imports
os.environ['USE_SQLITE'] = 'true'
# Remove Firebase settings that might be in .env
os.environ.pop('FIRESTORE_EMULATOR_HOST', None)
os.environ.pop('GOOGLE_APPLICATION_CREDENTIALS', None)
os.environ.pop('FIREBASE_SERVICE_ACCOUNT', None)

# Import the app directly (not as a string) so our env vars are preserved
from src.api.main import app, get_backend
from src.utils.logging import get_logger

import uvicorn

logger = get_logger("scripts.run_sqlite_api")

if __name__ == "__main__":
    backend = get_backend()
    logger.info(f"Starting API with local SQLite database at {backend['db_path']}")
    logger.info("API URL: http://localhost:8000")

    # Pass the app object directly, not as a string
    uvicorn.run(app, host="0.0.0.0", port=8000)
