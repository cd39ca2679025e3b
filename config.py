"""
Configuration for Goal Dashboard
Set these environment variables or edit secrets.json

Firebase (document store + accounts), Google OAuth (Google Fit) and Gemini
(goal suggestions) are all optional; without Firebase the dashboard runs in
demo mode on an in-memory store with local accounts.
"""

import os
import json
import logging
from pathlib import Path

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).parent

# Load secrets from json file if exists
SECRETS_FILE = BASE_DIR / "secrets.json"
secrets = {}
if SECRETS_FILE.exists():
    with open(SECRETS_FILE) as f:
        secrets = json.load(f)


def get_secret(key, default=''):
    """Get secret from env var or secrets file"""
    # Support conventional uppercase env vars (e.g. FIREBASE_API_KEY) while keeping
    # lowercase secrets.json keys (e.g. firebase_api_key).
    return os.getenv(key) or os.getenv(key.upper()) or secrets.get(key, default)


# Firebase Configuration
FIREBASE_API_KEY = get_secret('firebase_api_key', '')
FIREBASE_CREDENTIALS = get_secret('firebase_credentials', '')
FIREBASE_PROJECT_ID = get_secret('firebase_project_id', '')
logger.info(f"Firebase configured: {bool(FIREBASE_API_KEY and FIREBASE_CREDENTIALS)}")

# Google OAuth (Google sign-in and Google Fit)
GOOGLE_CLIENT_ID = get_secret('google_client_id', '')
GOOGLE_CLIENT_SECRET = get_secret('google_client_secret', '')
GOOGLE_REDIRECT_URI = get_secret('google_redirect_uri', 'http://localhost:5000/auth/google/callback')
logger.info(f"Google OAuth configured: {bool(GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET)}")

# Gemini (goal suggestions)
GEMINI_API_KEY = get_secret('gemini_api_key', '')
GEMINI_MODEL = get_secret('gemini_model', 'gemini-2.0-flash')

# Flask Configuration
FLASK_HOST = os.getenv('FLASK_HOST', '0.0.0.0')
FLASK_PORT = int(os.getenv('PORT', get_secret('port', 5000)))
FLASK_DEBUG = os.getenv('FLASK_DEBUG', str(get_secret('flask_debug', False))).lower() == 'true'
FLASK_SECRET_KEY = get_secret('flask_secret_key', '')

# Local storage
LOCAL_USERS_FILE = Path(get_secret('local_users_file', str(BASE_DIR / "users.json")))
LOG_DIR = Path(get_secret('log_dir', str(BASE_DIR / "logs")))

# Signed-in sessions idle this long are closed and forgotten
SESSION_IDLE_SECONDS = int(get_secret('session_idle_seconds', 12 * 60 * 60))

# Dashboard defaults
DEFAULT_STEP_GOAL = 8000
FIT_STEPS_GOAL = 10000
FIT_HEART_POINTS_GOAL = 150  # WHO weekly recommendation

# Demo Mode (if no Firebase configured)
DEMO_MODE = not (FIREBASE_API_KEY and FIREBASE_CREDENTIALS)
