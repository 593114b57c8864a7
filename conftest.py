import os

# Load .env.test for tests if present (e.g. a MONGODB_URI for the live
# document-store tests). Everything else is configured per test.
from dotenv import load_dotenv

env_test_path = os.path.join(os.path.dirname(__file__), ".env.test")
if os.path.exists(env_test_path):
    load_dotenv(env_test_path, override=True)

from libs.common.config import get_settings

# Clear cached settings to reload with new env vars
get_settings.cache_clear()
