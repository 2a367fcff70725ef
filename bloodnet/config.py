import os
from pathlib import Path
from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'bloodnet')

JWT_SECRET = os.environ.get('JWT_SECRET', 'bloodnet-development-secret-change-me-in-production')
JWT_ALGORITHM = os.environ.get('JWT_ALGORITHM', 'HS256')

CORS_ORIGINS = [o.strip() for o in os.environ.get('CORS_ORIGINS', '*').split(',') if o.strip()]
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

DEFAULT_PAGE_LIMIT = int(os.environ.get('DEFAULT_PAGE_LIMIT', '20'))
MAX_PAGE_LIMIT = int(os.environ.get('MAX_PAGE_LIMIT', '1000'))

# Window used by the expiring-soon listing and dashboard when no ?days= is given
EXPIRING_SOON_DAYS = int(os.environ.get('EXPIRING_SOON_DAYS', '7'))
