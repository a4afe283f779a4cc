"""
Flask extensions shared by the ledger.

Instantiated unbound here; create_app() attaches them with init_app().
"""

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

db = SQLAlchemy()
migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # No global limit, per-route only
    storage_uri="memory://",
)
