from .health import health_bp
from .votes import votes_bp
from .admin import admin_bp
