from .db import db
from .vote import Vote
from .ban import Ban
from .admin_session import AdminSession
from .audit_log import AuditLog
