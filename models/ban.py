from models.db import db

class Ban(db.Model):
    __tablename__ = "bans"

    # one row per client identifier; a new ban replaces the old one
    ip = db.Column(db.String(64), primary_key=True)
    banned_until = db.Column(db.DateTime, nullable=False)
