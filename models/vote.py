from datetime import datetime
from models.db import db

class Vote(db.Model):
    __tablename__ = "votes"

    id = db.Column(db.Integer, primary_key=True)

    player_name = db.Column(db.String(255), nullable=False, index=True)
    # accent-stripped lowercase copy used by search
    player_name_normalized = db.Column(db.String(255), nullable=True, index=True)
    message = db.Column(db.Text, nullable=True)

    voted_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
