from flask_login import UserMixin
from sqlalchemy import func, text
from payledger.extensions import db, login_manager

class User(db.Model, UserMixin):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True)
    # Directory link used as the last user-resolution fallback for Stripe events
    stripe_customer_id = db.Column(db.String(64), nullable=True, unique=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, server_default=text("true"), default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def get_id(self) -> str:
        return str(self.id)

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} stripe_customer_id={self.stripe_customer_id!r}>"

@login_manager.user_loader
def load_user(user_id: str):
    try:
        return db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        return None
