from utils.clock import utcnow
from models.db import db
from models.enums import StaffAvailability

# association table for many-to-many User <-> Role
user_roles = db.Table(
    "user_roles",
    db.Column("user_id", db.Integer, db.ForeignKey("users.id"), primary_key=True),
    db.Column("role_id", db.Integer, db.ForeignKey("roles.id"), primary_key=True),
)

class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(120), nullable=True)
    phone_number = db.Column(db.String(30), nullable=True)

    # staff only: derived from active assignments unless manually switched off
    availability = db.Column(
        db.Enum(StaffAvailability, native_enum=False, length=20),
        nullable=False,
        default=StaffAvailability.AVAILABLE,
    )
    manual_unavailable = db.Column(db.Boolean, default=False, nullable=False)

    # switched off by an admin; such users cannot sign in
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    roles = db.relationship("Role", secondary=user_roles, back_populates="users")

    def has_role(self, name: str) -> bool:
        return any(r.name == name for r in self.roles)

class Role(db.Model):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False)  # e.g. CUSTOMER, PROVIDER, STAFF, ADMIN

    users = db.relationship("User", secondary=user_roles, back_populates="roles")
