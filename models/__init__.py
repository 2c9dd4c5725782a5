from .db import db
from .user import User, Role, user_roles
from .audit_log import AuditLog
from .session import Session
from .business import BusinessProfile, ProviderPlan, ProviderSubscription
from .service import Service
from .slot import Slot
from .cart import CartItem, Address
from .payment import Payment
from .booking import Booking
from .cancellation import Cancellation
from .staff_assignment import StaffAssignment, StaffEarning
from .notification import Notification
