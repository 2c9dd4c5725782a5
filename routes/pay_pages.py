from flask import Blueprint, current_app, g, request

from models import db
from models.payment import Payment
from services.settlement import mark_payment_failed

pay_pages_bp = Blueprint("pay_pages", __name__)

@pay_pages_bp.get("/pay/success")
def pay_success():
    # Simple page Stripe redirects to after payment
    base_url = current_app.config.get("FRONTEND_BASE_URL", "http://localhost:5173").rstrip("/")
    bookings_url = f"{base_url}/bookings"
    return """
    <html>
      <head><title>Payment Received</title></head>
      <body style="font-family: system-ui; max-width: 720px; margin: 40px auto;">
        <h1>Payment Received</h1>
        <p>Thanks! Your booking is confirmed as soon as the payment is settled, usually within a few seconds.</p>
        <p>You can return to the app and check <b>My Bookings</b>.</p>
        <a href=\"""" + bookings_url + """\" style="display: inline-block; padding: 12px 18px; background: #0ea5e9; color: white; text-decoration: none; border-radius: 8px; font-weight: 600;">Go to My Bookings</a>
      </body>
    </html>
    """, 200

@pay_pages_bp.get("/pay/cancel")
def pay_cancel():
    payment_id = request.args.get("payment_id", type=int)
    payment = db.session.get(Payment, payment_id) if payment_id else None
    user = getattr(g, "user", None)
    # only the payer may abandon their own checkout; anyone else waits for expiry
    if payment is not None and user is not None and payment.user_id == user.id:
        # holds stay until they lapse; the reaper frees them
        mark_payment_failed(payment_id, reason="PAYER_CANCELLED")

    return """
    <html>
      <head><title>Payment Cancelled</title></head>
      <body style="font-family: system-ui; max-width: 720px; margin: 40px auto;">
        <h1>Payment Cancelled</h1>
        <p>No payment was taken. Your selected times are released shortly and you can book again.</p>
      </body>
    </html>
    """, 200
