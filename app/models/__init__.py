from app.models.user import User
from app.models.coupon import Coupon
from app.models.order import Order
from app.models.order_item import OrderItem
from app.models.order_status_history import OrderStatusHistory
from app.models.payment_method import SavedPaymentMethod

# add ALL models here
