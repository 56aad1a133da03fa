from app.models.user import User
from app.models.payment import Payment
from app.models.subscription import Subscription
from app.models.fulfillment_order import FulfillmentOrder
from app.models.pod_order import PODOrder
from app.models.consultation_request import ConsultationRequest
from app.models.admin_log import AdminLog
from app.models.certificate import Certificate
from app.models.service_price import ServicePrice
from app.models.proposal import Proposal

__all__ = [
    "User",
    "Payment",
    "Subscription",
    "FulfillmentOrder",
    "PODOrder",
    "ConsultationRequest",
    "AdminLog",
    "Certificate",
    "ServicePrice",
    "Proposal",
]
