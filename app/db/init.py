import asyncio

import certifi
import redis.asyncio as aioredis
from beanie import PydanticObjectId, init_beanie
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient

from app.core.config import get_settings
from app.core.exceptions import NotFoundError
from app.core.logging import get_logger
from app.models.admin_log import AdminLog
from app.models.certificate import Certificate
from app.models.consultation_request import ConsultationRequest
from app.models.counter import Counter
from app.models.fulfillment_order import FulfillmentOrder
from app.models.payment import Payment
from app.models.pod_order import PODOrder
from app.models.proposal import Proposal
from app.models.service_price import ServicePrice
from app.models.subscription import Subscription
from app.models.user import User

log = get_logger(__name__)

DOCUMENT_MODELS = [
    User,
    Payment,
    Subscription,
    FulfillmentOrder,
    PODOrder,
    ConsultationRequest,
    AdminLog,
    Certificate,
    ServicePrice,
    Proposal,
    Counter,
]

_client = None
_init_lock = asyncio.Lock()
_redis: aioredis.Redis | None = None


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db(client=None) -> None:
    """Open the document store once per process; later calls are no-ops."""
    global _client
    if _client is not None:
        return
    async with _init_lock:
        if _client is not None:
            return
        settings = get_settings()
        if client is None:
            # Atlas in Docker: tlsCAFile + tlsDisableOCSPEndpointCheck avoid TLSV1_ALERT_INTERNAL_ERROR
            kwargs = {}
            if _use_tls(settings.mongodb_uri):
                kwargs["tlsCAFile"] = certifi.where()
                kwargs["tlsDisableOCSPEndpointCheck"] = True
            client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
        await init_beanie(database=client[settings.mongodb_db_name], document_models=DOCUMENT_MODELS)
        _client = client
        log.info("db_initialized", db=settings.mongodb_db_name)


def get_redis() -> aioredis.Redis | None:
    """Shared Redis client, or None when REDIS_URL is not configured."""
    global _redis
    if _redis is None:
        url = get_settings().redis_url
        if not url:
            return None
        _redis = aioredis.from_url(url, decode_responses=True)
    return _redis


def reset_connections() -> None:
    global _client, _redis
    _client = None
    _redis = None


def parse_object_id(value: str, message: str = "Not found") -> PydanticObjectId:
    """Path ids that are not valid ObjectIds are reported as missing resources."""
    if not ObjectId.is_valid(value):
        raise NotFoundError(message)
    return PydanticObjectId(value)
