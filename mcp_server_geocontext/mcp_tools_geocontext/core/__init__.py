from .errors import (  # noqa: F401
    ConfigurationError,
    GeoContextError,
    GeometryError,
    InvalidRequestError,
    ProviderError,
)
from .schemas import (  # noqa: F401
    GeoPin,
    Location,
    PinData,
    PinMetadata,
    PinType,
    RouteRequest,
    RouteResponse,
    Webhook,
    WebhookDelivery,
    WebhookEvent,
    WebhookPayload,
)
