from .concurrency import ConcurrencyController  # noqa: F401
from .route_enrichment import RouteEnrichmentPipeline  # noqa: F401
from .spatial_index import SpatialIndex  # noqa: F401
from .webhooks import WebhookManager  # noqa: F401
