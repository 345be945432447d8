"""API routes package.

Routers are organized by domain and registered in main.py with the /api
prefix:

- cancellations: Cancellation requests and quotes
- refunds: Refund lifecycle, gateway callbacks and statistics
- disputes: Dispute cases
- policies: Cancellation policies
"""

from refund_api.routes.cancellations import router as cancellations_router
from refund_api.routes.disputes import router as disputes_router
from refund_api.routes.policies import router as policies_router
from refund_api.routes.refunds import router as refunds_router

__all__ = [
    "cancellations_router",
    "disputes_router",
    "policies_router",
    "refunds_router",
]
