from fastapi import APIRouter

from stockledger.app.api.v1.endpoints.health import router as health_router
from stockledger.app.api.v1.endpoints.deliveries import router as deliveries_router
from stockledger.app.api.v1.endpoints.issues import router as issues_router
from stockledger.app.api.v1.endpoints.transfers import router as transfers_router
from stockledger.app.api.v1.endpoints.requisitions import router as requisitions_router
from stockledger.app.api.v1.endpoints.purchase_orders import router as purchase_orders_router
from stockledger.app.api.v1.endpoints.periods import router as periods_router
from stockledger.app.api.v1.endpoints.stock import router as stock_router
from stockledger.app.api.v1.endpoints.locations import router as locations_router
from stockledger.app.api.v1.endpoints.items import router as items_router
from stockledger.app.api.v1.endpoints.suppliers import router as suppliers_router
from stockledger.app.api.v1.endpoints.ncrs import router as ncrs_router
from stockledger.app.api.v1.endpoints.pob import router as pob_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(deliveries_router, tags=["deliveries"])
router.include_router(issues_router, tags=["issues"])
router.include_router(transfers_router, tags=["transfers"])
router.include_router(requisitions_router, tags=["requisitions"])
router.include_router(purchase_orders_router, tags=["purchase_orders"])
router.include_router(periods_router, tags=["periods"])
router.include_router(pob_router, tags=["periods"])
router.include_router(ncrs_router, tags=["ncrs"])
router.include_router(stock_router, tags=["stock"])
router.include_router(locations_router, tags=["master_data"])
router.include_router(items_router, tags=["master_data"])
router.include_router(suppliers_router, tags=["master_data"])
