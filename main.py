import logging

from fastapi import FastAPI, status

from api.routers.users import users_router
from api.routers.admin import admin_router
from api.routers.assets import router as assets_router
from api.routers.routines import router as routines_router
from api.routers.work_order import router as work_orders_router
from api.routers.forms import router as forms_router
from api.routers.executions import router as executions_router
from api.utils.config import LOG_LEVEL

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Maintenance management service",
    description="Asset runtime, preventive routines, work orders and form executions",
    version="1",
    docs_url="/docs",
    openapi_url="/openapi.json",
)

# Mount routers
app.include_router(users_router, prefix="/api/v1", tags=["users"])
app.include_router(admin_router, prefix="/api/v1/admin", tags=["admin"])
app.include_router(assets_router, prefix="/api/v1")
app.include_router(routines_router, prefix="/api/v1")
app.include_router(work_orders_router, prefix="/api/v1")
app.include_router(forms_router, prefix="/api/v1")
app.include_router(executions_router, prefix="/api/v1")


@app.get("/ping", include_in_schema=True, status_code=status.HTTP_200_OK)
async def health():
    """
    Returns API health
    """
    return {"status": "ok", "ping": "pong"}
