# orderpay/main.py
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .db import close_store, init_store
from .errors import OrderPayError
from .routes import admin, auth, orders, payments, products, webhooks
from .services.polling import cancel_background_polls
from .settings import settings
from .utils.logging import configure_logging, logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level, settings.log_json)
    await init_store()
    logger.info("startup", storage=settings.storage_backend, provider=settings.provider_backend)
    try:
        yield
    finally:
        await cancel_background_polls()
        await close_store()
        logger.info("shutdown")


app = FastAPI(title="OrderPay Reconciliation API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(OrderPayError)
async def _orderpay_error(request: Request, exc: OrderPayError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(orders.router)
app.include_router(payments.router)
app.include_router(webhooks.router)
app.include_router(products.router)
app.include_router(admin.router)
app.include_router(auth.router)


@app.get("/")
def root():
    return {"message": "OrderPay API is running"}


def run() -> None:
    import uvicorn

    uvicorn.run("orderpay.main:app", host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    run()
