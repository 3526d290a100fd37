import logging
import os

from fastapi import FastAPI

from reservation_billing.database import Base, engine
from reservation_billing.routes import router

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Reservation Subscription Payments")

app.include_router(router)

Base.metadata.create_all(bind=engine)


@app.get("/health")
def health_check():
    return {"status": "ok"}
