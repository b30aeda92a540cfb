"""
main.py

HTTP surface for the alerts backend: health check and manual workflow triggers.
Scheduled work runs in worker.py.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import models  # noqa: F401
from db import Base, engine
from routers.triggers import router as triggers_router


# =====================================================================
# SECTION START: FastAPI APP AND CORS
# =====================================================================

app = FastAPI(title="Flights Tracker Alerts")


@app.on_event("startup")
def on_startup():
    Base.metadata.create_all(bind=engine)


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(triggers_router)

# =====================================================================
# SECTION END: FastAPI APP AND CORS
# =====================================================================
