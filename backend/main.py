import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from sqlalchemy import inspect, text

import cart
import dashboard
import inquiries
import notifications
import points
import products
import purchases
import reviews
import stores
import uploads
import users
from config import DATABASE_URL, FRONTEND_URL, LOG_LEVEL, PORT, UPLOAD_DIR, warn_insecure_defaults
from database import engine, init_db
from errors import register_error_handlers

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    warn_insecure_defaults()
    init_db()
    logger.info("Database ready")
    yield


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed = (time.perf_counter() - started) * 1000
    logger.info("%s %s -> %s (%.1fms)", request.method, request.url.path, response.status_code, elapsed)
    return response


register_error_handlers(app)

for module in (users, points, stores, products, cart, purchases, reviews, inquiries, notifications,
               dashboard, uploads):
    app.include_router(module.router)
app.include_router(users.auth_router)

os.makedirs(UPLOAD_DIR, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=UPLOAD_DIR), name="uploads")


@app.get("/")
def root():
    return {"status": "ok", "service": "Storefront Backend"}


@app.get("/test")
def test_database():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        tables = inspect(engine).get_table_names()
        ok = True
    except Exception:
        logger.exception("Database check failed")
        tables, ok = [], False
    return {
        "backend": "✅ Running",
        "database": "✅ Connected" if ok else "❌ Not Connected",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_dialect": DATABASE_URL.split(":", 1)[0],
        "tables": tables,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=PORT, reload=False)
