# main.py
import os

from dotenv import load_dotenv

load_dotenv()

from config.logging_config import configure_logging

configure_logging()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from middleware.rate_limit import limiter
from middleware.request_logging import RequestLoggingMiddleware
from routers.etf_routes import router as etf_router
from routers.portfolio_routes import router as portfolio_router

app = FastAPI(title="ETF True Holdings")

origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(SlowAPIMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include routers
app.include_router(etf_router, prefix="/api/etf")
app.include_router(portfolio_router, prefix="/api/portfolio")


@app.get("/health")
def health():
    return {"status": "ok"}
