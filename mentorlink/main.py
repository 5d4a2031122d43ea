# mentorlink/main.py
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from mentorlink.config import settings
from mentorlink.database import Base, engine
from mentorlink import models  # noqa: F401 - register tables on Base.metadata
from mentorlink.api import mentorship, payment, session_log, video_call

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# Create database tables
Base.metadata.create_all(bind=engine)

# Initialize FastAPI app
app = FastAPI(title="MentorLink API")

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://0.0.0.0:8000",
        "http://localhost:8000",
        "http://127.0.0.1:8000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routers
app.include_router(mentorship.router)   # /api/mentorship/requests/*
app.include_router(session_log.router)  # /api/mentorship/mento_session/*
app.include_router(video_call.router)   # /api/video-call/*
app.include_router(payment.router)      # /api/payment/mentorship/*


@app.get("/health")
def health_check():
    return {
        "status": "healthy",
        "message": "MentorLink API is running",
        "version": "1.0.0",
    }
