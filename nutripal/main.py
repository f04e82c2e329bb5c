import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from nutripal.core import config
from nutripal.routers import chat

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="NutriPal API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, replace with your specific domain
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chat.router)


@app.get("/")
def read_root():
    return {"message": "Welcome to NutriPal"}
