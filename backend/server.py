import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv

# Load .env before the package reads its settings
env_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env")
load_dotenv(dotenv_path=env_path)

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from sekolah_module import init_sekolah_module, routers
from sekolah_module.config import settings
from sekolah_module.errors import register_exception_handlers, success

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    handlers=[logging.StreamHandler()],
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Initializing database...")
    init_sekolah_module()
    logger.info("Database initialized.")
    yield
    logger.info("Shutting down...")


app = FastAPI(title="Sistem Informasi Sekolah API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials="*" not in settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)

os.makedirs(settings.upload_dir, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=settings.upload_dir), name="uploads")

for router in routers:
    app.include_router(router, prefix="/api")


@app.get("/api/health")
def health():
    return success({"status": "ok"}, "Server is running")


if __name__ == "__main__":
    import uvicorn

    reload_enabled = os.getenv("BACKEND_RELOAD", "false").lower() == "true"
    backend_host = os.getenv("BACKEND_HOST", "127.0.0.1")
    backend_port = int(os.getenv("BACKEND_PORT", "8000"))
    uvicorn.run("server:app" if reload_enabled else app, host=backend_host, port=backend_port, reload=reload_enabled)
