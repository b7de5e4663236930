import logging
import sys

from dotenv import load_dotenv

# Load environment variables from .env file before settings are read
load_dotenv()

from fastapi import FastAPI  # noqa: E402

from .core.config import settings  # noqa: E402
from .exception_handlers import register_exception_handlers  # noqa: E402
from .lifespan import lifespan  # noqa: E402
from .middleware import LoggingMiddleware, RequestIDMiddleware  # noqa: E402
from .routers import password_reset  # noqa: E402

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger("intern_portal")

app = FastAPI(title=f"{settings.APP_NAME} API", version="1.0.0", lifespan=lifespan)

# Added last runs first: RequestID must wrap Logging so the id is set
app.add_middleware(LoggingMiddleware)
app.add_middleware(RequestIDMiddleware)

register_exception_handlers(app)

app.include_router(password_reset.router)


@app.get("/health")
def health():
    return {"status": "ok"}
