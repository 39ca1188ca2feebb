from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
from database import database
from routes import pdf_documents, storage
from services.document_errors import DocumentGenerationError

import os
import logging
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup (no database under pytest; tests patch the record store)
    logger.info("Starting Gestion Locative PDF API")
    if not os.environ.get("PYTEST_RUNNING"):
        await database.connect()

    yield

    # Shutdown
    logger.info("Shutting down Gestion Locative PDF API")
    await database.close()

# Create FastAPI app
app = FastAPI(
    title="Gestion Locative PDF API",
    description="Inventory, lease and rent receipt PDF generation",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "X-Render-Strategy", "X-Render-Warnings"],
)

# Include routers
app.include_router(pdf_documents.router)
app.include_router(storage.router)


# Health check
@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": os.getenv("ENVIRONMENT", "development")
    }


@app.exception_handler(DocumentGenerationError)
async def document_error_handler(request: Request, exc: DocumentGenerationError):
    if exc.status_code >= 500:
        logger.error(f"Document generation failed on {request.url.path}: {exc.message}")
    else:
        logger.info(f"Document request rejected on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


# Malformed bodies are 400 with a readable message rather than the default 422
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    logger.warning(
        "Request validation failed path=%s errors=%s",
        request.url.path,
        [(e.get("loc"), e.get("msg"), e.get("type")) for e in errors],
    )
    message = "; ".join(
        f"{'.'.join(str(part) for part in e.get('loc', ()) if part != 'body')}: {e.get('msg')}" for e in errors
    )
    return JSONResponse(status_code=400, content={"error": message or "Invalid request"})


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=os.getenv("ENVIRONMENT") == "development"
    )
