"""
Servicer Submission Service - HTTP API
Submits prepared packages to loan servicers and reports on queue and servicer health
"""

import json
import os
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict
from typing import Dict, Any, Optional
import uvicorn

from models.application import PreparedApplication
from orchestrator import SubmissionOrchestrator
from utils.logger import setup_logging, get_logger

logger = get_logger(__name__)


# Pydantic models
class SubmissionRequest(BaseModel):
    transaction_id: str
    servicer_id: str
    document_type: str = "loss_mitigation_package"
    priority: str = "normal"
    document_data: Dict[str, Any]
    metadata: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "transaction_id": "txn-1001",
            "servicer_id": "chase",
            "document_type": "loss_mitigation_package",
            "priority": "normal",
            "document_data": {
                "case_id": "case-1001",
                "loan_number": "0012345678",
                "borrower_name": "Jane Doe",
                "documents": [
                    {"type": "hardship_letter", "file_name": "hardship.pdf", "content": "JVBERi0xLjQ="}
                ]
            },
            "metadata": {"deadline": "2026-11-01T17:00:00Z"}
        }
    })


def create_app(orchestrator: Optional[SubmissionOrchestrator] = None) -> FastAPI:
    """Build the API around an orchestrator (created at startup when not given)"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager"""
        setup_logging()
        logger.info("Starting Servicer Submission Service")

        if app.state.orchestrator is None:
            app.state.orchestrator = SubmissionOrchestrator()
        service = app.state.orchestrator

        if os.getenv("DB_INIT_SCHEMA", "true").lower() == "true":
            await service.db_service.init_schema()

        await service.start()
        logger.info("Servicer Submission Service started successfully")

        yield

        await service.stop()
        await service.db_service.close()

    app = FastAPI(
        title="Servicer Submission Service",
        description="Reliable delivery of loss mitigation packages to loan servicers",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.orchestrator = orchestrator

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_orchestrator(request: Request) -> SubmissionOrchestrator:
        service = request.app.state.orchestrator
        if service is None:
            raise HTTPException(status_code=503, detail="Submission service is not running")
        return service

    @app.get("/api/v1/health")
    async def health_check(request: Request):
        """Health check endpoint"""
        service = get_orchestrator(request)
        stats = await service.get_queue_stats()
        return {
            "status": "healthy" if service.is_running else "stopped",
            "service": "Servicer Submission Service",
            "version": "1.0.0",
            "queue_size": stats["queue_size"],
            "circuit_breakers": stats["circuit_breakers"],
            "persistence": stats["persistence"]
        }

    @app.post("/api/v1/submissions")
    async def create_submission(submission: SubmissionRequest, request: Request):
        """Submit a prepared package to a servicer"""
        service = get_orchestrator(request)

        try:
            # JSON validation decodes base64 document content
            application = PreparedApplication.model_validate_json(json.dumps(submission.document_data))
        except ValueError as e:
            raise HTTPException(status_code=422, detail=f"Invalid document data: {str(e)}")

        result = await service.submit_document(
            transaction_id=submission.transaction_id,
            servicer_id=submission.servicer_id,
            document_type=submission.document_type,
            document_data=application,
            priority=submission.priority,
            metadata=submission.metadata
        )

        if not result.get("success") and not result.get("task_id"):
            raise HTTPException(status_code=400, detail=result.get("error"))
        return result

    @app.get("/api/v1/submissions/stats")
    async def get_queue_stats(request: Request):
        """Queue statistics"""
        return await get_orchestrator(request).get_queue_stats()

    @app.get("/api/v1/submissions/{task_id}")
    async def get_submission(task_id: str, request: Request):
        """Get a submission task"""
        task = await get_orchestrator(request).get_task(task_id)
        if task is None:
            raise HTTPException(status_code=404, detail="Submission not found")
        return task.to_dict()

    @app.get("/api/v1/submissions/{task_id}/status")
    async def get_submission_status(task_id: str, request: Request):
        """Ask the servicer for the status of a submission"""
        result = await get_orchestrator(request).check_submission_status(task_id)
        if not result.get("success") and not result.get("task_id"):
            raise HTTPException(status_code=404, detail=result.get("error"))
        return result

    @app.get("/api/v1/transactions/{transaction_id}/submissions")
    async def get_transaction_submissions(transaction_id: str, request: Request):
        """List every submission made for a transaction"""
        tasks = await get_orchestrator(request).get_transaction_tasks(transaction_id)
        return {
            "transaction_id": transaction_id,
            "submissions": [task.to_dict() for task in tasks],
            "total": len(tasks)
        }

    @app.get("/api/v1/servicers")
    async def list_servicers(request: Request):
        """List servicers with dedicated adapters"""
        service = get_orchestrator(request)
        servicers = []
        for servicer_id in service.adapter_factory.get_registered_servicers():
            config = service.adapter_factory.get_servicer_config(servicer_id)
            breaker = service.circuit_breakers.get(servicer_id)
            servicers.append({
                "id": servicer_id,
                "name": config.name if config else servicer_id,
                "type": config.type if config else None,
                "circuit_breaker": breaker.state if breaker else "closed"
            })
        return {"servicers": servicers, "total": len(servicers)}

    @app.get("/api/v1/servicers/{servicer_id}/connection")
    async def test_servicer_connection(servicer_id: str, request: Request):
        """Run a servicer connection test"""
        return await get_orchestrator(request).test_servicer_connection(servicer_id)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
