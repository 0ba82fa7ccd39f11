import logging
from bson import ObjectId
from fastapi import HTTPException

logger = logging.getLogger(__name__)


class ErrorHandler:
    """Shared HTTP error helpers for the routers"""

    @staticmethod
    def validate_object_id(object_id: str, resource: str = "resource") -> ObjectId:
        if not ObjectId.is_valid(object_id):
            raise HTTPException(status_code=400, detail=f"Invalid {resource} ID")
        return ObjectId(object_id)

    @staticmethod
    def handle_not_found(resource: str, resource_id: str) -> HTTPException:
        return HTTPException(status_code=404, detail=f"{resource} {resource_id} not found")

    @staticmethod
    def handle_service_error(operation: str, error: Exception) -> HTTPException:
        logger.error(f"Failed to {operation}: {error}")
        return HTTPException(status_code=500, detail=f"Failed to {operation}")

    @staticmethod
    def handle_service_unavailable(service: str, message: str) -> HTTPException:
        logger.warning(f"{service} service unavailable: {message}")
        return HTTPException(status_code=503, detail=f"{service} service unavailable: {message}")

    @staticmethod
    def handle_bad_request(message: str) -> HTTPException:
        return HTTPException(status_code=400, detail=message)
