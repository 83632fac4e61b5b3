"""Service layer orchestrations for docsearch."""

from .documents import DocumentService, UploadsConfig, build_service

__all__ = ["DocumentService", "UploadsConfig", "build_service"]
