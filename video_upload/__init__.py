"""
Video Upload Service - stores uploaded videos and reports their duration.

This package contains the complete application:
- core: Framework-agnostic upload pipeline
- infrastructure: Object storage and FFprobe integrations
- api: FastAPI routes and dependencies
- config: Application configuration
"""

__version__ = "0.1.0"
