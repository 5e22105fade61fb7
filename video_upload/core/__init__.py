"""
Core business logic for video uploads.

This module is framework-agnostic - it doesn't import FastAPI, boto3,
or ffprobe wrappers. Storage and probing are reached through protocols,
so the upload pipeline can be tested with in-memory fakes.
"""
