"""
FastAPI application layer for the visionpool service.

This package exposes the processing core over HTTP: image payloads come in as
raw bodies or multipart uploads, and results or typed errors go back as JSON.
"""
