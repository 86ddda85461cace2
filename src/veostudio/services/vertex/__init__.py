"""Vertex AI clients: service account credentials, Gemini prompt enrichment, Veo."""

from veostudio.services.vertex.credentials import ServiceAccountCredentialProvider
from veostudio.services.vertex.enrichment import PromptEnricher, PromptPreset
from veostudio.services.vertex.veo_client import OperationStatus, ReferenceMedia, VeoClient

__all__ = [
    "ServiceAccountCredentialProvider",
    "PromptEnricher",
    "PromptPreset",
    "OperationStatus",
    "ReferenceMedia",
    "VeoClient",
]
