"""Generation application layer."""

from specflow.application.generation.dto import GenerateResponse, parse_generate_payload
from specflow.application.generation.use_case import GenerationUseCase

__all__ = [
    "GenerateResponse",
    "GenerationUseCase",
    "parse_generate_payload",
]
