from .generation_session import GenerationResult, GenerationSession, create_generation_session

__all__ = ["GenerationResult", "GenerationSession", "create_generation_session"]
