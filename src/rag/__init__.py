"""Response pipeline module."""

from src.rag.intelligence import IntelligenceAdapter
from src.rag.llm_client import LLMClient
from src.rag.pipeline import PipelineRunner
from src.rag.retriever import ProtocolRetriever

__all__ = ["PipelineRunner", "ProtocolRetriever", "IntelligenceAdapter", "LLMClient"]
