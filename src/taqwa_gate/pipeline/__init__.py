from .models import GenerationResult, PipelineState
from .orchestrator import Orchestrator

__all__ = ["GenerationResult", "PipelineState", "Orchestrator"]
