"""Ask Tennis: natural language questions over tennis rankings and results."""

from ask_tennis.service import (
    answer_tennis_question,
    get_pipeline,
    get_pipeline_status,
    initialize_pipeline,
)

__all__ = [
    "answer_tennis_question",
    "get_pipeline",
    "get_pipeline_status",
    "initialize_pipeline",
]

__version__ = "1.0.0"
