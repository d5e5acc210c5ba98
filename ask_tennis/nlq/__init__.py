# ask_tennis/nlq/__init__.py
"""
Natural language query pipeline.

classifier -> builder -> validator -> executor -> composer, driven by the
state machine in pipeline.py.
"""

from .classifier import DataSource, IntentAnalysis, IntentClassifier, Question, QueryType
from .composer import Answer, AnswerComposer
from .pipeline import PipelineState, QueryPipeline

__all__ = [
    "Answer",
    "AnswerComposer",
    "DataSource",
    "IntentAnalysis",
    "IntentClassifier",
    "PipelineState",
    "QueryPipeline",
    "QueryType",
    "Question",
]
