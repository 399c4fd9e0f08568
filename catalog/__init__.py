"""
Library catalogue denormalization engine.

This package contains:
- Document models and embedded summaries
- The entity store over MongoDB
- Fan-out propagation of embedded copies
- Rating aggregation and the loan lifecycle
- Cache invalidation, the intent log and tracked propagation jobs
"""

__version__ = "1.0.0"
