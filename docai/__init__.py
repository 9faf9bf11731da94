"""Title document AI engine.

Tracks each scanned title document through upload, OCR and LLM
normalization, and reconciles the candidate field values produced along
the way into a single confident business record.
"""

__version__ = "0.1.0"
