"""
RFI recommendation extractor

Checkpointed, resumable extraction of structured policy recommendations
from RFI submission texts using OpenAI models.
"""

__version__ = "1.0.0"
