"""
Promo-mode video generation package.

Composes short affiliate promo videos from a title, benefit lines, optional
product images and an optional voice-over, rendered frame by frame with
synthesized background music and encoded to WebM.
"""

from __future__ import annotations

__all__ = [
    "StyleConfig",
    "Workspace",
    "load_promo_job",
]

from .job_loader import load_promo_job
from .models import StyleConfig
from .workspace import Workspace
