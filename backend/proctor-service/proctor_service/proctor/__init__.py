"""
Proctoring Integrity Module

Turns per-frame perception signals into integrity events:
- Focus loss (gaze away, debounced)
- Face absence (debounced)
- Multiple faces (edge-triggered)
- Suspicious objects (phones, books, notes, screens)
- Eyes closed

Maintains an Integrity Score (0-100) per session and renders the final
report as JSON or CSV.
"""

from .api import router

__all__ = ["router"]
