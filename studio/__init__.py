"""
Marketing Video Studio Package

Async client layer for the KIE generation gateway, featuring:
- Multi-candidate endpoint discovery for unstable gateway routes
- Veo, Sora and Kling video task submission and polling
- Image generation with record-base aware polling
- Canonical status normalization across providers
- Structured logging and a typed error hierarchy
"""

# Package metadata
__title__ = "Marketing Video Studio"
__description__ = "KIE gateway client and status normalization for video/image production"
__license__ = "MIT"
__version__ = "0.4.0"

__all__ = []
