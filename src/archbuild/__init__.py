"""archbuild - multi-architecture build orchestrator for modular component frameworks."""

__version__ = "0.1.0"
