"""Re-export all models so Base.metadata sees them."""

from accelerator_engine.db.models.accelerator_session import AcceleratorSessionModel

__all__ = [
    "AcceleratorSessionModel",
]
