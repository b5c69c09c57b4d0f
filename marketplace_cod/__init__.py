"""Cash-on-delivery order workflow and vendor settlement for a multi-vendor marketplace."""

__version__ = "1.0.0"
