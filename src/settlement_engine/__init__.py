"""Settlement engine - payment settlement workflow for invoicing backends."""

__version__ = "0.1.0"
