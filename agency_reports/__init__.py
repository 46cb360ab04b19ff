"""Smart cache and data lifecycle engine for agency ad-platform reporting"""

__version__ = "0.1.0"
