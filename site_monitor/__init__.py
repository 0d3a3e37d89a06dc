"""Website availability monitor: load pages in headless Chromium and alert on failures."""

__version__ = "0.1.0"
