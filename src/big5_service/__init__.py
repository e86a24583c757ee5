"""
Big5 Conversion Service package.

Converts Big5-encoded HTML documents to UTF-8 and offers UTF-8 HTML, PDF
and zip exports through a FastAPI application (`big5_service.webapi`) and
a Streamlit front-end (`big5_service.streamlit_app`).
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
