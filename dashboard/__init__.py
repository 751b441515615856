"""Streamlit dashboard for the AthletiQ API."""
