"""
HTTP routes

- zip.py: GET /?ref=...&downloadas=... archive download
"""
