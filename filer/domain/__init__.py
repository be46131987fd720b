"""
Domain layer: object identifiers and content-type rules shared by every backend.
"""
