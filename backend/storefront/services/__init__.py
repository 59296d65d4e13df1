"""
Service layer: lifecycle engines, repositories and collaborators.
"""
