"""PRIVDAG API - Starlette HTTP adapter over the Graph Store."""
