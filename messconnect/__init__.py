"""
Mess Connect backend package.

This package provides a FastAPI application over a key-value entity store
for running a student mess: registration and approval, the weekly menu,
dues and payments, complaints and suggestions, notes and broadcasts.
"""
