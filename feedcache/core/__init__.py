"""
Core Layer

Configuration, logging, exceptions, interfaces and the fail-soft boundary
shared by every other package.
"""
