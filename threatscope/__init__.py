"""
threatscope - Automated threat modeling for source repositories.

Scans a codebase for security patterns, infers its architecture, describes
it as a data flow diagram, and synthesizes OWASP-rated threat statements.
"""

__version__ = "1.0.0"
