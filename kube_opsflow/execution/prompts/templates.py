"""
Template name constants.

Pure constants - no I/O or file system knowledge.
"""


class Template:
    """Template name constants. Use these instead of raw strings."""

    REMEDIATE_INVESTIGATION = "remediate_investigation"
    DOCS_INVESTIGATION = "docs_investigation"
    VALIDATION = "validation"
