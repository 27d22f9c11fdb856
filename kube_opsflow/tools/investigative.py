"""
Investigative tools driven by the AgenticLoopController.

Both share the investigate -> approve -> execute -> validate cycle and differ
only in their session prefix and the investigation prompt.
"""

from ..execution.agentic import LoopProfile
from ..execution.prompts import Template

REMEDIATE = LoopProfile(
    name="remediate",
    prefix="rem",
    investigation_template=Template.REMEDIATE_INVESTIGATION,
    description="Investigate a Kubernetes issue, propose remediation and execute it behind a safety gate",
)

VALIDATE_DOCS = LoopProfile(
    name="validateDocs",
    prefix="dvl",
    investigation_template=Template.DOCS_INVESTIGATION,
    description="Check documented instructions against a live cluster and fix the drift",
)


def loop_profiles():
    return [REMEDIATE, VALIDATE_DOCS]
