"""
Tools - Registered Wizards and Investigative Loops

Builds the StageGraphs for the wizard tools and the LoopProfiles for the
investigative tools registered out of the box.
"""

from typing import List, Optional

from kube_opsflow.execution.stages import StageGraph
from kube_opsflow.repositories.pattern import PatternRepository
from kube_opsflow.tools import pattern_wizard, project_setup, recommend
from kube_opsflow.tools.investigative import REMEDIATE, VALIDATE_DOCS, loop_profiles


def wizard_graphs(pattern_repository: Optional[PatternRepository] = None) -> List[StageGraph]:
    return [
        pattern_wizard.build_graph(pattern_repository),
        recommend.build_graph(),
        project_setup.build_graph(),
    ]


__all__ = [
    "REMEDIATE",
    "VALIDATE_DOCS",
    "loop_profiles",
    "wizard_graphs",
]
